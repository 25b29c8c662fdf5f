"""Ledger contract: agent configuration, portfolio snapshots, trade records.

The ledger is the system of record for per-wallet agent configuration and
executed trades. Trade recording is best-effort from the execution side:
a failed record never changes the outcome of a swap that already landed.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from trade_agent.portfolio.base import PortfolioSnapshot, TargetAllocation
from trade_agent.strategy.base import RiskProfile, StrategyType
from trade_agent.utils.exceptions import ConfigurationError

REBALANCE_STRATEGY_ID = "rebalance"


@dataclass(frozen=True)
class StrategyConfig:
    """One configured strategy of an agent."""

    id: str
    name: str
    type: StrategyType
    is_active: bool = True
    params: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyConfig":
        try:
            strategy_type = StrategyType(data["type"])
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Invalid strategy type in {data}: {e}") from e
        return cls(
            id=str(data.get("id", strategy_type.value)),
            name=str(data.get("name", strategy_type.value)),
            type=strategy_type,
            is_active=bool(data.get("is_active", True)),
            params=dict(data.get("params") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "is_active": self.is_active,
            "params": dict(self.params),
        }


@dataclass(frozen=True)
class AgentConfig:
    """Per-wallet agent configuration.

    Attributes:
        wallet: Owner wallet
        target_allocations: Target weights by mint
        rebalance_threshold: Deviation (percentage points) that triggers a trade
        max_amount_per_trade: USD cap for strategy recommendations, None for no cap
        max_slippage_bps: Slippage tolerance for quotes and swaps
        risk_profile: Scales recommendation confidence
        auto_rebalance: Whether the scheduler may rebalance unattended
        preferred_tokens: Mints DCA buys into
        excluded_tokens: Mints never traded by strategies
        strategies: Configured strategies
    """

    wallet: str
    target_allocations: Tuple[TargetAllocation, ...] = ()
    rebalance_threshold: float = 5.0
    max_amount_per_trade: Optional[float] = None
    max_slippage_bps: int = 50
    risk_profile: RiskProfile = RiskProfile.MODERATE
    auto_rebalance: bool = False
    preferred_tokens: Tuple[str, ...] = ()
    excluded_tokens: Tuple[str, ...] = ()
    strategies: Tuple[StrategyConfig, ...] = ()

    def __post_init__(self):
        if not math.isfinite(self.rebalance_threshold) or self.rebalance_threshold < 0:
            raise ConfigurationError(
                f"rebalance_threshold must be >= 0, got {self.rebalance_threshold}"
            )
        if self.max_amount_per_trade is not None and self.max_amount_per_trade <= 0:
            raise ConfigurationError(
                f"max_amount_per_trade must be positive, got {self.max_amount_per_trade}"
            )
        if not 0 <= self.max_slippage_bps <= 10_000:
            raise ConfigurationError(
                f"max_slippage_bps must be in [0, 10000], got {self.max_slippage_bps}"
            )

    @property
    def active_strategies(self) -> List[StrategyConfig]:
        return [s for s in self.strategies if s.is_active]

    @classmethod
    def from_dict(cls, wallet: str, data: Dict[str, Any]) -> "AgentConfig":
        """Build a config from its dict (YAML or stored JSON) form.

        Raises:
            ConfigurationError: On missing or invalid values
        """
        try:
            targets = tuple(
                TargetAllocation(
                    mint=t["mint"],
                    target_percentage=float(t["target_percentage"]),
                    max_deviation=(
                        float(t["max_deviation"]) if t.get("max_deviation") is not None else None
                    ),
                    symbol=t.get("symbol"),
                    decimals=int(t["decimals"]) if t.get("decimals") is not None else None,
                )
                for t in data.get("target_allocations") or []
            )
            risk_profile = RiskProfile(data.get("risk_profile", RiskProfile.MODERATE.value))
            max_amount = data.get("max_amount_per_trade")
            return cls(
                wallet=wallet,
                target_allocations=targets,
                rebalance_threshold=float(data.get("rebalance_threshold", 5.0)),
                max_amount_per_trade=float(max_amount) if max_amount is not None else None,
                max_slippage_bps=int(data.get("max_slippage_bps", 50)),
                risk_profile=risk_profile,
                auto_rebalance=bool(data.get("auto_rebalance", False)),
                preferred_tokens=tuple(data.get("preferred_tokens") or ()),
                excluded_tokens=tuple(data.get("excluded_tokens") or ()),
                strategies=tuple(
                    StrategyConfig.from_dict(s) for s in data.get("strategies") or []
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid agent config for {wallet}: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_allocations": [
                {
                    "mint": t.mint,
                    "target_percentage": t.target_percentage,
                    "max_deviation": t.max_deviation,
                    "symbol": t.symbol,
                    "decimals": t.decimals,
                }
                for t in self.target_allocations
            ],
            "rebalance_threshold": self.rebalance_threshold,
            "max_amount_per_trade": self.max_amount_per_trade,
            "max_slippage_bps": self.max_slippage_bps,
            "risk_profile": self.risk_profile.value,
            "auto_rebalance": self.auto_rebalance,
            "preferred_tokens": list(self.preferred_tokens),
            "excluded_tokens": list(self.excluded_tokens),
            "strategies": [s.to_dict() for s in self.strategies],
        }


@dataclass(frozen=True)
class TradeRecord:
    """An executed swap as recorded in the ledger."""

    wallet: str
    strategy_id: str
    from_mint: str
    to_mint: str
    input_amount: float
    output_amount: float
    slippage_bps: int
    reason: str
    signature: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class LedgerClient(ABC):
    """Abstract interface for the configuration and trade ledger.

    Example:
        >>> ledger = SqliteLedger("data/ledger.db")
        >>> config = await ledger.get_agent_config(wallet)
        >>> await ledger.record_trade(record)
    """

    @abstractmethod
    async def get_agent_config(self, wallet: str) -> Optional[AgentConfig]:
        """Agent configuration for a wallet, None if none is stored."""
        pass

    @abstractmethod
    async def save_agent_config(self, config: AgentConfig) -> None:
        pass

    @abstractmethod
    async def get_portfolio(self, wallet: str) -> Optional[PortfolioSnapshot]:
        """Most recent stored snapshot for a wallet."""
        pass

    @abstractmethod
    async def save_portfolio(self, snapshot: PortfolioSnapshot) -> None:
        pass

    @abstractmethod
    async def record_trade(self, record: TradeRecord) -> None:
        """Record an executed trade.

        Raises:
            LedgerRecordError: If the record cannot be written
        """
        pass

    @abstractmethod
    async def list_trades(self, wallet: str, limit: int = 50) -> pd.DataFrame:
        """Most recent trades for a wallet, newest first."""
        pass

    async def close(self) -> None:
        return None
