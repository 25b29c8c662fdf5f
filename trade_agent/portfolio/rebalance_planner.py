"""Rebalance planning through an intermediary asset.

Algorithm:
1. Select the intermediary: the largest held stablecoin, else the native
   gas asset (SOL); fail with NoIntermediaryAssetError if neither is held
2. Over-allocated assets (difference > threshold) are sold into the
   intermediary: amount = balance * difference / current%
3. Under-allocated assets (difference < -threshold) are bought with the
   intermediary: amount = deficit% / 100 * total value / intermediary price
4. Sells run before buys; sells most-over-allocated first, buys
   most-under-allocated first
5. Actions with a non-positive amount are dropped
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from trade_agent.data.base import KNOWN_STABLECOINS, SOL_MINT, TokenInfo
from trade_agent.portfolio.base import (
    AllocationDeviation,
    Asset,
    PortfolioSnapshot,
    RebalanceAction,
    RebalanceOperation,
    RebalancePlan,
    TargetAllocation,
)
from trade_agent.utils.exceptions import NoIntermediaryAssetError, ValidationError
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DECIMALS = 9


class RebalancePlanner:
    """Builds ordered, unquoted rebalance actions from deviations.

    Args:
        stable_mints: Mints treated as stable-valued. Defaults to the known
            Solana stablecoins.
        native_mint: Mint of the chain's gas asset (wrapped SOL)
        native_symbol: Symbol matched when the gas asset's mint differs

    Example:
        >>> planner = RebalancePlanner()
        >>> plan = planner.plan(deviations, threshold=5.0, snapshot=snapshot)
        >>> [a.describe() for a in plan]
        ['sell SOL to USDC']
    """

    def __init__(
        self,
        stable_mints: Optional[Iterable[str]] = None,
        native_mint: str = SOL_MINT,
        native_symbol: str = "SOL",
    ):
        self.stable_mints = set(stable_mints) if stable_mints is not None else set(KNOWN_STABLECOINS)
        self.native_mint = native_mint
        self.native_symbol = native_symbol

    def select_intermediary(self, snapshot: PortfolioSnapshot) -> Asset:
        """Pick the asset every trade is routed through.

        Raises:
            NoIntermediaryAssetError: If no priced stablecoin or native asset is held
        """
        usable = [a for a in snapshot.assets if a.raw_balance > 0 and a.price > 0]

        stables = [a for a in usable if a.mint in self.stable_mints]
        if stables:
            return max(stables, key=lambda a: a.usd_value)

        for asset in usable:
            if asset.mint == self.native_mint or asset.symbol == self.native_symbol:
                return asset

        raise NoIntermediaryAssetError(
            f"Wallet {snapshot.wallet} holds neither a stablecoin nor {self.native_symbol}"
        )

    def plan(
        self,
        deviations: Sequence[AllocationDeviation],
        threshold: float,
        snapshot: PortfolioSnapshot,
    ) -> RebalancePlan:
        """Build the ordered action list.

        Args:
            deviations: Output of AllocationAnalyzer.analyze for this snapshot
            threshold: Rebalance threshold in percentage points; a
                deviation's own max_deviation takes precedence when set
            snapshot: Snapshot the deviations were computed from

        Returns:
            RebalancePlan with PLANNED actions (possibly empty)

        Raises:
            ValidationError: If threshold is negative
            NoIntermediaryAssetError: If no intermediary can be selected
        """
        if threshold < 0 or not math.isfinite(threshold):
            raise ValidationError(f"Rebalance threshold must be >= 0, got {threshold}")

        intermediary = self.select_intermediary(snapshot)
        total_value = snapshot.total_value

        over: List[AllocationDeviation] = []
        under: List[AllocationDeviation] = []
        for deviation in deviations:
            if deviation.mint == intermediary.mint:
                continue
            tolerance = threshold if deviation.max_deviation is None else deviation.max_deviation
            if deviation.difference > tolerance:
                over.append(deviation)
            elif deviation.difference < -tolerance:
                under.append(deviation)

        over.sort(key=lambda d: d.difference, reverse=True)
        under.sort(key=lambda d: d.difference)

        drafts = []
        for deviation in over:
            asset = snapshot.find(deviation.mint)
            if asset is None or deviation.current_percentage <= 0:
                continue
            amount = asset.balance * (deviation.difference / deviation.current_percentage)
            drafts.append((RebalanceOperation.SELL, deviation, amount))

        for deviation in under:
            amount = (-deviation.difference / 100.0) * total_value / intermediary.price
            drafts.append((RebalanceOperation.BUY, deviation, amount))

        actions: List[RebalanceAction] = []
        for operation, deviation, amount in drafts:
            if not math.isfinite(amount) or amount <= 0:
                logger.debug("Dropping %s of %s: amount %s", operation.value, deviation.symbol, amount)
                continue

            if operation == RebalanceOperation.SELL:
                route = (deviation.mint, deviation.symbol, intermediary.mint, intermediary.symbol)
            else:
                route = (intermediary.mint, intermediary.symbol, deviation.mint, deviation.symbol)

            actions.append(
                RebalanceAction(
                    index=len(actions),
                    operation=operation,
                    from_mint=route[0],
                    from_symbol=route[1],
                    to_mint=route[2],
                    to_symbol=route[3],
                    amount=amount,
                    current_percentage=deviation.current_percentage,
                    target_percentage=deviation.target_percentage,
                    deviation=deviation.difference,
                )
            )

        logger.info(
            "Planned %d actions for %s via %s (%d sells, %d buys)",
            len(actions),
            snapshot.wallet,
            intermediary.symbol,
            sum(1 for a in actions if a.operation == RebalanceOperation.SELL),
            sum(1 for a in actions if a.operation == RebalanceOperation.BUY),
        )

        return RebalancePlan(
            wallet=snapshot.wallet,
            intermediary_mint=intermediary.mint,
            actions=tuple(actions),
            total_value=total_value,
        )


def plan_decimals(
    snapshot: PortfolioSnapshot,
    targets: Sequence[TargetAllocation] = (),
    registry: Optional[Mapping[str, TokenInfo]] = None,
) -> Dict[str, int]:
    """Decimals by mint for every asset a plan can touch.

    Snapshot decimals win over target decimals, which win over the token
    registry. Callers fall back to 9 for anything still missing.
    """
    decimals: Dict[str, int] = {}
    for mint, info in (registry or {}).items():
        decimals[mint] = info.decimals
    for target in targets:
        if target.decimals is not None:
            decimals[target.mint] = target.decimals
    for asset in snapshot.assets:
        decimals[asset.mint] = asset.decimals
    return decimals
