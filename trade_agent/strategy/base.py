"""Abstract base class for recommendation strategies.

Strategies turn a StrategyContext (snapshot, market overview, per-token
metrics and indicators) into unquoted TradeRecommendation drafts. They do
no I/O: the SignalEngine gathers the context, quotes the drafts and scores
them.

Trade sizing rules shared by all strategies:
    amount = min(fraction * balance, max_amount_per_trade / price)
    stable balances below `min_stable_balance` units are skipped
    stablecoins are never a buy target
    excluded tokens are never traded
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from trade_agent.data.base import (
    USDC_MINT,
    AssetMetrics,
    MarketOverview,
    MarketTrend,
    TechnicalIndicators,
    TokenInfo,
)
from trade_agent.portfolio.base import (
    Asset,
    PortfolioSnapshot,
    RebalanceAction,
    RebalanceOperation,
)
from trade_agent.venue.base import Quote

__all__ = [
    "MarketTrend",
    "RiskProfile",
    "StrategyType",
    "SignalImpact",
    "Signal",
    "TradeRecommendation",
    "StrategyContext",
    "SignalStrategy",
]


class RiskProfile(Enum):
    """Agent risk appetite; scales confidence scores."""

    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"

    @property
    def multiplier(self) -> float:
        return {
            RiskProfile.CONSERVATIVE: 0.7,
            RiskProfile.MODERATE: 1.0,
            RiskProfile.AGGRESSIVE: 1.3,
        }[self]


class StrategyType(Enum):
    """Strategy types an agent can activate."""

    DCA = "dollarCostAverage"
    MOMENTUM = "momentumTrading"
    MEAN_REVERSION = "meanReversion"
    TREND_FOLLOWING = "trendFollowing"


class SignalImpact(Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class Signal:
    """One input to a confidence score.

    Attributes:
        name: Display name
        value: Normalized score in [0, 1]
        impact: Direction the signal argues for
        weight: Share of the confidence score (renormalized over present signals)
        description: Human-readable explanation
    """

    name: str
    value: float
    impact: SignalImpact
    weight: float
    description: str = ""

    def __post_init__(self):
        if not 0.0 <= self.value <= 1.0:
            raise ValueError(f"Signal '{self.name}' value must be in [0, 1], got {self.value}")
        if self.weight < 0:
            raise ValueError(f"Signal '{self.name}' weight must be >= 0, got {self.weight}")


@dataclass(frozen=True)
class TradeRecommendation:
    """A strategy's suggested swap.

    Attributes:
        strategy_id / strategy_name / strategy_type: Origin strategy
        operation: BUY (stable into token) or SELL (token into stable)
        input_mint / input_symbol / input_decimals: Asset being spent
        output_mint / output_symbol / output_decimals: Asset being acquired
        input_amount: Whole-token units of the input asset
        base_confidence: Strategy prior before signal scoring (0-100)
        confidence: Final score after signal scoring (0-100)
        signals: Signals the confidence was built from
        estimated_output / price_impact / quote: Filled once quoted
        reason: Human-readable rationale
    """

    strategy_id: str
    strategy_name: str
    strategy_type: StrategyType
    operation: RebalanceOperation
    input_mint: str
    input_symbol: str
    output_mint: str
    output_symbol: str
    input_amount: float
    input_decimals: int = 9
    output_decimals: int = 9
    base_confidence: float = 50.0
    confidence: int = 0
    signals: Tuple[Signal, ...] = ()
    estimated_output: Optional[float] = None
    price_impact: Optional[float] = None
    quote: Optional[Quote] = field(default=None, repr=False)
    reason: str = ""

    def __post_init__(self):
        if self.input_mint == self.output_mint:
            raise ValueError(f"Recommendation swaps {self.input_symbol} into itself")
        if self.input_amount <= 0:
            raise ValueError(f"input_amount must be positive, got {self.input_amount}")

    def with_quote(self, quote: Quote) -> "TradeRecommendation":
        return replace(
            self,
            quote=quote,
            estimated_output=quote.output_amount(self.output_decimals),
            price_impact=quote.price_impact_pct,
        )

    def with_confidence(self, confidence: int, signals: Sequence[Signal]) -> "TradeRecommendation":
        return replace(self, confidence=confidence, signals=tuple(signals))

    def to_action(self) -> RebalanceAction:
        """Single-action form for the execution coordinator.

        Raises:
            ValueError: If the recommendation has not been quoted
        """
        if self.quote is None:
            raise ValueError(f"Recommendation {self.describe()} has no quote")
        action = RebalanceAction(
            index=0,
            operation=self.operation,
            from_mint=self.input_mint,
            from_symbol=self.input_symbol,
            to_mint=self.output_mint,
            to_symbol=self.output_symbol,
            amount=self.input_amount,
            current_percentage=0.0,
            target_percentage=0.0,
            deviation=0.0,
        )
        return action.with_quote(self.quote, self.output_decimals)

    def describe(self) -> str:
        return f"{self.operation.value} {self.input_symbol} to {self.output_symbol}"


@dataclass
class StrategyContext:
    """Everything a strategy may look at for one analysis cycle.

    Attributes:
        snapshot: Current holdings
        market: Market overview (trend, volatility, performers)
        metrics: Price/volume changes by mint (watchlist and holdings)
        indicators: Technical indicators by mint
        betas: Beta against the benchmark by mint
        tokens: Token metadata by mint (watchlist and holdings)
        stable_mints: Mints treated as stablecoins
        preferred_tokens: Mints DCA buys into
        excluded_tokens: Mints never traded
        max_amount_per_trade: USD cap per recommendation, None for no cap
        native_mint: Gas-reserve asset never sold by trend following
    """

    snapshot: PortfolioSnapshot
    market: MarketOverview
    metrics: Dict[str, AssetMetrics] = field(default_factory=dict)
    indicators: Dict[str, TechnicalIndicators] = field(default_factory=dict)
    betas: Dict[str, float] = field(default_factory=dict)
    tokens: Dict[str, TokenInfo] = field(default_factory=dict)
    stable_mints: FrozenSet[str] = frozenset()
    preferred_tokens: Tuple[str, ...] = ()
    excluded_tokens: FrozenSet[str] = frozenset()
    max_amount_per_trade: Optional[float] = None
    native_mint: str = ""

    @property
    def trend(self) -> MarketTrend:
        return self.market.trend

    def is_stable(self, mint: str) -> bool:
        return mint in self.stable_mints

    def tradable(self, mint: str) -> bool:
        return mint not in self.excluded_tokens

    def stable_holdings(self, min_balance: float) -> List[Asset]:
        """Held stablecoins with at least `min_balance` whole units."""
        return [
            asset
            for asset in self.snapshot.assets
            if self.is_stable(asset.mint)
            and self.tradable(asset.mint)
            and asset.balance >= min_balance
        ]

    def symbol(self, mint: str) -> str:
        info = self.tokens.get(mint)
        if info is not None:
            return info.symbol
        asset = self.snapshot.find(mint)
        return asset.symbol if asset is not None else mint[:4]

    def decimals(self, mint: str, default: int = 9) -> int:
        asset = self.snapshot.find(mint)
        if asset is not None:
            return asset.decimals
        info = self.tokens.get(mint)
        return info.decimals if info is not None else default

    def sized_amount(self, asset: Asset, fraction: float) -> float:
        """Trade size in whole units of `asset`, capped by max_amount_per_trade."""
        amount = asset.balance * fraction
        if self.max_amount_per_trade is not None and asset.price > 0:
            amount = min(amount, self.max_amount_per_trade / asset.price)
        return amount


class SignalStrategy(ABC):
    """Abstract base class for recommendation strategies.

    Subclasses set `strategy_type` and `default_params`, validate params and
    implement `generate`.

    Example:
        >>> strategy = DCAStrategy("dca-1", "Weekly DCA", {"fraction": 0.1})
        >>> drafts = strategy.generate(context)
    """

    strategy_type: StrategyType
    default_params: Dict = {}

    def __init__(self, strategy_id: str, name: str, params: Optional[Dict] = None):
        """Initialize strategy with parameters.

        Args:
            strategy_id: Identifier recorded with executed trades
            name: Display name
            params: Overrides for `default_params`
        """
        self.strategy_id = strategy_id
        self.name = name
        self.params = {**self.default_params, **(params or {})}
        self.validate_params()

    def validate_params(self) -> None:
        """Validate shared sizing parameters.

        Raises:
            ValueError: If parameters are out of range
        """
        fraction = self.params.get("fraction")
        if fraction is None or not 0 < fraction <= 1:
            raise ValueError(f"'fraction' must be in (0, 1], got {fraction}")
        if self.params.get("min_stable_balance", 0) < 0:
            raise ValueError("'min_stable_balance' must be >= 0")

    @abstractmethod
    def generate(self, context: StrategyContext) -> List[TradeRecommendation]:
        """Produce unquoted recommendation drafts for this cycle."""
        pass

    def _draft(
        self,
        context: StrategyContext,
        operation: RebalanceOperation,
        input_mint: str,
        output_mint: str,
        amount: float,
        base_confidence: float,
        reason: str,
    ) -> TradeRecommendation:
        return TradeRecommendation(
            strategy_id=self.strategy_id,
            strategy_name=self.name,
            strategy_type=self.strategy_type,
            operation=operation,
            input_mint=input_mint,
            input_symbol=context.symbol(input_mint),
            output_mint=output_mint,
            output_symbol=context.symbol(output_mint),
            input_amount=amount,
            input_decimals=context.decimals(input_mint),
            output_decimals=context.decimals(output_mint, default=6 if context.is_stable(output_mint) else 9),
            base_confidence=base_confidence,
            reason=reason,
        )

    @staticmethod
    def _sell_target(context: StrategyContext) -> str:
        """Stablecoin that sells go into: USDC unless excluded."""
        if context.tradable(USDC_MINT):
            return USDC_MINT
        for mint in sorted(context.stable_mints):
            if context.tradable(mint):
                return mint
        return ""
