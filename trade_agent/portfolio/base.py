"""Portfolio data model for allocation analysis and rebalancing.

Snapshots, targets and deviations are immutable values. A RebalanceAction
moves through its lifecycle by being replaced, never mutated:

    PLANNED -> QUOTED | UNQUOTABLE
    QUOTED -> EXECUTING -> SUCCEEDED | FAILED
    PLANNED | QUOTED -> NOT_ATTEMPTED   (session cancelled first)

A RebalancePlan holds its actions by index, so each stage (planning,
quoting, execution) returns a new plan rather than editing a shared one.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from trade_agent.venue.base import Quote


class RebalanceOperation(Enum):
    """Direction of a rebalance trade relative to the non-intermediary asset."""

    BUY = "buy"
    SELL = "sell"


class ActionStatus(Enum):
    """RebalanceAction lifecycle states."""

    PLANNED = "planned"
    QUOTED = "quoted"
    UNQUOTABLE = "unquotable"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ActionStatus.UNQUOTABLE,
            ActionStatus.SUCCEEDED,
            ActionStatus.FAILED,
            ActionStatus.NOT_ATTEMPTED,
        )


_TRANSITIONS = {
    ActionStatus.PLANNED: {
        ActionStatus.QUOTED,
        ActionStatus.UNQUOTABLE,
        ActionStatus.NOT_ATTEMPTED,
    },
    ActionStatus.QUOTED: {ActionStatus.EXECUTING, ActionStatus.NOT_ATTEMPTED},
    ActionStatus.EXECUTING: {ActionStatus.SUCCEEDED, ActionStatus.FAILED},
}


@dataclass(frozen=True)
class Asset:
    """A token holding inside a portfolio snapshot.

    Attributes:
        mint: Token mint address
        symbol: Token symbol
        decimals: Number of decimals of the raw amount
        raw_balance: Balance in raw (integer) units
        price: USD price per whole token
    """

    mint: str
    symbol: str
    decimals: int
    raw_balance: int
    price: float

    @classmethod
    def from_amount(
        cls, mint: str, symbol: str, decimals: int, amount: float, price: float
    ) -> "Asset":
        """Build an Asset from a human-unit balance."""
        return cls(
            mint=mint,
            symbol=symbol,
            decimals=decimals,
            raw_balance=int(round(amount * (10 ** decimals))),
            price=price,
        )

    @property
    def balance(self) -> float:
        """Balance in whole-token units."""
        return self.raw_balance / (10 ** self.decimals)

    @property
    def usd_value(self) -> float:
        return self.balance * self.price


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Point-in-time holdings of one wallet.

    Attributes:
        wallet: Owner wallet public key
        assets: Held assets (zero balances allowed)
        timestamp: When the snapshot was taken
    """

    wallet: str
    assets: Tuple[Asset, ...]
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        object.__setattr__(self, "assets", tuple(self.assets))

    @property
    def total_value(self) -> float:
        return sum(asset.usd_value for asset in self.assets)

    def find(self, mint: str) -> Optional[Asset]:
        for asset in self.assets:
            if asset.mint == mint:
                return asset
        return None

    def find_symbol(self, symbol: str) -> Optional[Asset]:
        for asset in self.assets:
            if asset.symbol == symbol:
                return asset
        return None

    @property
    def mints(self) -> List[str]:
        return [asset.mint for asset in self.assets]


@dataclass(frozen=True)
class TargetAllocation:
    """Configured target weight for one token.

    Attributes:
        mint: Token mint address
        target_percentage: Target share of portfolio value, 0-100
        max_deviation: Per-token tolerance in percentage points; falls back
            to the agent's rebalance threshold when None
        symbol: Optional symbol, used when the token is not held
        decimals: Optional decimals, used when the token is not held
    """

    mint: str
    target_percentage: float
    max_deviation: Optional[float] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None


@dataclass(frozen=True)
class AllocationDeviation:
    """Current vs. target percentage for one token.

    difference = current_percentage - target_percentage; positive means
    over-allocated.
    """

    mint: str
    symbol: str
    current_percentage: float
    target_percentage: float
    difference: float
    max_deviation: Optional[float] = None


@dataclass(frozen=True)
class RebalanceAction:
    """One swap in a rebalance plan.

    Attributes:
        index: Position of the action in its plan (execution order)
        operation: BUY or SELL
        from_mint / from_symbol: Asset being spent
        to_mint / to_symbol: Asset being acquired
        amount: Amount of the from-asset, whole-token units
        current_percentage / target_percentage / deviation: Allocation
            figures of the non-intermediary asset that triggered the action
        quote: Venue quote once resolved
        estimated_output: Expected to-asset amount, whole-token units
        price_impact: Quote price impact in percent
        status: Lifecycle state
        error: Reason for UNQUOTABLE / FAILED
    """

    index: int
    operation: RebalanceOperation
    from_mint: str
    from_symbol: str
    to_mint: str
    to_symbol: str
    amount: float
    current_percentage: float
    target_percentage: float
    deviation: float
    quote: Optional[Quote] = None
    estimated_output: Optional[float] = None
    price_impact: Optional[float] = None
    status: ActionStatus = ActionStatus.PLANNED
    error: Optional[str] = None

    def __post_init__(self):
        if self.from_mint == self.to_mint:
            raise ValueError(f"Action {self.index} swaps {self.from_symbol} into itself")
        if self.amount <= 0:
            raise ValueError(f"amount must be positive, got {self.amount}")

    def describe(self) -> str:
        return f"{self.operation.value} {self.from_symbol} to {self.to_symbol}"

    def transition(self, status: ActionStatus, **changes) -> "RebalanceAction":
        """Return a copy in `status`.

        Raises:
            ValueError: If the lifecycle does not allow the transition
        """
        if status not in _TRANSITIONS.get(self.status, set()):
            raise ValueError(
                f"Action {self.index} cannot move from {self.status.value} to {status.value}"
            )
        return replace(self, status=status, **changes)

    def with_quote(self, quote: Quote, output_decimals: int) -> "RebalanceAction":
        return self.transition(
            ActionStatus.QUOTED,
            quote=quote,
            estimated_output=quote.output_amount(output_decimals),
            price_impact=quote.price_impact_pct,
            error=None,
        )

    def unquotable(self, reason: str) -> "RebalanceAction":
        return self.transition(ActionStatus.UNQUOTABLE, error=reason)


@dataclass(frozen=True)
class RebalancePlan:
    """Ordered actions for one wallet, indexed by action.index.

    Attributes:
        wallet: Owner wallet
        intermediary_mint: Asset every trade is routed through
        actions: Actions in execution order (sells before buys)
        total_value: Portfolio value the plan was computed from
    """

    wallet: str
    intermediary_mint: str
    actions: Tuple[RebalanceAction, ...] = ()
    total_value: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "actions", tuple(self.actions))
        for position, action in enumerate(self.actions):
            if action.index != position:
                raise ValueError(
                    f"Action at position {position} has index {action.index}"
                )

    def __len__(self) -> int:
        return len(self.actions)

    def __iter__(self):
        return iter(self.actions)

    def with_actions(self, actions: Iterable[RebalanceAction]) -> "RebalancePlan":
        return replace(self, actions=tuple(actions))

    def with_action(self, action: RebalanceAction) -> "RebalancePlan":
        actions = list(self.actions)
        actions[action.index] = action
        return replace(self, actions=tuple(actions))

    def by_status(self, status: ActionStatus) -> List[RebalanceAction]:
        return [a for a in self.actions if a.status == status]

    @property
    def executable(self) -> List[RebalanceAction]:
        return self.by_status(ActionStatus.QUOTED)

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for action in self.actions:
            counts[action.status.value] = counts.get(action.status.value, 0) + 1
        return counts
