"""Execution session model.

This module defines what an execution session produces and the
collaborators it needs:
- RebalanceResult: per-action outcomes plus aggregate counts
- ExecutionOptions: slippage, priority fees, timeouts and pacing
- CancellationToken: between-action abort signal
- WalletLockRegistry: one live session per wallet
- Signer: the transaction signing capability

Counting rules for a plan of N actions where U were unquotable, K failed
during execution and C were never started because of cancellation:

    executed = N - K - U - C
    failed = K
    skipped = U
    not_attempted = C
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from trade_agent.portfolio.base import ActionStatus, RebalanceAction
from trade_agent.utils.exceptions import PartialFailureError, SessionBusyError
from trade_agent.venue.base import SwapOptions, SwapTransaction


class SessionState(Enum):
    """RebalanceSession lifecycle states."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionState.COMPLETED,
            SessionState.PARTIALLY_COMPLETED,
            SessionState.FAILED,
        )


@dataclass(frozen=True)
class ExecutionOptions:
    """Per-session execution settings.

    Attributes:
        slippage_bps: Slippage tolerance in basis points
        swap: Venue transaction-building options (priority fees etc.)
        inter_action_delay: Seconds to wait between actions
        call_timeout: Timeout for build / sign / submit calls
        confirm_timeout: Timeout for on-chain confirmation
        explorer_url: Prefix for transaction links in notifications
        try_acquire: Fail with SessionBusyError instead of waiting when
            the wallet already has a live session
    """

    slippage_bps: int = 50
    swap: SwapOptions = field(default_factory=SwapOptions)
    inter_action_delay: float = 2.0
    call_timeout: float = 30.0
    confirm_timeout: float = 60.0
    explorer_url: str = "https://solscan.io/tx/"
    try_acquire: bool = False

    def __post_init__(self):
        if not 0 <= self.slippage_bps <= 10_000:
            raise ValueError(f"slippage_bps must be in [0, 10000], got {self.slippage_bps}")
        if self.inter_action_delay < 0:
            raise ValueError(
                f"inter_action_delay must be >= 0, got {self.inter_action_delay}"
            )
        if self.call_timeout <= 0 or self.confirm_timeout <= 0:
            raise ValueError("call_timeout and confirm_timeout must be positive")

    @classmethod
    def from_config(cls, execution: Dict[str, Any], slippage_bps: int = 50) -> "ExecutionOptions":
        """Build options from the `execution` config section."""
        return cls(
            slippage_bps=slippage_bps,
            swap=SwapOptions(
                dynamic_compute_unit_limit=execution.get("dynamic_compute_unit_limit", True),
                dynamic_slippage=execution.get("dynamic_slippage", True),
                priority_level=execution.get("priority_level", "high"),
                max_priority_lamports=execution.get("max_priority_lamports", 1_000_000),
            ),
            inter_action_delay=execution.get("inter_action_delay", 2.0),
            call_timeout=execution.get("call_timeout", 30.0),
            confirm_timeout=execution.get("confirm_timeout", 60.0),
            explorer_url=execution.get("explorer_url", "https://solscan.io/tx/"),
        )

    def explorer_link(self, signature: str) -> str:
        return f"{self.explorer_url}{signature}"


@dataclass(frozen=True)
class ActionOutcome:
    """Final state of one action in a session.

    Attributes:
        action: The action in its terminal status
        signature: Transaction signature, when one was obtained
        estimated_output: Quoted output in whole to-asset units. The
            confirmed amount is not read back; the venue only guarantees
            the quote's slippage-adjusted minimum
        error: Failure reason
        link: Explorer link for the transaction
    """

    action: RebalanceAction
    signature: Optional[str] = None
    estimated_output: Optional[float] = None
    error: Optional[str] = None
    link: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.action.status == ActionStatus.SUCCEEDED


@dataclass
class RebalanceResult:
    """Aggregate result of one execution session.

    Built incrementally by the coordinator; outcomes are kept in plan order.
    """

    wallet: str
    total_planned: int
    outcomes: List[ActionOutcome] = field(default_factory=list)
    executed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    not_attempted_count: int = 0
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def record(self, outcome: ActionOutcome) -> None:
        """Add an action outcome and update the counters."""
        status = outcome.action.status
        if status == ActionStatus.SUCCEEDED:
            self.executed_count += 1
        elif status == ActionStatus.FAILED:
            self.failed_count += 1
        elif status == ActionStatus.UNQUOTABLE:
            self.skipped_count += 1
        elif status == ActionStatus.NOT_ATTEMPTED:
            self.not_attempted_count += 1
        else:
            raise ValueError(f"Outcome for action {outcome.action.index} is not terminal")

        if outcome.error:
            self.errors.append(f"{outcome.action.describe()}: {outcome.error}")
        self.outcomes.append(outcome)

    @property
    def actions(self) -> List[ActionOutcome]:
        """Successful outcomes, in execution order."""
        return [o for o in self.outcomes if o.succeeded]

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    @property
    def is_complete(self) -> bool:
        return self.failed_count == 0 and self.executed_count == self.total_planned

    @property
    def state(self) -> SessionState:
        """Terminal session state for this result.

        COMPLETED when every planned action executed and FAILED when swaps
        failed with none succeeding. Anything else is PARTIALLY_COMPLETED,
        so unquotable or cancelled actions alone never make a session FAILED.
        """
        if self.is_complete:
            return SessionState.COMPLETED
        if self.executed_count == 0 and self.failed_count > 0:
            return SessionState.FAILED
        return SessionState.PARTIALLY_COMPLETED

    def raise_for_status(self) -> None:
        """Raise PartialFailureError unless every planned action executed."""
        if not self.is_complete:
            raise PartialFailureError(
                f"Rebalance for {self.wallet}: {self.executed_count}/{self.total_planned} "
                f"executed, {self.failed_count} failed",
                result=self,
            )

    def summary(self) -> str:
        text = (
            f"Executed {self.executed_count}/{self.total_planned} actions, "
            f"{self.failed_count} failed"
        )
        if self.skipped_count:
            text += f", {self.skipped_count} unquotable"
        if self.not_attempted_count:
            text += f", {self.not_attempted_count} not attempted"
        return text


class CancellationToken:
    """Between-action abort signal for a session."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True if cancelled meanwhile."""
        if timeout <= 0:
            return self.is_cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


class WalletLockRegistry:
    """One asyncio.Lock per wallet; sessions for different wallets never share one."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, wallet: str) -> asyncio.Lock:
        if wallet not in self._locks:
            self._locks[wallet] = asyncio.Lock()
        return self._locks[wallet]

    def is_locked(self, wallet: str) -> bool:
        return wallet in self._locks and self._locks[wallet].locked()

    @asynccontextmanager
    async def hold(self, wallet: str, try_acquire: bool = False) -> AsyncIterator[None]:
        """Hold the wallet's lock for the duration of the block.

        Raises:
            SessionBusyError: If try_acquire is set and the wallet is busy
        """
        lock = self.lock(wallet)
        if try_acquire and lock.locked():
            raise SessionBusyError(f"A session is already running for wallet {wallet}")
        async with lock:
            yield


class Signer(ABC):
    """Transaction signing capability for one wallet."""

    @property
    @abstractmethod
    def public_key(self) -> str:
        """Base58 public key of the signing wallet."""
        pass

    @abstractmethod
    async def sign(self, transaction: SwapTransaction) -> bytes:
        """Sign a venue transaction and return its serialized bytes."""
        pass
