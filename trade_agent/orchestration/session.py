"""Rebalance session - one analyze → plan → quote → execute cycle for a wallet.

Session lifecycle:

    IDLE → ANALYZING → PLANNING → EXECUTING → {COMPLETED | PARTIALLY_COMPLETED | FAILED}

A setup error while analyzing or planning (invalid snapshot or config, no
intermediary asset) moves the session to FAILED and is re-raised. Once
execution starts, per-action failures are captured in the RebalanceResult
and the terminal state is taken from it.
"""

from dataclasses import replace
from typing import Dict, List, Mapping, Optional

from trade_agent.data.base import TokenInfo
from trade_agent.execution.base import (
    CancellationToken,
    ExecutionOptions,
    RebalanceResult,
    SessionState,
    Signer,
)
from trade_agent.execution.coordinator import ExecutionCoordinator
from trade_agent.ledger.base import AgentConfig
from trade_agent.portfolio.allocation_analyzer import AllocationAnalyzer
from trade_agent.portfolio.base import AllocationDeviation, PortfolioSnapshot, RebalancePlan
from trade_agent.portfolio.rebalance_planner import RebalancePlanner, plan_decimals
from trade_agent.utils.exceptions import ExecutionError, SessionCancelledError
from trade_agent.utils.logging import get_logger, log_with_context
from trade_agent.venue.quote_resolver import QuoteResolver

logger = get_logger(__name__)

_TRANSITIONS: Dict[SessionState, tuple] = {
    SessionState.IDLE: (SessionState.ANALYZING,),
    SessionState.ANALYZING: (SessionState.PLANNING, SessionState.FAILED),
    SessionState.PLANNING: (
        SessionState.EXECUTING,
        SessionState.COMPLETED,
        SessionState.FAILED,
    ),
    SessionState.EXECUTING: (
        SessionState.COMPLETED,
        SessionState.PARTIALLY_COMPLETED,
        SessionState.FAILED,
    ),
}


class RebalanceSession:
    """Drives a single rebalance cycle and tracks its state.

    A session is single-use: create a new one per cycle. The quoted plan is
    available after prepare() so callers can show it before executing
    (dry run).

    Args:
        analyzer: Allocation analyzer
        planner: Rebalance planner
        resolver: Quote resolver
        coordinator: Execution coordinator (owns the wallet lock registry)
        tokens: Token registry used for decimals the snapshot lacks
        options: Execution options; slippage is taken from the agent config

    Example:
        >>> session = RebalanceSession(analyzer, planner, resolver, coordinator)
        >>> plan = await session.prepare(snapshot, agent_config)
        >>> result = await session.execute(signer)
        >>> session.state
        <SessionState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        analyzer: AllocationAnalyzer,
        planner: RebalancePlanner,
        resolver: QuoteResolver,
        coordinator: ExecutionCoordinator,
        tokens: Optional[Mapping[str, TokenInfo]] = None,
        options: Optional[ExecutionOptions] = None,
    ):
        self.analyzer = analyzer
        self.planner = planner
        self.resolver = resolver
        self.coordinator = coordinator
        self.tokens = dict(tokens or {})
        self.options = options or coordinator.options

        self.cancel_token = CancellationToken()
        self.config: Optional[AgentConfig] = None
        self.deviations: List[AllocationDeviation] = []
        self.plan: Optional[RebalancePlan] = None
        self.result: Optional[RebalanceResult] = None
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def wallet(self) -> Optional[str]:
        return self.config.wallet if self.config else None

    def cancel(self) -> None:
        """Stop before the next action; started actions run to completion."""
        self.cancel_token.cancel()

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS.get(self._state, ()):
            raise ExecutionError(
                f"Invalid session transition {self._state.value} -> {new_state.value}"
            )
        logger.debug("Session %s: %s -> %s", self.wallet, self._state.value, new_state.value)
        self._state = new_state

    async def prepare(self, snapshot: PortfolioSnapshot, config: AgentConfig) -> RebalancePlan:
        """Analyze the snapshot, plan the trades and quote every action.

        Returns:
            Plan with each action QUOTED or UNQUOTABLE

        Raises:
            ValidationError: If the snapshot or targets are malformed
            NoIntermediaryAssetError: If no routing asset is held
        """
        self.config = config
        self._transition(SessionState.ANALYZING)
        try:
            self.deviations = self.analyzer.analyze(snapshot, config.target_allocations)

            self._transition(SessionState.PLANNING)
            plan = self.planner.plan(self.deviations, config.rebalance_threshold, snapshot)
        except Exception:
            self._transition(SessionState.FAILED)
            raise

        if plan.actions:
            decimals = plan_decimals(snapshot, config.target_allocations, self.tokens)
            plan = await self.resolver.resolve_plan(plan, decimals, config.max_slippage_bps)

        self.plan = plan
        log_with_context(
            logger,
            "info",
            f"Planned {len(plan)} actions ({len(plan.executable)} quoted)",
            wallet=config.wallet,
            intermediary=plan.intermediary_mint,
            total_value=round(plan.total_value, 2),
        )
        return plan

    async def execute(self, signer: Signer, lock_held: bool = False) -> RebalanceResult:
        """Execute the prepared plan.

        Args:
            signer: Signer owning the wallet
            lock_held: The caller took the wallet lock before reading the
                snapshot this session was prepared from

        Raises:
            ExecutionError: If prepare() has not run
            SessionCancelledError: If cancelled before execution began
            ValidationError: If the signer does not own the wallet
            SessionBusyError: If try_acquire is set and the wallet is busy
        """
        if self.plan is None or self._state != SessionState.PLANNING:
            raise ExecutionError(f"Session is {self._state.value}; call prepare() first")

        if not self.plan.actions:
            self.result = RebalanceResult(wallet=self.plan.wallet, total_planned=0)
            self.result.finished_at = self.result.started_at
            self._transition(SessionState.COMPLETED)
            logger.info("Portfolio %s is within thresholds, nothing to execute", self.plan.wallet)
            return self.result

        if self.cancel_token.is_cancelled:
            self._transition(SessionState.FAILED)
            raise SessionCancelledError(f"Session for {self.plan.wallet} cancelled before execution")

        options = replace(self.options, slippage_bps=self.config.max_slippage_bps)

        self._transition(SessionState.EXECUTING)
        try:
            self.result = await self.coordinator.execute_plan(
                self.plan, signer, options, self.cancel_token, lock_held=lock_held
            )
        except Exception:
            self._transition(SessionState.FAILED)
            raise

        self._transition(self.result.state)
        return self.result

    async def run(
        self,
        snapshot: PortfolioSnapshot,
        config: AgentConfig,
        signer: Signer,
        lock_held: bool = False,
    ) -> RebalanceResult:
        """prepare() then execute()."""
        await self.prepare(snapshot, config)
        return await self.execute(signer, lock_held=lock_held)
