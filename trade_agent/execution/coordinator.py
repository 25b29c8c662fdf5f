"""Sequential swap execution with per-action failure capture.

For each quoted action, in plan order:
1. Build the swap transaction from the stored quote
2. Sign, submit and await confirmation (each call under a timeout)
3. On success record the trade in the ledger (best-effort)
4. Notify the outcome, then wait the inter-action delay

A failing action is recorded and the session moves on; only setup errors
(wallet mismatch, busy wallet) propagate. The wallet lock is held for the
whole loop, either here or by a caller that took it before reading the
snapshot (lock_held).
"""

import asyncio
from contextlib import nullcontext
from datetime import datetime
from typing import Callable, Optional, Sequence

from trade_agent.execution.base import (
    ActionOutcome,
    CancellationToken,
    ExecutionOptions,
    RebalanceResult,
    SessionState,
    Signer,
    WalletLockRegistry,
)
from trade_agent.ledger.base import REBALANCE_STRATEGY_ID, LedgerClient, TradeRecord
from trade_agent.notifications.base import (
    Notification,
    NotificationLink,
    NotificationSink,
    NotificationType,
)
from trade_agent.portfolio.base import ActionStatus, RebalanceAction, RebalancePlan
from trade_agent.strategy.base import TradeRecommendation
from trade_agent.utils.exceptions import ExecutionError, ValidationError
from trade_agent.utils.logging import get_logger, log_with_context
from trade_agent.venue.base import SwapVenue

logger = get_logger(__name__)


def rebalance_reason(action: RebalanceAction) -> str:
    return f"Portfolio rebalance: {action.describe()}"


class ExecutionCoordinator:
    """Executes rebalance plans and accepted recommendations.

    Args:
        venue: Swap venue used to build, submit and confirm transactions
        ledger: Trade ledger; None disables recording
        notifier: Sink for per-action and summary notifications
        locks: Per-wallet lock registry shared by every session of this process
        options: Default execution options

    Example:
        >>> coordinator = ExecutionCoordinator(venue, ledger, LoggingSink())
        >>> result = await coordinator.execute_plan(quoted_plan, signer)
        >>> result.state
        <SessionState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        venue: SwapVenue,
        ledger: Optional[LedgerClient],
        notifier: NotificationSink,
        locks: Optional[WalletLockRegistry] = None,
        options: Optional[ExecutionOptions] = None,
    ):
        self.venue = venue
        self.ledger = ledger
        self.notifier = notifier
        self.locks = locks or WalletLockRegistry()
        self.options = options or ExecutionOptions()

    async def execute_plan(
        self,
        plan: RebalancePlan,
        signer: Signer,
        options: Optional[ExecutionOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
        lock_held: bool = False,
    ) -> RebalanceResult:
        """Execute every quoted action of a plan in order.

        Args:
            plan: Quoted plan
            signer: Signer owning the plan's wallet
            options: Overrides the default execution options
            cancel_token: Checked between actions
            lock_held: The caller already holds the wallet lock, so the
                snapshot, plan and execution all belong to one session

        Raises:
            ValidationError: If the signer does not own the plan's wallet
            SessionBusyError: If try_acquire is set and the wallet is busy
            ExecutionError: If lock_held is set but the wallet lock is free
        """
        return await self._execute(
            plan.wallet,
            plan.actions,
            signer,
            options or self.options,
            cancel_token or CancellationToken(),
            strategy_id=REBALANCE_STRATEGY_ID,
            reason_for=rebalance_reason,
            label="rebalance",
            lock_held=lock_held,
        )

    async def execute_recommendation(
        self,
        wallet: str,
        recommendation: TradeRecommendation,
        signer: Signer,
        options: Optional[ExecutionOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RebalanceResult:
        """Execute one accepted, quoted recommendation.

        Raises:
            ValidationError: If the recommendation has no quote or the
                signer does not own the wallet
        """
        if recommendation.quote is None:
            raise ValidationError(f"Recommendation {recommendation.describe()} has no quote")
        return await self._execute(
            wallet,
            [recommendation.to_action()],
            signer,
            options or self.options,
            cancel_token or CancellationToken(),
            strategy_id=recommendation.strategy_id,
            reason_for=lambda _: recommendation.reason or recommendation.describe(),
            label=recommendation.strategy_name,
        )

    async def _execute(
        self,
        wallet: str,
        actions: Sequence[RebalanceAction],
        signer: Signer,
        options: ExecutionOptions,
        cancel_token: CancellationToken,
        strategy_id: str,
        reason_for: Callable[[RebalanceAction], str],
        label: str,
        lock_held: bool = False,
    ) -> RebalanceResult:
        if signer.public_key != wallet:
            raise ValidationError(
                f"Signer {signer.public_key} cannot execute for wallet {wallet}"
            )

        if lock_held and not self.locks.is_locked(wallet):
            raise ExecutionError(f"Wallet lock for {wallet} is not held")
        guard = (
            nullcontext()
            if lock_held
            else self.locks.hold(wallet, try_acquire=options.try_acquire)
        )

        async with guard:
            result = RebalanceResult(wallet=wallet, total_planned=len(actions))
            executable = sum(1 for a in actions if a.status == ActionStatus.QUOTED)

            await self._notify(
                NotificationType.INFO,
                f"Starting {label}",
                f"Starting {label} with {executable} actions",
                wallet,
            )

            attempted = 0
            for action in actions:
                if action.status == ActionStatus.PLANNED:
                    action = action.unquotable("Action was never quoted")

                if action.status == ActionStatus.UNQUOTABLE:
                    outcome = ActionOutcome(action=action, error=action.error)
                    result.record(outcome)
                    await self._notify_outcome(outcome, wallet)
                    continue

                if attempted > 0 and not cancel_token.is_cancelled:
                    await cancel_token.wait(options.inter_action_delay)

                if cancel_token.is_cancelled:
                    result.cancelled = True
                    result.record(ActionOutcome(action=action.transition(ActionStatus.NOT_ATTEMPTED)))
                    continue

                attempted += 1
                outcome = await self._execute_action(action, signer, options, wallet)
                result.record(outcome)

                if outcome.succeeded:
                    await self._record_trade(outcome, wallet, strategy_id, reason_for(action), options)
                await self._notify_outcome(outcome, wallet)

            result.finished_at = datetime.now()

        log_with_context(
            logger,
            "info" if result.success else "warning",
            f"Session finished: {result.summary()}",
            wallet=wallet,
            state=result.state.value,
            cancelled=result.cancelled or None,
        )
        await self._notify_summary(result, label)
        return result

    async def _execute_action(
        self,
        action: RebalanceAction,
        signer: Signer,
        options: ExecutionOptions,
        wallet: str,
    ) -> ActionOutcome:
        executing = action.transition(ActionStatus.EXECUTING)
        signature: Optional[str] = None
        stage = "build"

        try:
            transaction = await asyncio.wait_for(
                self.venue.build_swap_transaction(action.quote, signer.public_key, options.swap),
                timeout=options.call_timeout,
            )
            stage = "sign"
            signed = await asyncio.wait_for(signer.sign(transaction), timeout=options.call_timeout)
            stage = "submit"
            submitted = await asyncio.wait_for(
                self.venue.submit_signed(signed), timeout=options.call_timeout
            )
            if not submitted.success or not submitted.signature:
                raise ExecutionError(f"Submission rejected: {submitted.error or 'no signature'}")
            signature = submitted.signature

            stage = "confirm"
            confirmed = await asyncio.wait_for(
                self.venue.confirm_transaction(signature), timeout=options.confirm_timeout
            )
            if not confirmed.success:
                raise ExecutionError(confirmed.error or "Transaction failed")

        except asyncio.TimeoutError:
            error = f"{stage} timed out"
        except Exception as e:
            error = f"{stage} failed: {e}"
        else:
            log_with_context(
                logger,
                "info",
                f"Swap confirmed: {action.describe()}",
                wallet=wallet,
                action=action.index,
                amount=action.amount,
                signature=signature,
            )
            return ActionOutcome(
                action=executing.transition(ActionStatus.SUCCEEDED),
                signature=signature,
                estimated_output=action.estimated_output,
                link=options.explorer_link(signature),
            )

        log_with_context(
            logger,
            "error",
            f"Swap failed: {action.describe()}: {error}",
            wallet=wallet,
            action=action.index,
            signature=signature,
        )
        return ActionOutcome(
            action=executing.transition(ActionStatus.FAILED, error=error),
            signature=signature,
            error=error,
            link=options.explorer_link(signature) if signature else None,
        )

    async def _record_trade(
        self,
        outcome: ActionOutcome,
        wallet: str,
        strategy_id: str,
        reason: str,
        options: ExecutionOptions,
    ) -> None:
        if self.ledger is None:
            return
        action = outcome.action
        record = TradeRecord(
            wallet=wallet,
            strategy_id=strategy_id,
            from_mint=action.from_mint,
            to_mint=action.to_mint,
            input_amount=action.amount,
            output_amount=outcome.estimated_output or 0.0,
            slippage_bps=options.slippage_bps,
            reason=reason,
            signature=outcome.signature,
        )
        try:
            await self.ledger.record_trade(record)
        except Exception as e:
            # The swap is already on-chain; the outcome stays SUCCEEDED
            log_with_context(
                logger,
                "warning",
                f"Failed to record trade: {e}",
                wallet=wallet,
                action=action.index,
                signature=outcome.signature,
            )

    async def _notify(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        wallet: str,
        link: Optional[str] = None,
    ) -> None:
        notification = Notification(
            type=notification_type,
            title=title,
            message=message,
            link=NotificationLink(url=link) if link else None,
            wallet=wallet,
        )
        try:
            await self.notifier.notify(notification)
        except Exception as e:
            logger.warning("Notification '%s' not delivered: %s", title, e)

    async def _notify_outcome(self, outcome: ActionOutcome, wallet: str) -> None:
        action = outcome.action
        if action.status == ActionStatus.SUCCEEDED:
            output = (
                f" for an estimated {outcome.estimated_output:.6g} {action.to_symbol}"
                if outcome.estimated_output is not None
                else ""
            )
            await self._notify(
                NotificationType.SUCCESS,
                "Swap executed",
                f"Swapped {action.amount:.6g} {action.from_symbol}{output}",
                wallet,
                outcome.link,
            )
        elif action.status == ActionStatus.FAILED:
            await self._notify(
                NotificationType.ERROR,
                "Swap failed",
                f"Failed to {action.describe()}: {outcome.error}",
                wallet,
                outcome.link,
            )
        elif action.status == ActionStatus.UNQUOTABLE:
            await self._notify(
                NotificationType.WARNING,
                "Swap skipped",
                f"No quote to {action.describe()}: {outcome.error}",
                wallet,
            )

    async def _notify_summary(self, result: RebalanceResult, label: str) -> None:
        state = result.state
        if state == SessionState.COMPLETED:
            notification_type = NotificationType.SUCCESS
        elif state == SessionState.PARTIALLY_COMPLETED:
            notification_type = NotificationType.WARNING
        else:
            notification_type = NotificationType.ERROR
        await self._notify(
            notification_type,
            f"{label.capitalize()} {state.value.replace('_', ' ')}",
            result.summary(),
            result.wallet,
        )
