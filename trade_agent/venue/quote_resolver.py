"""Quote resolution for planned trades.

Converts human-unit amounts to raw units (floor), asks the venue for an
ExactIn quote with a bounded number of retries, and enriches actions with
the result. Quotes for independent actions are fetched concurrently,
bounded by a semaphore.
"""

import asyncio
from decimal import ROUND_FLOOR, Decimal
from typing import Mapping, Optional

from trade_agent.portfolio.base import ActionStatus, RebalanceAction, RebalancePlan
from trade_agent.utils.exceptions import ConfigurationError
from trade_agent.utils.logging import get_logger, log_with_context
from trade_agent.venue.base import QuoteOk, QuoteResult, QuoteUnavailable, SwapVenue

logger = get_logger(__name__)

DEFAULT_DECIMALS = 9


def to_raw_amount(amount: float, decimals: int) -> int:
    """Convert a human-unit amount to raw integer units, rounding down.

    Example:
        >>> to_raw_amount(1.9999999999, 9)
        1999999999
    """
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


class QuoteResolver:
    """Fetches venue quotes for planned actions.

    Args:
        venue: Swap venue to quote against
        slippage_bps: Slippage tolerance sent with every quote
        max_retries: Extra attempts after a retryable failure (default 1)
        concurrency: Max quotes in flight at once
        timeout: Seconds allowed per quote attempt

    Example:
        >>> resolver = QuoteResolver(venue, slippage_bps=50)
        >>> quoted_plan = await resolver.resolve_plan(plan, decimals)
    """

    def __init__(
        self,
        venue: SwapVenue,
        slippage_bps: int = 50,
        max_retries: int = 1,
        concurrency: int = 4,
        timeout: float = 10.0,
    ):
        if not 0 <= slippage_bps <= 10_000:
            raise ConfigurationError(f"slippage_bps must be in [0, 10000], got {slippage_bps}")
        if max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {max_retries}")
        if concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {concurrency}")

        self.venue = venue
        self.slippage_bps = slippage_bps
        self.max_retries = max_retries
        self.concurrency = concurrency
        self.timeout = timeout

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: float,
        input_decimals: int,
        slippage_bps: Optional[int] = None,
    ) -> QuoteResult:
        """Quote `amount` (human units) of input_mint into output_mint.

        Returns QuoteUnavailable after the retry budget is spent; never
        raises for venue failures or timeouts.
        """
        raw_amount = to_raw_amount(amount, input_decimals)
        if raw_amount <= 0:
            return QuoteUnavailable(reason=f"Amount {amount} rounds to zero raw units")

        slippage = self.slippage_bps if slippage_bps is None else slippage_bps
        result: QuoteResult = QuoteUnavailable(reason="No quote attempted")

        for attempt in range(self.max_retries + 1):
            try:
                result = await asyncio.wait_for(
                    self.venue.get_quote(input_mint, output_mint, raw_amount, slippage),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                result = QuoteUnavailable(
                    reason=f"Quote timed out after {self.timeout}s", retryable=True
                )

            if isinstance(result, QuoteOk) or not result.retryable:
                return result

            logger.debug(
                "Retryable quote failure %s -> %s (attempt %d/%d): %s",
                input_mint,
                output_mint,
                attempt + 1,
                self.max_retries + 1,
                result.reason,
            )

        return result

    async def resolve_action(
        self,
        action: RebalanceAction,
        input_decimals: int,
        output_decimals: int,
        slippage_bps: Optional[int] = None,
    ) -> RebalanceAction:
        """Return the action in QUOTED or UNQUOTABLE state."""
        if action.status != ActionStatus.PLANNED:
            return action

        result = await self.quote(
            action.from_mint, action.to_mint, action.amount, input_decimals, slippage_bps
        )

        if isinstance(result, QuoteOk):
            return action.with_quote(result.quote, output_decimals)

        log_with_context(
            logger,
            "warning",
            f"Action unquotable: {result.reason}",
            action=action.index,
            trade=action.describe(),
        )
        return action.unquotable(result.reason)

    async def resolve_plan(
        self,
        plan: RebalancePlan,
        decimals: Mapping[str, int],
        slippage_bps: Optional[int] = None,
    ) -> RebalancePlan:
        """Quote every planned action concurrently; order is preserved.

        Args:
            plan: Plan whose actions are PLANNED
            decimals: Decimals by mint for every asset the plan touches
            slippage_bps: Overrides the resolver default for this plan

        Returns:
            New plan with each action QUOTED or UNQUOTABLE
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def resolve(action: RebalanceAction) -> RebalanceAction:
            async with semaphore:
                return await self.resolve_action(
                    action,
                    decimals.get(action.from_mint, DEFAULT_DECIMALS),
                    decimals.get(action.to_mint, DEFAULT_DECIMALS),
                    slippage_bps,
                )

        resolved = await asyncio.gather(*(resolve(a) for a in plan.actions))
        quoted_plan = plan.with_actions(resolved)

        logger.info(
            "Quoted %d/%d actions for %s",
            len(quoted_plan.executable),
            len(quoted_plan),
            plan.wallet,
        )
        return quoted_plan
