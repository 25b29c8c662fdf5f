"""Dollar-cost averaging strategy.

Spends a fixed fraction of each held stablecoin on every preferred token,
regardless of market conditions. Base confidence is a fixed moderate
baseline; the confidence scorer adjusts it from signals.
"""

from typing import List

from trade_agent.portfolio.base import RebalanceOperation
from trade_agent.strategy.base import (
    SignalStrategy,
    StrategyContext,
    StrategyType,
    TradeRecommendation,
)
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)


class DCAStrategy(SignalStrategy):
    """Regular purchases of preferred tokens with stablecoin balance.

    Parameters:
        - fraction (float): Share of each stable balance spent per token (default: 0.10)
        - min_stable_balance (float): Stable balances below this are skipped (default: 10)
        - base_confidence (float): Strategy prior (default: 85)
    """

    strategy_type = StrategyType.DCA
    default_params = {"fraction": 0.10, "min_stable_balance": 10.0, "base_confidence": 85.0}

    def generate(self, context: StrategyContext) -> List[TradeRecommendation]:
        targets = [
            mint
            for mint in context.preferred_tokens
            if not context.is_stable(mint) and context.tradable(mint)
        ]
        if not targets:
            return []

        recommendations = []
        for stable in context.stable_holdings(self.params["min_stable_balance"]):
            amount = context.sized_amount(stable, self.params["fraction"])
            if amount <= 0:
                continue
            for mint in targets:
                recommendations.append(
                    self._draft(
                        context,
                        RebalanceOperation.BUY,
                        input_mint=stable.mint,
                        output_mint=mint,
                        amount=amount,
                        base_confidence=self.params["base_confidence"],
                        reason=f"Regular DCA purchase of {context.symbol(mint)}",
                    )
                )

        logger.debug("DCA produced %d drafts", len(recommendations))
        return recommendations
