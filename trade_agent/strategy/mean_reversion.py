"""Mean reversion strategy.

Buys tokens whose 14-period RSI is below 30 (oversold). The bounce score

    min(100, max(0, (30 - rsi) * 3 + 30))

ranks candidates and is the strategy's base confidence.
"""

from typing import List

from trade_agent.data.base import USDC_MINT
from trade_agent.portfolio.base import RebalanceOperation
from trade_agent.strategy.base import (
    SignalStrategy,
    StrategyContext,
    StrategyType,
    TradeRecommendation,
)
from trade_agent.strategy.indicators import OVERSOLD_RSI, bounce_score
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)


class MeanReversionStrategy(SignalStrategy):
    """Buy oversold tokens expecting a bounce.

    Parameters:
        - fraction (float): Share of stable balance spent per buy (default: 0.20)
        - min_stable_balance (float): Stable balances below this are skipped (default: 10)
    """

    strategy_type = StrategyType.MEAN_REVERSION
    default_params = {"fraction": 0.20, "min_stable_balance": 10.0}

    def generate(self, context: StrategyContext) -> List[TradeRecommendation]:
        oversold = sorted(
            (
                (mint, bounce_score(indicators.rsi))
                for mint, indicators in context.indicators.items()
                if indicators.rsi < OVERSOLD_RSI
                and not context.is_stable(mint)
                and context.tradable(mint)
            ),
            key=lambda item: item[1],
            reverse=True,
        )
        if not oversold:
            return []

        stables = context.stable_holdings(self.params["min_stable_balance"])
        if len(stables) > 1:
            # One funding stablecoin: USDC when held, else the largest
            usdc = [s for s in stables if s.mint == USDC_MINT]
            stables = usdc or [max(stables, key=lambda s: s.usd_value)]

        recommendations = []
        for stable in stables:
            amount = context.sized_amount(stable, self.params["fraction"])
            if amount <= 0:
                continue
            for mint, score in oversold:
                recommendations.append(
                    self._draft(
                        context,
                        RebalanceOperation.BUY,
                        input_mint=stable.mint,
                        output_mint=mint,
                        amount=amount,
                        base_confidence=score,
                        reason=(
                            f"Buy {context.symbol(mint)} based on oversold conditions, "
                            "expecting mean reversion"
                        ),
                    )
                )
        return recommendations
