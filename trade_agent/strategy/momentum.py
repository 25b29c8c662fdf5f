"""Momentum trading strategy.

Only acts in a trending market. Tokens are ranked by

    score = clamp(0.4 * dp24h + 0.3 * dp7d + 0.3 * dvol24h + 50, 0, 100)

Bullish: buy the top tokens scoring above `buy_threshold` with stablecoins.
Bearish: sell part of held tokens scoring below `sell_threshold` into a
stablecoin, with base confidence 80 - score.
"""

from typing import Dict, List

from trade_agent.data.base import MarketTrend
from trade_agent.portfolio.base import RebalanceOperation
from trade_agent.strategy.base import (
    SignalStrategy,
    StrategyContext,
    StrategyType,
    TradeRecommendation,
)
from trade_agent.strategy.indicators import momentum_score
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)


class MomentumStrategy(SignalStrategy):
    """Follow short-term price and volume momentum.

    Parameters:
        - fraction (float): Share of stable balance spent per buy (default: 0.15)
        - buy_threshold (float): Minimum score to buy (default: 70)
        - sell_threshold (float): Maximum score to sell (default: 30)
        - max_buys (int): Number of top tokens bought (default: 3)
        - sell_fraction (float): Share of a holding sold (default: 0.5)
        - min_stable_balance (float): Stable balances below this are skipped (default: 10)
    """

    strategy_type = StrategyType.MOMENTUM
    default_params = {
        "fraction": 0.15,
        "buy_threshold": 70.0,
        "sell_threshold": 30.0,
        "max_buys": 3,
        "sell_fraction": 0.5,
        "min_stable_balance": 10.0,
    }

    def validate_params(self) -> None:
        super().validate_params()
        if not 0 <= self.params["sell_threshold"] < self.params["buy_threshold"] <= 100:
            raise ValueError("'sell_threshold' must be below 'buy_threshold', both in [0, 100]")
        if self.params["max_buys"] < 1:
            raise ValueError("'max_buys' must be >= 1")
        if not 0 < self.params["sell_fraction"] <= 1:
            raise ValueError("'sell_fraction' must be in (0, 1]")

    def scores(self, context: StrategyContext) -> Dict[str, float]:
        """Momentum score for every token with metrics."""
        return {
            mint: momentum_score(m.price_change_24h, m.price_change_7d, m.volume_change_24h)
            for mint, m in context.metrics.items()
        }

    def generate(self, context: StrategyContext) -> List[TradeRecommendation]:
        if context.trend == MarketTrend.BULLISH:
            return self._buy_leaders(context)
        if context.trend == MarketTrend.BEARISH:
            return self._sell_laggards(context)
        return []

    def _buy_leaders(self, context: StrategyContext) -> List[TradeRecommendation]:
        leaders = sorted(
            (
                (mint, score)
                for mint, score in self.scores(context).items()
                if score > self.params["buy_threshold"]
                and not context.is_stable(mint)
                and context.tradable(mint)
            ),
            key=lambda item: item[1],
            reverse=True,
        )[: self.params["max_buys"]]
        if not leaders:
            return []

        recommendations = []
        for stable in context.stable_holdings(self.params["min_stable_balance"]):
            amount = context.sized_amount(stable, self.params["fraction"])
            if amount <= 0:
                continue
            for mint, score in leaders:
                recommendations.append(
                    self._draft(
                        context,
                        RebalanceOperation.BUY,
                        input_mint=stable.mint,
                        output_mint=mint,
                        amount=amount,
                        base_confidence=score,
                        reason=f"Buy {context.symbol(mint)} based on strong upward momentum",
                    )
                )
        return recommendations

    def _sell_laggards(self, context: StrategyContext) -> List[TradeRecommendation]:
        target = self._sell_target(context)
        if not target:
            return []

        scores = self.scores(context)
        recommendations = []
        for asset in context.snapshot.assets:
            score = scores.get(asset.mint)
            if (
                score is None
                or score >= self.params["sell_threshold"]
                or asset.raw_balance <= 0
                or context.is_stable(asset.mint)
                or not context.tradable(asset.mint)
            ):
                continue
            amount = context.sized_amount(asset, self.params["sell_fraction"])
            if amount <= 0:
                continue
            recommendations.append(
                self._draft(
                    context,
                    RebalanceOperation.SELL,
                    input_mint=asset.mint,
                    output_mint=target,
                    amount=amount,
                    base_confidence=80 - score,
                    reason=f"Sell {asset.symbol} due to downward momentum in bearish market",
                )
            )
        return recommendations
