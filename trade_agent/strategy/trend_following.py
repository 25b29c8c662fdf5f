"""Trend following strategy.

Bullish: move part of each stable balance into the highest-beta token
(beta >= `min_beta` against the benchmark).
Bearish: move half of each volatile holding worth at least
`min_holding_value` USD into a stablecoin, keeping the gas-reserve asset.
"""

from typing import List, Optional

from trade_agent.data.base import MarketTrend
from trade_agent.portfolio.base import RebalanceOperation
from trade_agent.strategy.base import (
    SignalStrategy,
    StrategyContext,
    StrategyType,
    TradeRecommendation,
)
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)


class TrendFollowingStrategy(SignalStrategy):
    """Allocate with the overall market trend.

    Parameters:
        - fraction (float): Share of stable balance spent on the buy (default: 0.25)
        - min_beta (float): Minimum beta for the buy target (default: 1.2)
        - sell_fraction (float): Share of a holding sold (default: 0.5)
        - min_holding_value (float): USD value below which holdings are kept (default: 20)
        - min_stable_balance (float): Stable balances below this are skipped (default: 10)
        - buy_confidence / sell_confidence (float): Strategy priors (default: 80 / 85)
    """

    strategy_type = StrategyType.TREND_FOLLOWING
    default_params = {
        "fraction": 0.25,
        "min_beta": 1.2,
        "sell_fraction": 0.5,
        "min_holding_value": 20.0,
        "min_stable_balance": 10.0,
        "buy_confidence": 80.0,
        "sell_confidence": 85.0,
        "gas_symbol": "SOL",
    }

    def validate_params(self) -> None:
        super().validate_params()
        if not 0 < self.params["sell_fraction"] <= 1:
            raise ValueError("'sell_fraction' must be in (0, 1]")
        if self.params["min_holding_value"] < 0:
            raise ValueError("'min_holding_value' must be >= 0")

    def high_beta_token(self, context: StrategyContext) -> Optional[str]:
        """Tradable non-stable token with the highest beta >= min_beta."""
        candidates = [
            (mint, value)
            for mint, value in context.betas.items()
            if value >= self.params["min_beta"]
            and not context.is_stable(mint)
            and context.tradable(mint)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda item: item[1])[0]

    def generate(self, context: StrategyContext) -> List[TradeRecommendation]:
        if context.trend == MarketTrend.BULLISH:
            return self._buy_high_beta(context)
        if context.trend == MarketTrend.BEARISH:
            return self._move_to_stables(context)
        return []

    def _buy_high_beta(self, context: StrategyContext) -> List[TradeRecommendation]:
        target = self.high_beta_token(context)
        if target is None:
            return []

        recommendations = []
        for stable in context.stable_holdings(self.params["min_stable_balance"]):
            amount = context.sized_amount(stable, self.params["fraction"])
            if amount <= 0:
                continue
            recommendations.append(
                self._draft(
                    context,
                    RebalanceOperation.BUY,
                    input_mint=stable.mint,
                    output_mint=target,
                    amount=amount,
                    base_confidence=self.params["buy_confidence"],
                    reason=f"Buy high-beta {context.symbol(target)} to follow bullish market trend",
                )
            )
        return recommendations

    def _move_to_stables(self, context: StrategyContext) -> List[TradeRecommendation]:
        target = self._sell_target(context)
        if not target:
            return []

        recommendations = []
        for asset in context.snapshot.assets:
            if (
                context.is_stable(asset.mint)
                or asset.mint == context.native_mint
                or asset.symbol == self.params["gas_symbol"]
                or not context.tradable(asset.mint)
                or asset.usd_value < self.params["min_holding_value"]
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
                    base_confidence=self.params["sell_confidence"],
                    reason=f"Sell {asset.symbol} to move to stablecoins in bearish market trend",
                )
            )
        return recommendations
