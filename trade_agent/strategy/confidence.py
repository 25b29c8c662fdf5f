"""Confidence scoring for trade recommendations.

Signals (value in [0, 1], base weight):
- Market trend: 0.8 bullish / 0.2 bearish / 0.5 sideways, weight 0.2
- RSI: rsi / 100, weight 0.2
- Moving averages: 0.8 bullish / 0.2 otherwise, weight 0.3
- Price impact: 1 - impact% / 5 clamped to [0, 1], weight 0.2

Weights are renormalized over the signals present, then

    confidence = round(sum(value * weight) * 100 * risk_multiplier)

clamped to [0, 100]. No signals at all scores 0.
"""

from typing import Dict, List, Optional, Sequence

from trade_agent.data.base import MarketTrend, TechnicalIndicators
from trade_agent.strategy.base import RiskProfile, Signal, SignalImpact, TradeRecommendation

DEFAULT_WEIGHTS: Dict[str, float] = {
    "trend": 0.2,
    "rsi": 0.2,
    "moving_averages": 0.3,
    "price_impact": 0.2,
}

TREND_VALUES = {
    MarketTrend.BULLISH: (0.8, SignalImpact.POSITIVE),
    MarketTrend.BEARISH: (0.2, SignalImpact.NEGATIVE),
    MarketTrend.SIDEWAYS: (0.5, SignalImpact.NEUTRAL),
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ConfidenceScorer:
    """Builds signals for a recommendation and scores them.

    Args:
        weights: Base weights by signal key; defaults to DEFAULT_WEIGHTS

    Example:
        >>> scorer = ConfidenceScorer()
        >>> scored = scorer.apply(draft, MarketTrend.BULLISH, indicators, RiskProfile.MODERATE)
        >>> scored.confidence
        72
    """

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        for key, weight in self.weights.items():
            if weight < 0:
                raise ValueError(f"Weight for '{key}' must be >= 0, got {weight}")

    def build_signals(
        self,
        trend: MarketTrend,
        indicators: Optional[TechnicalIndicators] = None,
        price_impact: Optional[float] = None,
    ) -> List[Signal]:
        """Signals present for this recommendation, with renormalized weights."""
        drafts = []

        value, impact = TREND_VALUES[trend]
        drafts.append(("trend", "Market Trend", value, impact, f"Overall market is currently {trend.value}"))

        if indicators is not None:
            rsi_value = _clamp(indicators.rsi, 0.0, 100.0)
            if rsi_value < 30:
                rsi_impact = SignalImpact.POSITIVE
            elif rsi_value > 70:
                rsi_impact = SignalImpact.NEGATIVE
            else:
                rsi_impact = SignalImpact.NEUTRAL
            drafts.append((
                "rsi",
                "RSI (Relative Strength Index)",
                rsi_value / 100.0,
                rsi_impact,
                f"RSI is {rsi_value:.1f}, indicating {indicators.rsi_signal} conditions",
            ))

            bullish = indicators.ma_signal == "bullish"
            drafts.append((
                "moving_averages",
                "Moving Averages",
                0.8 if bullish else 0.2,
                SignalImpact.POSITIVE if bullish else SignalImpact.NEGATIVE,
                f"Moving averages indicate a {indicators.ma_signal} trend",
            ))

        if price_impact is not None:
            if price_impact > 1:
                impact, level = SignalImpact.NEGATIVE, "high"
            elif price_impact < 0.1:
                impact, level = SignalImpact.POSITIVE, "low"
            else:
                impact, level = SignalImpact.NEUTRAL, "moderate"
            drafts.append((
                "price_impact",
                "Price Impact",
                _clamp(1 - price_impact / 5, 0.0, 1.0),
                impact,
                f"Swap has {level} price impact of {price_impact:.2f}%",
            ))

        total_weight = sum(self.weights[key] for key, *_ in drafts)
        signals = []
        for key, name, value, impact, description in drafts:
            weight = self.weights[key] / total_weight if total_weight > 0 else 0.0
            signals.append(Signal(name=name, value=value, impact=impact, weight=weight, description=description))
        return signals

    @staticmethod
    def score(signals: Sequence[Signal], risk_profile: RiskProfile) -> int:
        """Weighted signal sum scaled to 0-100 by the risk multiplier."""
        weighted_sum = sum(signal.value * signal.weight for signal in signals)
        confidence = round(weighted_sum * 100 * risk_profile.multiplier)
        return int(_clamp(confidence, 0, 100))

    def apply(
        self,
        recommendation: TradeRecommendation,
        trend: MarketTrend,
        indicators: Optional[TechnicalIndicators],
        risk_profile: RiskProfile,
    ) -> TradeRecommendation:
        """Return the recommendation with signals and confidence filled in."""
        signals = self.build_signals(trend, indicators, recommendation.price_impact)
        return recommendation.with_confidence(self.score(signals, risk_profile), signals)
