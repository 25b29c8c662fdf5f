"""Unit tests for the recommendation strategies."""

import pytest

from conftest import BONK_MINT, JUP_MINT, jup, make_snapshot, sol, usdc, usdt
from trade_agent.data.base import (
    SOL_MINT,
    USDC_MINT,
    USDT_MINT,
    AssetMetrics,
    MarketOverview,
    MarketTrend,
    TechnicalIndicators,
    TokenInfo,
)
from trade_agent.portfolio.base import Asset, RebalanceOperation
from trade_agent.strategy.base import StrategyContext, StrategyType
from trade_agent.strategy.dca import DCAStrategy
from trade_agent.strategy.mean_reversion import MeanReversionStrategy
from trade_agent.strategy.momentum import MomentumStrategy
from trade_agent.strategy.trend_following import TrendFollowingStrategy

STABLES = frozenset({USDC_MINT, USDT_MINT})
TOKENS = {
    JUP_MINT: TokenInfo(JUP_MINT, "JUP", 6),
    BONK_MINT: TokenInfo(BONK_MINT, "BONK", 5),
}


def bonk(amount: float, price: float = 0.00002) -> Asset:
    return Asset.from_amount(BONK_MINT, "BONK", 5, amount, price)


def context(snapshot, trend=MarketTrend.SIDEWAYS, **kwargs) -> StrategyContext:
    return StrategyContext(
        snapshot=snapshot,
        market=MarketOverview(trend=trend),
        tokens=TOKENS,
        stable_mints=STABLES,
        native_mint=SOL_MINT,
        **kwargs,
    )


def metrics(mint: str, dp24h: float, dp7d: float = 0.0, dvol: float = 0.0) -> AssetMetrics:
    return AssetMetrics(
        mint=mint,
        symbol=mint[:4],
        price=1.0,
        price_change_24h=dp24h,
        price_change_7d=dp7d,
        volume_change_24h=dvol,
    )


class TestStrategyParams:
    """Test cases for shared parameter validation."""

    @pytest.mark.parametrize("fraction", [0.0, 1.5, -0.1])
    def test_fraction_range(self, fraction) -> None:
        with pytest.raises(ValueError, match="fraction"):
            DCAStrategy("dca", "DCA", {"fraction": fraction})

    def test_momentum_thresholds(self) -> None:
        with pytest.raises(ValueError):
            MomentumStrategy("m", "Momentum", {"buy_threshold": 20.0, "sell_threshold": 30.0})

    def test_defaults_merged(self) -> None:
        strategy = DCAStrategy("dca", "DCA", {"fraction": 0.5})

        assert strategy.params["fraction"] == 0.5
        assert strategy.params["min_stable_balance"] == 10.0


class TestDCAStrategy:
    """Test cases for DCAStrategy."""

    def test_buys_each_preferred_token(self) -> None:
        ctx = context(make_snapshot(usdc(500.0), sol(1.0)), preferred_tokens=(JUP_MINT, BONK_MINT))
        drafts = DCAStrategy("dca", "Weekly DCA").generate(ctx)

        assert [(d.input_mint, d.output_mint) for d in drafts] == [
            (USDC_MINT, JUP_MINT),
            (USDC_MINT, BONK_MINT),
        ]
        first = drafts[0]
        assert first.operation == RebalanceOperation.BUY
        assert first.input_amount == pytest.approx(50.0)
        assert first.base_confidence == 85.0
        assert first.strategy_type == StrategyType.DCA
        assert first.output_symbol == "JUP"
        assert first.output_decimals == 6
        assert first.reason == "Regular DCA purchase of JUP"

    def test_skips_small_stable_balances(self) -> None:
        ctx = context(make_snapshot(usdc(5.0), usdt(100.0)), preferred_tokens=(JUP_MINT,))
        drafts = DCAStrategy("dca", "DCA").generate(ctx)

        assert [d.input_mint for d in drafts] == [USDT_MINT]

    def test_max_amount_per_trade_caps_size(self) -> None:
        ctx = context(
            make_snapshot(usdc(10_000.0)), preferred_tokens=(JUP_MINT,), max_amount_per_trade=200.0
        )
        drafts = DCAStrategy("dca", "DCA").generate(ctx)

        assert drafts[0].input_amount == pytest.approx(200.0)

    def test_never_buys_stables_or_excluded(self) -> None:
        ctx = context(
            make_snapshot(usdc(500.0)),
            preferred_tokens=(USDT_MINT, JUP_MINT),
            excluded_tokens=frozenset({JUP_MINT}),
        )
        assert DCAStrategy("dca", "DCA").generate(ctx) == []


class TestMomentumStrategy:
    """Test cases for MomentumStrategy."""

    def test_sideways_market_does_nothing(self) -> None:
        ctx = context(make_snapshot(usdc(500.0)), metrics={JUP_MINT: metrics(JUP_MINT, 80.0)})
        assert MomentumStrategy("m", "Momentum").generate(ctx) == []

    def test_bullish_buys_top_scorers(self) -> None:
        ctx = context(
            make_snapshot(usdc(1000.0)),
            trend=MarketTrend.BULLISH,
            metrics={
                JUP_MINT: metrics(JUP_MINT, 30.0, 20.0, 10.0),  # 71
                BONK_MINT: metrics(BONK_MINT, 60.0),  # 74
                "Weak111": metrics("Weak111", 5.0),  # 52
                USDT_MINT: metrics(USDT_MINT, 90.0),
            },
        )
        drafts = MomentumStrategy("m", "Momentum", {"max_buys": 2}).generate(ctx)

        assert [d.output_mint for d in drafts] == [BONK_MINT, JUP_MINT]
        assert drafts[0].base_confidence == pytest.approx(74.0)
        assert drafts[0].input_amount == pytest.approx(150.0)

    def test_bearish_sells_laggards(self) -> None:
        ctx = context(
            make_snapshot(usdc(100.0), jup(1000.0), bonk(5_000_000.0)),
            trend=MarketTrend.BEARISH,
            metrics={JUP_MINT: metrics(JUP_MINT, -60.0), BONK_MINT: metrics(BONK_MINT, 0.0)},
        )
        drafts = MomentumStrategy("m", "Momentum").generate(ctx)

        assert len(drafts) == 1
        sell = drafts[0]
        assert sell.operation == RebalanceOperation.SELL
        assert (sell.input_mint, sell.output_mint) == (JUP_MINT, USDC_MINT)
        assert sell.input_amount == pytest.approx(500.0)
        # score 26 -> 80 - 26
        assert sell.base_confidence == pytest.approx(54.0)

    def test_bearish_sells_into_other_stable_when_usdc_excluded(self) -> None:
        ctx = context(
            make_snapshot(jup(1000.0)),
            trend=MarketTrend.BEARISH,
            metrics={JUP_MINT: metrics(JUP_MINT, -60.0)},
            excluded_tokens=frozenset({USDC_MINT}),
        )
        drafts = MomentumStrategy("m", "Momentum").generate(ctx)

        assert drafts[0].output_mint == USDT_MINT


class TestMeanReversionStrategy:
    """Test cases for MeanReversionStrategy."""

    def test_buys_oversold_tokens(self) -> None:
        ctx = context(
            make_snapshot(usdc(1000.0)),
            indicators={
                JUP_MINT: TechnicalIndicators(JUP_MINT, rsi=20.0),
                BONK_MINT: TechnicalIndicators(BONK_MINT, rsi=35.0),
            },
        )
        drafts = MeanReversionStrategy("mr", "Mean Reversion").generate(ctx)

        assert len(drafts) == 1
        assert drafts[0].output_mint == JUP_MINT
        assert drafts[0].base_confidence == pytest.approx(60.0)
        assert drafts[0].input_amount == pytest.approx(200.0)

    def test_rsi_at_30_not_oversold(self) -> None:
        ctx = context(
            make_snapshot(usdc(1000.0)),
            indicators={JUP_MINT: TechnicalIndicators(JUP_MINT, rsi=30.0)},
        )
        assert MeanReversionStrategy("mr", "Mean Reversion").generate(ctx) == []

    def test_most_oversold_first_single_funding_stable(self) -> None:
        ctx = context(
            make_snapshot(usdt(5000.0), usdc(1000.0)),
            indicators={
                JUP_MINT: TechnicalIndicators(JUP_MINT, rsi=25.0),
                BONK_MINT: TechnicalIndicators(BONK_MINT, rsi=10.0),
            },
        )
        drafts = MeanReversionStrategy("mr", "Mean Reversion").generate(ctx)

        assert [d.output_mint for d in drafts] == [BONK_MINT, JUP_MINT]
        assert {d.input_mint for d in drafts} == {USDC_MINT}


class TestTrendFollowingStrategy:
    """Test cases for TrendFollowingStrategy."""

    def test_bullish_buys_highest_beta(self) -> None:
        ctx = context(
            make_snapshot(usdc(1000.0)),
            trend=MarketTrend.BULLISH,
            betas={JUP_MINT: 1.5, BONK_MINT: 2.1, "Low111": 0.8, USDT_MINT: 3.0},
        )
        drafts = TrendFollowingStrategy("tf", "Trend").generate(ctx)

        assert len(drafts) == 1
        assert drafts[0].output_mint == BONK_MINT
        assert drafts[0].input_amount == pytest.approx(250.0)
        assert drafts[0].base_confidence == 80.0

    def test_bullish_without_high_beta(self) -> None:
        ctx = context(make_snapshot(usdc(1000.0)), trend=MarketTrend.BULLISH, betas={JUP_MINT: 1.1})
        assert TrendFollowingStrategy("tf", "Trend").generate(ctx) == []

    def test_bearish_moves_volatile_holdings_to_stables(self) -> None:
        ctx = context(
            make_snapshot(sol(10.0), usdc(100.0), jup(1000.0), bonk(100_000.0)),
            trend=MarketTrend.BEARISH,
        )
        drafts = TrendFollowingStrategy("tf", "Trend").generate(ctx)

        # SOL is the gas reserve, BONK is worth $2
        assert [d.input_mint for d in drafts] == [JUP_MINT]
        assert drafts[0].input_amount == pytest.approx(500.0)
        assert drafts[0].output_mint == USDC_MINT
        assert drafts[0].base_confidence == 85.0
