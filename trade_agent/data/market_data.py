"""Market data service: cached history, indicators and market overview.

Every statistical input comes from a MarketDataProvider; this service only
derives values from it and caches them:
- price history per (mint, period), 5 minutes
- technical indicators per mint, 15 minutes
- market overview, 5 minutes

Stale cache entries are served while a background refresh runs.
"""

import asyncio
import statistics
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from trade_agent.data.base import (
    KNOWN_STABLECOINS,
    SOL_MINT,
    AssetMetrics,
    MarketDataProvider,
    MarketOverview,
    MarketTrend,
    TechnicalIndicators,
    TokenInfo,
)
from trade_agent.strategy import indicators as ta
from trade_agent.utils.cache import TTLCache
from trade_agent.utils.exceptions import DataProviderError
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

# Coefficient of variation below which a token is treated as stable
STABLE_CV_THRESHOLD = 0.01


class MarketDataService:
    """Cached market data for strategies and the facade.

    Args:
        provider: Price history provider
        tokens: Known token metadata by mint (watchlist, holdings)
        stable_mints: Extra stablecoin mints on top of the known ones
        benchmark_mint: Asset whose 24h change defines the market trend
        trend_threshold: Benchmark 24h change (percent) separating trends
        beta_table: Configured betas by mint; computed betas fill the gaps
        concurrency: Max provider calls in flight
        history_ttl / indicator_ttl / overview_ttl: Cache TTLs in seconds

    Example:
        >>> service = MarketDataService(BirdeyeProvider(api_key), tokens=registry)
        >>> overview = await service.market_overview(watchlist)
        >>> overview.trend
        <MarketTrend.BULLISH: 'bullish'>
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        tokens: Optional[Mapping[str, TokenInfo]] = None,
        stable_mints: Iterable[str] = (),
        benchmark_mint: str = SOL_MINT,
        trend_threshold: float = 3.0,
        beta_table: Optional[Mapping[str, float]] = None,
        concurrency: int = 4,
        history_ttl: float = 300.0,
        indicator_ttl: float = 900.0,
        overview_ttl: float = 300.0,
    ):
        if trend_threshold < 0:
            raise ValueError(f"trend_threshold must be >= 0, got {trend_threshold}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        self.provider = provider
        self.tokens: Dict[str, TokenInfo] = dict(tokens or {})
        self.stable_mints = set(KNOWN_STABLECOINS) | set(stable_mints)
        self.benchmark_mint = benchmark_mint
        self.trend_threshold = trend_threshold
        self.beta_table = dict(beta_table or {})
        self._semaphore = asyncio.Semaphore(concurrency)

        self._history_cache: TTLCache[pd.DataFrame] = TTLCache("price_history", history_ttl)
        self._indicator_cache: TTLCache[TechnicalIndicators] = TTLCache("indicators", indicator_ttl)
        self._overview_cache: TTLCache[MarketOverview] = TTLCache("market_overview", overview_ttl)
        self._stable_verdicts: Dict[str, bool] = {}

    async def price_history(self, mint: str, period: str) -> pd.DataFrame:
        """Cached price history for a token."""

        async def load() -> pd.DataFrame:
            async with self._semaphore:
                return await self.provider.historical_prices(mint, period)

        return await self._history_cache.get_or_load(f"{mint}:{period}", load)

    async def technical_indicators(self, mint: str) -> TechnicalIndicators:
        """RSI(14) from 7d history; MA50/MA200 and MACD from 30d history."""

        async def load() -> TechnicalIndicators:
            week, month = await asyncio.gather(
                self.price_history(mint, "7d"),
                self.price_history(mint, "30d"),
            )
            rsi_value = ta.latest_rsi(week["price"])
            ma_short, ma_long, ma_signal = ta.moving_average_cross(month["price"])
            return TechnicalIndicators(
                mint=mint,
                rsi=rsi_value,
                rsi_signal=ta.interpret_rsi(rsi_value),
                ma_short=ma_short,
                ma_long=ma_long,
                ma_signal=ma_signal,
                macd_histogram=ta.macd_histogram(month["price"]),
            )

        return await self._indicator_cache.get_or_load(mint, load)

    async def indicators_for(self, mints: Sequence[str]) -> Dict[str, TechnicalIndicators]:
        """Indicators for several tokens; tokens whose data fails are left out."""
        results = await asyncio.gather(
            *(self.technical_indicators(m) for m in mints), return_exceptions=True
        )
        return self._collect(mints, results, "indicators")

    async def asset_metrics(self, mint: str) -> AssetMetrics:
        """24h / 7d price change and 24h volume change for a token."""
        day, week = await asyncio.gather(
            self.price_history(mint, "24h"),
            self.price_history(mint, "7d"),
        )
        price = float(day["price"].iloc[-1]) if not day.empty else 0.0
        return AssetMetrics(
            mint=mint,
            symbol=self.symbol(mint),
            price=price,
            price_change_24h=ta.percent_change(day["price"]),
            price_change_7d=ta.percent_change(week["price"]),
            volume_change_24h=self._volume_change_24h(week),
        )

    async def metrics_for(self, mints: Sequence[str]) -> Dict[str, AssetMetrics]:
        results = await asyncio.gather(
            *(self.asset_metrics(m) for m in mints), return_exceptions=True
        )
        return self._collect(mints, results, "metrics")

    async def market_overview(self, watchlist: Sequence[str]) -> MarketOverview:
        """Trend, volatility and top/bottom performers across the watchlist."""

        async def load() -> MarketOverview:
            mints = list(dict.fromkeys([self.benchmark_mint, *watchlist]))
            metrics = await self.metrics_for(mints)

            benchmark = metrics.get(self.benchmark_mint)
            change = benchmark.price_change_24h if benchmark is not None else 0.0
            if change > self.trend_threshold:
                trend = MarketTrend.BULLISH
            elif change < -self.trend_threshold:
                trend = MarketTrend.BEARISH
            else:
                trend = MarketTrend.SIDEWAYS

            changes = [m.price_change_24h for m in metrics.values()]
            volatility = statistics.pstdev(changes) if len(changes) > 1 else 0.0
            ranked = sorted(metrics.values(), key=lambda m: m.price_change_24h, reverse=True)

            return MarketOverview(
                trend=trend,
                benchmark_change_24h=change,
                volatility_index=volatility,
                top_performers=tuple(ranked[:5]),
                bottom_performers=tuple(reversed(ranked[-5:])),
            )

        key = ",".join(sorted(watchlist))
        return await self._overview_cache.get_or_load(key, load)

    async def beta(self, mint: str) -> Optional[float]:
        """Configured beta, else beta of 30d returns against the benchmark."""
        if mint in self.beta_table:
            return self.beta_table[mint]
        if mint == self.benchmark_mint:
            return 1.0
        asset, benchmark = await asyncio.gather(
            self.price_history(mint, "30d"),
            self.price_history(self.benchmark_mint, "30d"),
        )
        return ta.beta(asset["price"], benchmark["price"])

    async def betas_for(self, mints: Sequence[str]) -> Dict[str, float]:
        results = await asyncio.gather(*(self.beta(m) for m in mints), return_exceptions=True)
        collected = self._collect(mints, results, "beta")
        return {mint: value for mint, value in collected.items() if value is not None}

    async def is_stablecoin(self, mint: str) -> bool:
        """Known or configured stablecoin, stablecoin tag, or 7d CV below 1%."""
        if mint in self.stable_mints:
            return True
        info = self.tokens.get(mint)
        if info is not None and info.tagged_stable:
            return True
        if mint in self._stable_verdicts:
            return self._stable_verdicts[mint]

        try:
            week = await self.price_history(mint, "7d")
        except DataProviderError as e:
            logger.warning("Stablecoin check for %s failed: %s", mint, e)
            return False

        cv = ta.coefficient_of_variation(week["price"])
        verdict = cv is not None and cv < STABLE_CV_THRESHOLD
        self._stable_verdicts[mint] = verdict
        return verdict

    async def stable_set(self, mints: Iterable[str]) -> set:
        """Subset of `mints` that are stablecoins."""
        mints = list(mints)
        verdicts = await asyncio.gather(*(self.is_stablecoin(m) for m in mints))
        return {mint for mint, stable in zip(mints, verdicts) if stable}

    async def token_info(self, mint: str) -> Optional[TokenInfo]:
        """Registry entry for the mint, fetched from the provider when unknown.

        Returns None when the provider has no metadata or the lookup fails.
        """
        if mint in self.tokens:
            return self.tokens[mint]
        try:
            info = await self.provider.token_info(mint)
        except DataProviderError as e:
            logger.warning("Token metadata for %s unavailable: %s", mint, e)
            return None
        if info is not None:
            self.tokens[mint] = info
        return info

    async def tokens_for(self, mints: Iterable[str]) -> Dict[str, TokenInfo]:
        """Token metadata for each mint that has any."""
        mints = list(mints)
        infos = await asyncio.gather(*(self.token_info(m) for m in mints))
        return {mint: info for mint, info in zip(mints, infos) if info is not None}

    def symbol(self, mint: str) -> str:
        info = self.tokens.get(mint)
        if info is not None:
            return info.symbol
        return KNOWN_STABLECOINS.get(mint, mint[:4])

    async def drain(self) -> None:
        """Wait for background cache refreshes (shutdown, tests)."""
        for cache in (self._history_cache, self._indicator_cache, self._overview_cache):
            await cache.drain()

    @staticmethod
    def _volume_change_24h(week: pd.DataFrame) -> float:
        """Last 24h volume vs. the 24h before it, in percent."""
        if week.empty:
            return 0.0
        end = week.index[-1]
        cut = end - pd.Timedelta(hours=24)
        recent = week.loc[week.index > cut, "volume"].sum()
        prior = week.loc[(week.index > cut - pd.Timedelta(hours=24)) & (week.index <= cut), "volume"].sum()
        if prior <= 0:
            return 0.0
        return float((recent - prior) / prior * 100.0)

    @staticmethod
    def _collect(mints: Sequence[str], results: List, label: str) -> Dict:
        collected = {}
        for mint, result in zip(mints, results):
            if isinstance(result, Exception):
                logger.warning("Skipping %s for %s: %s", label, mint, result)
                continue
            collected[mint] = result
        return collected
