"""Market data model and the abstract provider interface.

Price history is exchanged as a pandas DataFrame:

    index: DatetimeIndex named "timestamp" (UTC, ascending)
    columns: price (float, USD close), volume (float, USD)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

import pandas as pd

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

KNOWN_STABLECOINS: Dict[str, str] = {
    USDC_MINT: "USDC",
    USDT_MINT: "USDT",
    "EjmyN6qEC1Tf1JxiG1ae7UTJhUxSwk1TCWNWqxWV4J6o": "DAI",
    "USDH1SM1ojwWUga67PGrgFWUHibbjqMvuMaDkRJTgkX": "USDH",
    "USDCet8qY8JXHfSbCNF9yYadZFiEKNbFfCKEjgR5CvQV": "USDCet",
}

HISTORY_PERIODS = ("24h", "7d", "30d")

HISTORY_COLUMNS = ["price", "volume"]


class MarketTrend(Enum):
    """Overall market direction from the benchmark's 24h change."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


@dataclass(frozen=True)
class TokenInfo:
    """Static token metadata."""

    mint: str
    symbol: str
    decimals: int
    tags: Tuple[str, ...] = ()

    @property
    def tagged_stable(self) -> bool:
        return "stablecoin" in self.tags


@dataclass(frozen=True)
class TechnicalIndicators:
    """Indicator snapshot for one token.

    Attributes:
        mint: Token mint
        rsi: 14-period RSI from the 7d series (50 when data is short)
        rsi_signal: "oversold" (< 30), "overbought" (> 70) or "neutral"
        ma_short / ma_long: 50 / 200 period moving averages of the 30d series
        ma_signal: "bullish" if MA50 > MA200, "bearish" otherwise,
            "neutral" when fewer than 200 points exist
        macd_histogram: Latest MACD(12, 26, 9) histogram value
    """

    mint: str
    rsi: float = 50.0
    rsi_signal: str = "neutral"
    ma_short: Optional[float] = None
    ma_long: Optional[float] = None
    ma_signal: str = "neutral"
    macd_histogram: Optional[float] = None

    @property
    def is_oversold(self) -> bool:
        return self.rsi < 30


@dataclass(frozen=True)
class AssetMetrics:
    """Percentage changes for one token (5.0 == +5%)."""

    mint: str
    symbol: str
    price: float
    price_change_24h: float = 0.0
    price_change_7d: float = 0.0
    volume_change_24h: float = 0.0


@dataclass(frozen=True)
class MarketOverview:
    """Market-wide picture used by strategies and confidence scoring.

    Attributes:
        trend: Bullish / bearish / sideways from the benchmark 24h change
        benchmark_change_24h: Benchmark 24h change in percent
        volatility_index: Population std-dev of 24h changes across the watchlist
        top_performers / bottom_performers: Best and worst five by 24h change
        timestamp: When the overview was computed
    """

    trend: MarketTrend
    benchmark_change_24h: float = 0.0
    volatility_index: float = 0.0
    top_performers: Tuple[AssetMetrics, ...] = ()
    bottom_performers: Tuple[AssetMetrics, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)


def empty_history() -> pd.DataFrame:
    """A history frame with no rows and the standard columns."""
    frame = pd.DataFrame(columns=HISTORY_COLUMNS, dtype=float)
    frame.index = pd.DatetimeIndex([], name="timestamp", tz="UTC")
    return frame


class MarketDataProvider(ABC):
    """Abstract interface for token price history providers.

    Example:
        >>> provider = BirdeyeProvider(api_key=creds.birdeye_api_key)
        >>> history = await provider.historical_prices(SOL_MINT, "7d")
        >>> history["price"].iloc[-1]
        172.4
    """

    @abstractmethod
    async def historical_prices(self, mint: str, period: str) -> pd.DataFrame:
        """Fetch price and volume history for a token.

        Args:
            mint: Token mint address
            period: One of "24h", "7d", "30d"

        Returns:
            DataFrame indexed by timestamp with price and volume columns

        Raises:
            DataProviderError: If the provider cannot be reached or answers
                with an error
        """
        pass

    async def token_info(self, mint: str) -> Optional[TokenInfo]:
        """Token metadata, if the provider knows it."""
        return None

    async def close(self) -> None:
        return None
