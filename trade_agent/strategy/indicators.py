"""Technical indicator utilities using TA-Lib.

This module provides wrapper functions for the TA-Lib indicators the
strategies use, plus the scalar scores derived from them.

Note: TA-Lib is required. Install with: pip install TA-Lib
"""

import math
from typing import Optional, Tuple

import numpy as np
import pandas as pd
import talib

from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

NEUTRAL_RSI = 50.0
OVERSOLD_RSI = 30.0
OVERBOUGHT_RSI = 70.0


def sma(data: pd.Series, period: int) -> pd.Series:
    """Calculate Simple Moving Average.

    Args:
        data: Price series
        period: Number of periods for moving average

    Returns:
        Series containing SMA values

    Example:
        >>> sma_50 = sma(history["price"], period=50)
    """
    result = talib.SMA(data.astype(np.float64).values, timeperiod=period)
    return pd.Series(result, index=data.index, name=f"sma_{period}")


def ema(data: pd.Series, period: int) -> pd.Series:
    """Calculate Exponential Moving Average."""
    result = talib.EMA(data.astype(np.float64).values, timeperiod=period)
    return pd.Series(result, index=data.index, name=f"ema_{period}")


def rsi(data: pd.Series, period: int = 14) -> pd.Series:
    """Calculate Relative Strength Index.

    Args:
        data: Price series
        period: Number of periods for RSI calculation (default: 14)

    Returns:
        Series containing RSI values (0-100 range)

    Example:
        >>> rsi_14 = rsi(history["price"], period=14)
        >>> oversold = rsi_14 < 30
    """
    result = talib.RSI(data.astype(np.float64).values, timeperiod=period)
    return pd.Series(result, index=data.index, name=f"rsi_{period}")


def macd(
    data: pd.Series, fast_period: int = 12, slow_period: int = 26, signal_period: int = 9
) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """Calculate MACD (Moving Average Convergence Divergence).

    Returns:
        Tuple of (macd_line, signal_line, histogram)
    """
    macd_line, signal_line, histogram = talib.MACD(
        data.astype(np.float64).values,
        fastperiod=fast_period,
        slowperiod=slow_period,
        signalperiod=signal_period,
    )

    return (
        pd.Series(macd_line, index=data.index, name="macd"),
        pd.Series(signal_line, index=data.index, name="macd_signal"),
        pd.Series(histogram, index=data.index, name="macd_histogram"),
    )


def _last_valid(series: pd.Series) -> Optional[float]:
    valid = series.dropna()
    if valid.empty:
        return None
    return float(valid.iloc[-1])


def latest_rsi(prices: pd.Series, period: int = 14) -> float:
    """Most recent RSI value; 50 (neutral) when there is too little data."""
    if len(prices) <= period:
        return NEUTRAL_RSI
    value = _last_valid(rsi(prices, period))
    return NEUTRAL_RSI if value is None else value


def interpret_rsi(value: float) -> str:
    """'oversold' below 30, 'overbought' above 70, else 'neutral'."""
    if value < OVERSOLD_RSI:
        return "oversold"
    if value > OVERBOUGHT_RSI:
        return "overbought"
    return "neutral"


def moving_average_cross(
    prices: pd.Series, short_period: int = 50, long_period: int = 200
) -> Tuple[Optional[float], Optional[float], str]:
    """Latest short/long moving averages and their interpretation.

    Returns:
        (ma_short, ma_long, signal) where signal is 'bullish' when the short
        average is above the long one, 'bearish' otherwise, and 'neutral'
        when the series is shorter than `long_period`
    """
    if len(prices) < long_period:
        ma_short = _last_valid(sma(prices, short_period)) if len(prices) >= short_period else None
        return ma_short, None, "neutral"

    ma_short = _last_valid(sma(prices, short_period))
    ma_long = _last_valid(sma(prices, long_period))
    if ma_short is None or ma_long is None:
        return ma_short, ma_long, "neutral"
    return ma_short, ma_long, "bullish" if ma_short > ma_long else "bearish"


def macd_histogram(prices: pd.Series) -> Optional[float]:
    """Latest MACD(12, 26, 9) histogram value, None when data is short."""
    if len(prices) < 34:
        return None
    _, _, histogram = macd(prices)
    return _last_valid(histogram)


def percent_change(series: pd.Series) -> float:
    """Change from first to last value in percent; 0 for short or zero-based series."""
    valid = series.dropna()
    if len(valid) < 2 or valid.iloc[0] == 0:
        return 0.0
    return float((valid.iloc[-1] - valid.iloc[0]) / valid.iloc[0] * 100.0)


def momentum_score(
    price_change_24h: float, price_change_7d: float, volume_change_24h: float
) -> float:
    """Blend of price and volume changes, scaled to [0, 100].

    score = 0.4 * dp24h + 0.3 * dp7d + 0.3 * dvol24h + 50
    """
    score = 0.4 * price_change_24h + 0.3 * price_change_7d + 0.3 * volume_change_24h + 50
    return max(0.0, min(100.0, score))


def bounce_score(rsi_value: float) -> float:
    """Mean-reversion bounce score for an oversold RSI.

    Example:
        >>> bounce_score(20)
        60.0
    """
    return float(min(100.0, max(0.0, (OVERSOLD_RSI - rsi_value) * 3 + 30)))


def beta(asset_prices: pd.Series, benchmark_prices: pd.Series) -> Optional[float]:
    """Beta of an asset's returns against the benchmark's returns.

    Series are aligned on their index; None when fewer than three common
    returns exist or the benchmark does not move.
    """
    joined = pd.concat(
        [asset_prices.rename("asset"), benchmark_prices.rename("benchmark")], axis=1, join="inner"
    ).dropna()
    returns = joined.pct_change().dropna()
    if len(returns) < 3:
        return None
    variance = float(np.var(returns["benchmark"].values, ddof=1))
    if variance == 0 or math.isnan(variance):
        return None
    covariance = float(np.cov(returns["asset"].values, returns["benchmark"].values, ddof=1)[0, 1])
    return covariance / variance


def coefficient_of_variation(prices: pd.Series) -> Optional[float]:
    """Std-dev / mean of a price series; None for empty or zero-mean series."""
    valid = prices.dropna()
    if len(valid) < 2:
        return None
    mean = float(valid.mean())
    if mean == 0:
        return None
    return float(valid.std(ddof=0)) / mean
