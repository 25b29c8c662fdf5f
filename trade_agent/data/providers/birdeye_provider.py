"""Birdeye price history provider.

This module implements the MarketDataProvider interface using the Birdeye
public API (`/defi/ohlcv`) to fetch token price and volume history.
"""

import asyncio
import time
from typing import Any, Dict, Optional, Tuple

import httpx
import pandas as pd

from trade_agent.data.base import HISTORY_PERIODS, MarketDataProvider, TokenInfo, empty_history
from trade_agent.utils.exceptions import ConfigurationError, DataProviderError
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://public-api.birdeye.so"

# period -> (candle type, lookback seconds)
PERIOD_CANDLES: Dict[str, Tuple[str, int]] = {
    "24h": ("15m", 24 * 3600),
    "7d": ("1H", 7 * 24 * 3600),
    "30d": ("1H", 30 * 24 * 3600),
}


class BirdeyeProvider(MarketDataProvider):
    """Birdeye OHLCV provider for Solana tokens.

    Example:
        >>> provider = BirdeyeProvider(api_key=creds.birdeye_api_key)
        >>> history = await provider.historical_prices(SOL_MINT, "7d")
        >>> len(history)
        168
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Birdeye provider.

        Args:
            api_key: Birdeye API key
            base_url: API root
            timeout: Per-request timeout in seconds
            retry_attempts: Attempts for transport errors and 5xx/429 answers
            retry_delay: Base delay between retries, grows linearly
            client: Injected HTTP client (tests); owned by the caller

        Raises:
            ConfigurationError: If the API key is missing
        """
        if not api_key:
            raise ConfigurationError("BIRDEYE_API_KEY is required for the Birdeye provider")

        self.base_url = base_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"X-API-KEY": api_key, "x-chain": "solana", "accept": "application/json"},
        )
        logger.info("BirdeyeProvider initialized")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        last_exception: Optional[Exception] = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self._client.get(f"{self.base_url}{path}", params=params)
                if response.status_code == 429 or response.status_code >= 500:
                    response.raise_for_status()
                if response.status_code >= 400:
                    raise DataProviderError(
                        f"Birdeye {path} returned HTTP {response.status_code}: {response.text[:200]}"
                    )
                body = response.json()
            except httpx.HTTPError as e:
                last_exception = e
                logger.warning(
                    "Birdeye request failed (attempt %d/%d): %s",
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                continue

            if not body.get("success", False):
                raise DataProviderError(f"Birdeye {path} failed: {body.get('message', 'unknown error')}")
            return body.get("data") or {}

        raise DataProviderError(
            f"Birdeye {path} failed after {self.retry_attempts} attempts: {last_exception}"
        ) from last_exception

    async def historical_prices(self, mint: str, period: str) -> pd.DataFrame:
        if period not in PERIOD_CANDLES:
            raise ValueError(f"period must be one of {HISTORY_PERIODS}, got {period}")

        candle, lookback = PERIOD_CANDLES[period]
        now = int(time.time())
        data = await self._get(
            "/defi/ohlcv",
            {"address": mint, "type": candle, "time_from": now - lookback, "time_to": now},
        )

        items = data.get("items") or []
        if not items:
            logger.debug("No %s history for %s", period, mint)
            return empty_history()

        try:
            frame = pd.DataFrame(
                {
                    "price": [float(item["c"]) for item in items],
                    "volume": [float(item.get("v") or 0.0) for item in items],
                },
                index=pd.to_datetime([int(item["unixTime"]) for item in items], unit="s", utc=True),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataProviderError(f"Malformed Birdeye history for {mint}: {e}") from e

        frame.index.name = "timestamp"
        frame = frame.sort_index().dropna()
        logger.debug("Fetched %d %s points for %s", len(frame), period, mint)
        return frame

    async def token_info(self, mint: str) -> Optional[TokenInfo]:
        data = await self._get("/defi/v3/token/meta-data/single", {"address": mint})
        if not data.get("symbol") or data.get("decimals") is None:
            return None
        return TokenInfo(mint=mint, symbol=data["symbol"], decimals=int(data["decimals"]))
