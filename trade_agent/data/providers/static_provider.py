"""In-memory price history provider.

Serves pre-loaded history frames; used for offline runs, fixtures and
tests. Unknown (mint, period) pairs return an empty frame.
"""

from typing import Dict, Iterable, Optional, Tuple

import pandas as pd

from trade_agent.data.base import HISTORY_COLUMNS, MarketDataProvider, TokenInfo, empty_history


class StaticProvider(MarketDataProvider):
    """Price history from frames supplied up front.

    Example:
        >>> provider = StaticProvider({(SOL_MINT, "7d"): frame})
        >>> await provider.historical_prices(SOL_MINT, "7d")
    """

    def __init__(
        self,
        histories: Optional[Dict[Tuple[str, str], pd.DataFrame]] = None,
        tokens: Optional[Iterable[TokenInfo]] = None,
    ):
        self._histories: Dict[Tuple[str, str], pd.DataFrame] = {}
        for key, frame in (histories or {}).items():
            self.add_history(key[0], key[1], frame)
        self._tokens = {info.mint: info for info in (tokens or [])}
        self.calls = 0

    def add_history(self, mint: str, period: str, frame: pd.DataFrame) -> None:
        missing = [c for c in HISTORY_COLUMNS if c not in frame.columns]
        if missing:
            raise ValueError(f"History for {mint} is missing columns {missing}")
        self._histories[(mint, period)] = frame

    async def historical_prices(self, mint: str, period: str) -> pd.DataFrame:
        self.calls += 1
        frame = self._histories.get((mint, period))
        return frame.copy() if frame is not None else empty_history()

    async def token_info(self, mint: str) -> Optional[TokenInfo]:
        return self._tokens.get(mint)
