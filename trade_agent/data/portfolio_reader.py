"""Wallet portfolio reader over Solana JSON-RPC.

Native SOL comes from `getBalance`; SPL token balances from
`getTokenAccountsByOwner` (jsonParsed) for both token programs. USD prices
come from an injected price source (the venue's price endpoint).
"""

from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import httpx

from trade_agent.data.base import KNOWN_STABLECOINS, SOL_MINT, TokenInfo
from trade_agent.portfolio.base import Asset, PortfolioSnapshot
from trade_agent.utils.exceptions import DataProviderError
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

TOKEN_PROGRAM_IDS = (
    "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
    "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb",
)

PriceSource = Callable[[Sequence[str]], Awaitable[Dict[str, float]]]


class RpcPortfolioReader:
    """Builds PortfolioSnapshots from on-chain balances.

    Args:
        rpc_url: Solana JSON-RPC endpoint
        price_source: Coroutine returning USD prices by mint
        tokens: Known token metadata used for symbols
        include_zero_balances: Keep token accounts with a zero balance
        timeout: RPC timeout in seconds
        client: Injected HTTP client (tests); owned by the caller

    Example:
        >>> reader = RpcPortfolioReader(creds.rpc_url, venue.get_prices, registry)
        >>> snapshot = await reader.read(wallet)
    """

    def __init__(
        self,
        rpc_url: str,
        price_source: PriceSource,
        tokens: Optional[Mapping[str, TokenInfo]] = None,
        include_zero_balances: bool = False,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.price_source = price_source
        self.tokens = dict(tokens or {})
        self.include_zero_balances = include_zero_balances
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _rpc(self, method: str, params: List) -> Dict:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DataProviderError(f"RPC {method} failed: {e}") from e

        body = response.json()
        if "error" in body:
            raise DataProviderError(f"RPC {method} error: {body['error']}")
        return body.get("result") or {}

    async def read(self, wallet: str) -> PortfolioSnapshot:
        """Current holdings of `wallet` with USD prices.

        Raises:
            DataProviderError: If balances cannot be read
        """
        balance = await self._rpc("getBalance", [wallet])
        raw_balances: Dict[str, int] = {SOL_MINT: int(balance.get("value", 0))}
        decimals: Dict[str, int] = {SOL_MINT: 9}

        for program_id in TOKEN_PROGRAM_IDS:
            result = await self._rpc(
                "getTokenAccountsByOwner",
                [wallet, {"programId": program_id}, {"encoding": "jsonParsed"}],
            )
            for account in result.get("value", []):
                info = account["account"]["data"]["parsed"]["info"]
                amount = info["tokenAmount"]
                mint = info["mint"]
                raw_balances[mint] = raw_balances.get(mint, 0) + int(amount["amount"])
                decimals[mint] = int(amount["decimals"])

        mints = [
            mint
            for mint, raw in raw_balances.items()
            if raw > 0 or self.include_zero_balances or mint == SOL_MINT
        ]
        prices = await self.price_source(mints)

        assets = []
        for mint in mints:
            price = prices.get(mint)
            if price is None:
                logger.warning("No price for %s in wallet %s; valuing at 0", mint, wallet)
                price = 0.0
            assets.append(
                Asset(
                    mint=mint,
                    symbol=self._symbol(mint),
                    decimals=decimals[mint],
                    raw_balance=raw_balances[mint],
                    price=price,
                )
            )

        snapshot = PortfolioSnapshot(wallet=wallet, assets=tuple(assets))
        logger.info(
            "Read %d assets for %s (total $%.2f)", len(assets), wallet, snapshot.total_value
        )
        return snapshot

    def _symbol(self, mint: str) -> str:
        if mint in self.tokens:
            return self.tokens[mint].symbol
        if mint == SOL_MINT:
            return "SOL"
        return KNOWN_STABLECOINS.get(mint, mint[:4])
