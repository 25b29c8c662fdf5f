"""Jupiter swap venue over async HTTP.

Quotes, swap transactions and token prices come from the Jupiter API;
signed transactions are submitted and confirmed through Solana JSON-RPC.
"""

import asyncio
import base64
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from trade_agent.utils.exceptions import ConfigurationError, ExecutionError, VenueConnectionError
from trade_agent.utils.logging import get_logger
from trade_agent.venue.base import (
    Quote,
    QuoteOk,
    QuoteResult,
    QuoteUnavailable,
    SubmitResult,
    SwapOptions,
    SwapTransaction,
    SwapVenue,
)

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.jup.ag"

# Status codes worth another attempt
RETRYABLE_STATUS = (429, 500, 502, 503, 504)


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS
    return False


def _error_message(response: httpx.Response) -> str:
    """Best-effort error text from a venue response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error", "message", "errorCode"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


class JupiterVenue(SwapVenue):
    """Jupiter quote/swap client with rate limiting and retries.

    This class handles:
    - Quote lookups (single attempt; QuoteResolver decides on retries)
    - Swap transaction building with priority-fee options
    - Submission and confirmation of signed transactions over RPC
    - USD prices for a set of mints

    Example:
        >>> async with JupiterVenue(rpc_url=creds.rpc_url) as venue:
        ...     result = await venue.get_quote(SOL_MINT, USDC_MINT, 10**9, 50)
    """

    def __init__(
        self,
        rpc_url: str,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        rate_limit_per_minute: int = 60,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        restrict_intermediate_tokens: bool = True,
        confirm_poll_interval: float = 2.0,
        confirm_max_polls: int = 30,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the venue client.

        Args:
            rpc_url: Solana JSON-RPC endpoint
            base_url: Jupiter API root
            api_key: Optional Jupiter API key (sent as x-api-key)
            timeout: Per-request timeout in seconds
            rate_limit_per_minute: Max venue requests per minute
            retry_attempts: Attempts for retryable errors (transport, 429, 5xx)
            retry_delay: Base delay between retries, grows linearly
            restrict_intermediate_tokens: Restrict routes to liquid hop tokens
            confirm_poll_interval: Seconds between signature status polls
            confirm_max_polls: Polls before giving up on confirmation
            client: Injected HTTP client (tests); owned by the caller

        Raises:
            ConfigurationError: If settings are invalid
        """
        if not rpc_url:
            raise ConfigurationError("Solana RPC URL is required")
        if rate_limit_per_minute <= 0:
            raise ConfigurationError(
                f"rate_limit_per_minute must be positive, got {rate_limit_per_minute}"
            )
        if retry_attempts < 1:
            raise ConfigurationError(f"retry_attempts must be >= 1, got {retry_attempts}")

        self.rpc_url = rpc_url
        self.base_url = base_url.rstrip("/")
        self.rate_limit_per_minute = rate_limit_per_minute
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.restrict_intermediate_tokens = restrict_intermediate_tokens
        self.confirm_poll_interval = confirm_poll_interval
        self.confirm_max_polls = confirm_max_polls

        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._request_times: List[float] = []
        self._rate_lock = asyncio.Lock()
        self._rpc_id = 0

        logger.info(
            "JupiterVenue initialized (base_url: %s, rate_limit: %d/min)",
            self.base_url,
            rate_limit_per_minute,
        )

    @classmethod
    def from_config(cls, venue_config: Dict[str, Any], rpc_url: str, api_key: Optional[str] = None) -> "JupiterVenue":
        """Create a venue from the `venue` config section."""
        return cls(
            rpc_url=rpc_url,
            base_url=venue_config.get("base_url", DEFAULT_BASE_URL),
            api_key=api_key,
            timeout=venue_config.get("timeout", 30.0),
            rate_limit_per_minute=venue_config.get("rate_limit_per_minute", 60),
            retry_attempts=venue_config.get("retry_attempts", 3),
            retry_delay=venue_config.get("retry_delay", 1.0),
            restrict_intermediate_tokens=venue_config.get("restrict_intermediate_tokens", True),
            confirm_poll_interval=venue_config.get("confirm_poll_interval", 2.0),
            confirm_max_polls=venue_config.get("confirm_max_polls", 30),
        )

    async def __aenter__(self) -> "JupiterVenue":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def check_rate_limit(self) -> None:
        """Sleep until another request fits in the one-minute window."""
        async with self._rate_lock:
            current_time = time.monotonic()
            one_minute_ago = current_time - 60
            self._request_times = [t for t in self._request_times if t > one_minute_ago]

            if len(self._request_times) >= self.rate_limit_per_minute:
                sleep_time = self._request_times[0] + 60 - current_time
                if sleep_time > 0:
                    logger.warning(
                        "Rate limit reached (%d requests/min). Sleeping for %.2f seconds.",
                        self.rate_limit_per_minute,
                        sleep_time,
                    )
                    await asyncio.sleep(sleep_time)
                    current_time = time.monotonic()
                    one_minute_ago = current_time - 60
                    self._request_times = [
                        t for t in self._request_times if t > one_minute_ago
                    ]

            self._request_times.append(current_time)

    async def with_retry(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run a request coroutine with rate limiting and linear backoff.

        Only transport errors, 429 and 5xx responses are retried; other
        HTTP errors propagate unchanged.

        Raises:
            VenueConnectionError: If all retry attempts fail
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.retry_attempts):
            await self.check_rate_limit()
            try:
                return await func(*args, **kwargs)
            except httpx.HTTPError as e:
                if not _is_retryable(e):
                    raise
                last_exception = e
                logger.warning(
                    "Venue request failed (attempt %d/%d): %s",
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

        error_msg = (
            f"Venue request failed after {self.retry_attempts} attempts: {last_exception}"
        )
        logger.error(error_msg)
        raise VenueConnectionError(error_msg) from last_exception

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        response = await self._client.get(url, params=params)
        response.raise_for_status()
        return response

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        response = await self._client.post(url, json=payload)
        response.raise_for_status()
        return response

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> QuoteResult:
        """Quote an ExactIn swap; never raises for venue-side failures."""
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "swapMode": "ExactIn",
            "restrictIntermediateTokens": str(self.restrict_intermediate_tokens).lower(),
        }

        await self.check_rate_limit()
        try:
            response = await self._client.get(f"{self.base_url}/swap/v1/quote", params=params)
        except httpx.TransportError as e:
            logger.warning("Quote request failed for %s -> %s: %s", input_mint, output_mint, e)
            return QuoteUnavailable(reason=f"Venue unreachable: {e}", retryable=True)

        if response.status_code >= 400:
            reason = _error_message(response)
            return QuoteUnavailable(
                reason=reason,
                retryable=response.status_code in RETRYABLE_STATUS,
            )

        try:
            quote = Quote.from_response(response.json())
        except (ValueError, KeyError, TypeError) as e:
            return QuoteUnavailable(reason=f"Malformed quote response: {e}")

        if quote.out_amount <= 0:
            return QuoteUnavailable(reason="Quote returned zero output")

        logger.debug(
            "Quote %s -> %s: in=%d out=%d impact=%.4f%% route=%s",
            input_mint,
            output_mint,
            quote.in_amount,
            quote.out_amount,
            quote.price_impact_pct,
            " > ".join(quote.route),
        )
        return QuoteOk(quote=quote)

    async def build_swap_transaction(
        self,
        quote: Quote,
        user_public_key: str,
        options: SwapOptions,
    ) -> SwapTransaction:
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            **options.to_payload(),
        }
        try:
            response = await self.with_retry(self._post, f"{self.base_url}/swap/v1/swap", payload)
        except httpx.HTTPStatusError as e:
            raise ExecutionError(
                f"Venue refused swap transaction: {_error_message(e.response)}"
            ) from e

        data = response.json()
        if not data.get("swapTransaction"):
            raise ExecutionError(
                f"Venue returned no transaction: {data.get('error', 'unknown error')}"
            )
        return SwapTransaction(
            transaction=data["swapTransaction"],
            last_valid_block_height=int(data.get("lastValidBlockHeight", 0)),
        )

    async def _rpc(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._rpc_id += 1
        payload = {"jsonrpc": "2.0", "id": self._rpc_id, "method": method, "params": params}
        try:
            response = await self.with_retry(self._post, self.rpc_url, payload)
        except httpx.HTTPStatusError as e:
            raise VenueConnectionError(f"RPC {method} failed: {_error_message(e.response)}") from e
        return response.json()

    async def submit_signed(self, signed_transaction: bytes) -> SubmitResult:
        encoded = base64.b64encode(signed_transaction).decode("ascii")
        body = await self._rpc(
            "sendTransaction",
            [encoded, {"encoding": "base64", "skipPreflight": True, "maxRetries": 2}],
        )
        if "error" in body:
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            return SubmitResult(success=False, error=message)
        return SubmitResult(success=True, signature=body.get("result"))

    async def confirm_transaction(self, signature: str) -> SubmitResult:
        for _ in range(self.confirm_max_polls):
            body = await self._rpc(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
            statuses = body.get("result", {}).get("value") or [None]
            status = statuses[0]
            if status is not None:
                if status.get("err"):
                    return SubmitResult(
                        success=False,
                        signature=signature,
                        error=f"Transaction failed on-chain: {status['err']}",
                    )
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return SubmitResult(success=True, signature=signature)
            await asyncio.sleep(self.confirm_poll_interval)

        return SubmitResult(
            success=False,
            signature=signature,
            error=f"Transaction not confirmed after {self.confirm_max_polls} polls",
        )

    async def get_prices(self, mints: Sequence[str]) -> Dict[str, float]:
        """USD prices for the given mints; unknown mints are omitted.

        Raises:
            VenueConnectionError: If the price endpoint cannot be reached
        """
        if not mints:
            return {}
        try:
            response = await self.with_retry(
                self._get, f"{self.base_url}/price/v2", {"ids": ",".join(mints)}
            )
        except httpx.HTTPStatusError as e:
            raise VenueConnectionError(f"Price lookup failed: {_error_message(e.response)}") from e

        prices: Dict[str, float] = {}
        for mint, entry in (response.json().get("data") or {}).items():
            if entry and entry.get("price") is not None:
                prices[mint] = float(entry["price"])
        return prices
