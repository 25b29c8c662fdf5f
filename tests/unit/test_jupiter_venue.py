"""Unit tests for JupiterVenue using httpx.MockTransport."""

import base64
import json
from typing import Callable, List

import httpx
import pytest

from conftest import make_quote
from trade_agent.data.base import SOL_MINT, USDC_MINT
from trade_agent.utils.exceptions import ConfigurationError, ExecutionError, VenueConnectionError
from trade_agent.venue.base import QuoteOk, QuoteUnavailable, SwapOptions
from trade_agent.venue.jupiter_venue import JupiterVenue

RPC_URL = "https://rpc.test"
BASE_URL = "https://jup.test"

QUOTE_BODY = {
    "inputMint": SOL_MINT,
    "outputMint": USDC_MINT,
    "inAmount": "1000000000",
    "outAmount": "150250000",
    "otherAmountThreshold": "149500000",
    "slippageBps": 50,
    "priceImpactPct": "0.012",
    "swapMode": "ExactIn",
    "routePlan": [{"swapInfo": {"label": "Whirlpool"}}, {"swapInfo": {"label": "Raydium"}}],
}


def make_venue(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> JupiterVenue:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = dict(retry_delay=0.0, confirm_poll_interval=0.0, confirm_max_polls=3)
    options.update(kwargs)
    return JupiterVenue(rpc_url=RPC_URL, base_url=BASE_URL, client=client, **options)


def rpc_handler(responses: List[dict], seen: List[dict]):
    """Serve JSON-RPC bodies in order, recording every request payload."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        seen.append(payload)
        body = responses[min(len(seen), len(responses)) - 1]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], **body})

    return handler


class TestInit:
    """Test cases for construction."""

    def test_requires_rpc_url(self) -> None:
        with pytest.raises(ConfigurationError):
            JupiterVenue(rpc_url="")

    def test_invalid_rate_limit(self) -> None:
        with pytest.raises(ConfigurationError):
            JupiterVenue(rpc_url=RPC_URL, rate_limit_per_minute=0)

    def test_from_config(self) -> None:
        venue = JupiterVenue.from_config(
            {"base_url": "https://other.test/", "retry_attempts": 5}, rpc_url=RPC_URL
        )
        assert venue.base_url == "https://other.test"
        assert venue.retry_attempts == 5


class TestGetQuote:
    """Test cases for get_quote."""

    @pytest.mark.asyncio
    async def test_quote_ok(self) -> None:
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=QUOTE_BODY)

        result = await make_venue(handler).get_quote(SOL_MINT, USDC_MINT, 10**9, 50)

        assert isinstance(result, QuoteOk)
        assert result.quote.out_amount == 150_250_000
        assert result.quote.price_impact_pct == pytest.approx(0.012)
        assert result.quote.route == ("Whirlpool", "Raydium")
        request = seen[0]
        assert request.url.path == "/swap/v1/quote"
        assert request.url.params["amount"] == "1000000000"
        assert request.url.params["swapMode"] == "ExactIn"
        assert request.url.params["restrictIntermediateTokens"] == "true"

    @pytest.mark.asyncio
    async def test_no_route_not_retryable(self) -> None:
        def handler(request):
            return httpx.Response(400, json={"error": "Could not find any route"})

        result = await make_venue(handler).get_quote(SOL_MINT, USDC_MINT, 10**9, 50)

        assert result == QuoteUnavailable(reason="Could not find any route", retryable=False)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 503])
    async def test_throttled_is_retryable(self, status) -> None:
        result = await make_venue(lambda r: httpx.Response(status)).get_quote(
            SOL_MINT, USDC_MINT, 10**9, 50
        )

        assert isinstance(result, QuoteUnavailable)
        assert result.retryable

    @pytest.mark.asyncio
    async def test_transport_error_is_retryable(self) -> None:
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_venue(handler).get_quote(SOL_MINT, USDC_MINT, 10**9, 50)

        assert isinstance(result, QuoteUnavailable)
        assert result.retryable
        assert result.reason.startswith("Venue unreachable")

    @pytest.mark.asyncio
    async def test_malformed_body(self) -> None:
        result = await make_venue(lambda r: httpx.Response(200, json={"foo": 1})).get_quote(
            SOL_MINT, USDC_MINT, 10**9, 50
        )

        assert isinstance(result, QuoteUnavailable)
        assert "Malformed quote response" in result.reason

    @pytest.mark.asyncio
    async def test_zero_output(self) -> None:
        body = dict(QUOTE_BODY, outAmount="0", otherAmountThreshold="0")
        result = await make_venue(lambda r: httpx.Response(200, json=body)).get_quote(
            SOL_MINT, USDC_MINT, 10**9, 50
        )

        assert result == QuoteUnavailable(reason="Quote returned zero output")


class TestBuildSwapTransaction:
    """Test cases for build_swap_transaction."""

    @pytest.mark.asyncio
    async def test_build_ok(self) -> None:
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(
                200, json={"swapTransaction": "AQID", "lastValidBlockHeight": 12345}
            )

        quote = make_quote(SOL_MINT, USDC_MINT, 10**9, 150 * 10**6)
        tx = await make_venue(handler).build_swap_transaction(quote, "Wallet111", SwapOptions())

        assert tx.transaction == "AQID"
        assert tx.last_valid_block_height == 12345
        payload = seen[0]
        assert payload["userPublicKey"] == "Wallet111"
        assert payload["quoteResponse"] == quote.raw
        assert payload["dynamicComputeUnitLimit"] is True
        assert payload["prioritizationFeeLamports"]["priorityLevelWithMaxLamports"] == {
            "maxLamports": 1_000_000,
            "priorityLevel": "high",
        }

    @pytest.mark.asyncio
    async def test_refused(self) -> None:
        def handler(request):
            return httpx.Response(422, json={"error": "Quote expired"})

        quote = make_quote(SOL_MINT, USDC_MINT, 10**9, 150 * 10**6)
        with pytest.raises(ExecutionError, match="Venue refused swap transaction: Quote expired"):
            await make_venue(handler).build_swap_transaction(quote, "Wallet111", SwapOptions())

    @pytest.mark.asyncio
    async def test_missing_transaction(self) -> None:
        quote = make_quote(SOL_MINT, USDC_MINT, 10**9, 150 * 10**6)
        venue = make_venue(lambda r: httpx.Response(200, json={"error": "no liquidity"}))
        with pytest.raises(ExecutionError, match="no liquidity"):
            await venue.build_swap_transaction(quote, "Wallet111", SwapOptions())

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        quote = make_quote(SOL_MINT, USDC_MINT, 10**9, 150 * 10**6)
        venue = make_venue(handler, retry_attempts=3)
        with pytest.raises(VenueConnectionError, match="after 3 attempts"):
            await venue.build_swap_transaction(quote, "Wallet111", SwapOptions())
        assert len(calls) == 3


class TestSubmitAndConfirm:
    """Test cases for submit_signed / confirm_transaction."""

    @pytest.mark.asyncio
    async def test_submit_ok(self) -> None:
        seen = []
        venue = make_venue(rpc_handler([{"result": "5igSig"}], seen))
        result = await venue.submit_signed(b"\x01\x02")

        assert result.success
        assert result.signature == "5igSig"
        assert seen[0]["method"] == "sendTransaction"
        assert seen[0]["params"][0] == base64.b64encode(b"\x01\x02").decode()

    @pytest.mark.asyncio
    async def test_submit_rejected(self) -> None:
        seen = []
        venue = make_venue(rpc_handler([{"error": {"message": "Blockhash not found"}}], seen))
        result = await venue.submit_signed(b"\x01")

        assert not result.success
        assert result.error == "Blockhash not found"

    @pytest.mark.asyncio
    async def test_confirm_after_polling(self) -> None:
        seen = []
        responses = [
            {"result": {"value": [None]}},
            {"result": {"value": [{"confirmationStatus": "processed", "err": None}]}},
            {"result": {"value": [{"confirmationStatus": "confirmed", "err": None}]}},
        ]
        result = await make_venue(rpc_handler(responses, seen)).confirm_transaction("sig")

        assert result.success
        assert len(seen) == 3
        assert seen[0]["method"] == "getSignatureStatuses"

    @pytest.mark.asyncio
    async def test_confirm_on_chain_failure(self) -> None:
        seen = []
        responses = [{"result": {"value": [{"err": {"InstructionError": [2, "Custom"]}}]}}]
        result = await make_venue(rpc_handler(responses, seen)).confirm_transaction("sig")

        assert not result.success
        assert result.error.startswith("Transaction failed on-chain")

    @pytest.mark.asyncio
    async def test_confirm_gives_up(self) -> None:
        seen = []
        result = await make_venue(rpc_handler([{"result": {"value": [None]}}], seen)).confirm_transaction(
            "sig"
        )

        assert not result.success
        assert result.error == "Transaction not confirmed after 3 polls"
        assert len(seen) == 3


class TestGetPrices:
    """Test cases for get_prices."""

    @pytest.mark.asyncio
    async def test_prices(self) -> None:
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={"data": {SOL_MINT: {"price": "151.2"}, USDC_MINT: {"price": 1.0}, "X": None}},
            )

        prices = await make_venue(handler).get_prices([SOL_MINT, USDC_MINT, "X"])

        assert prices == {SOL_MINT: pytest.approx(151.2), USDC_MINT: 1.0}
        assert seen[0].url.path == "/price/v2"
        assert seen[0].url.params["ids"] == f"{SOL_MINT},{USDC_MINT},X"

    @pytest.mark.asyncio
    async def test_no_mints_no_request(self) -> None:
        def handler(request):
            raise AssertionError("unexpected request")

        assert await make_venue(handler).get_prices([]) == {}

    @pytest.mark.asyncio
    async def test_price_lookup_refused(self) -> None:
        venue = make_venue(lambda r: httpx.Response(401, json={"message": "bad key"}))
        with pytest.raises(VenueConnectionError, match="bad key"):
            await venue.get_prices([SOL_MINT])
