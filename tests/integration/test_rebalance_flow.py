"""End-to-end rebalance through the production stack over mocked HTTP.

JupiterVenue, RpcPortfolioReader, SqliteLedger and KeypairSigner are the
real implementations; only the network is replaced by httpx.MockTransport.
"""

import base64
import json

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.null_signer import NullSigner
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from trade_agent.api.agent_api import TradeAgentAPI
from trade_agent.data.base import SOL_MINT, USDC_MINT
from trade_agent.data.market_data import MarketDataService
from trade_agent.data.portfolio_reader import TOKEN_PROGRAM_IDS, RpcPortfolioReader
from trade_agent.data.providers.static_provider import StaticProvider
from trade_agent.execution.base import SessionState
from trade_agent.execution.signer import KeypairSigner
from trade_agent.ledger.sqlite_ledger import SqliteLedger
from trade_agent.notifications.base import NotificationType
from trade_agent.notifications.sinks import CollectingSink
from trade_agent.venue.jupiter_venue import JupiterVenue

pytestmark = pytest.mark.integration

RPC_URL = "https://rpc.test"
BASE_URL = "https://jup.test"
PRICES = {SOL_MINT: 100.0, USDC_MINT: 1.0}


class SolanaNetwork:
    """Mocked RPC node plus Jupiter quote, swap and price endpoints.

    The wallet holds 70 SOL and 3,000 USDC. Every quote fills at the
    oracle price; sent transactions are kept for inspection and confirm
    immediately.
    """

    def __init__(self, owner: Keypair, fail_swaps: bool = False):
        self.owner = owner
        self.fail_swaps = fail_swaps
        self.sent = []
        self.quotes = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "rpc.test":
            return self.rpc(json.loads(request.content))
        path = request.url.path
        if path == "/price/v2":
            ids = request.url.params["ids"].split(",")
            data = {m: {"price": str(PRICES[m])} for m in ids if m in PRICES}
            return httpx.Response(200, json={"data": data})
        if path == "/swap/v1/quote":
            return httpx.Response(200, json=self.quote(request.url.params))
        if path == "/swap/v1/swap":
            if self.fail_swaps:
                return httpx.Response(400, json={"error": "Stale quote"})
            return httpx.Response(200, json={"swapTransaction": self.unsigned_transaction()})
        return httpx.Response(404)

    def quote(self, params) -> dict:
        self.quotes.append(dict(params))
        in_amount = int(params["amount"])
        # SOL (9 decimals) into USDC (6 decimals) at the oracle price
        out_amount = in_amount * 100 // 1000
        return {
            "inputMint": params["inputMint"],
            "outputMint": params["outputMint"],
            "inAmount": str(in_amount),
            "outAmount": str(out_amount),
            "slippageBps": int(params["slippageBps"]),
            "priceImpactPct": "0.001",
            "routePlan": [{"swapInfo": {"label": "Whirlpool"}}],
        }

    def unsigned_transaction(self) -> str:
        instruction = transfer(
            TransferParams(
                from_pubkey=self.owner.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1
            )
        )
        message = MessageV0.try_compile(self.owner.pubkey(), [instruction], [], Hash.default())
        transaction = VersionedTransaction(message, [NullSigner(self.owner.pubkey())])
        return base64.b64encode(bytes(transaction)).decode()

    def rpc(self, payload: dict) -> httpx.Response:
        method = payload["method"]
        if method == "getBalance":
            result = {"value": 70 * 10**9}
        elif method == "getTokenAccountsByOwner":
            accounts = []
            if payload["params"][1]["programId"] == TOKEN_PROGRAM_IDS[0]:
                accounts = [self.token_account(USDC_MINT, 3_000 * 10**6, 6)]
            result = {"value": accounts}
        elif method == "sendTransaction":
            raw = base64.b64decode(payload["params"][0])
            self.sent.append(VersionedTransaction.from_bytes(raw))
            result = f"sig{len(self.sent)}"
        elif method == "getSignatureStatuses":
            result = {"value": [{"err": None, "confirmationStatus": "confirmed"}]}
        else:
            return httpx.Response(400, json={"error": f"unexpected {method}"})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    @staticmethod
    def token_account(mint: str, amount: int, decimals: int) -> dict:
        info = {"mint": mint, "tokenAmount": {"amount": str(amount), "decimals": decimals}}
        return {"account": {"data": {"parsed": {"info": info}}}}


def build_api(network: SolanaNetwork, keypair: Keypair, db_path: str, sink: CollectingSink):
    wallet = str(keypair.pubkey())
    venue = JupiterVenue(
        rpc_url=RPC_URL,
        base_url=BASE_URL,
        retry_delay=0.0,
        confirm_poll_interval=0.0,
        client=httpx.AsyncClient(transport=httpx.MockTransport(network.handler)),
    )
    reader = RpcPortfolioReader(
        RPC_URL,
        venue.get_prices,
        client=httpx.AsyncClient(transport=httpx.MockTransport(network.handler)),
    )
    agents = {
        wallet: {
            "target_allocations": [
                {"mint": SOL_MINT, "target_percentage": 50},
                {"mint": USDC_MINT, "target_percentage": 50},
            ],
            "rebalance_threshold": 5,
            "max_slippage_bps": 75,
            "auto_rebalance": True,
        }
    }
    return TradeAgentAPI(
        venue=venue,
        market_data=MarketDataService(StaticProvider({})),
        portfolio_reader=reader,
        ledger=SqliteLedger(db_path),
        notifier=sink,
        signer=KeypairSigner(keypair),
        agents=agents,
        execution={"inter_action_delay": 0},
    )


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


class TestRebalanceFlow:
    """Snapshot → plan → quote → sign → submit → confirm → record."""

    @pytest.mark.asyncio
    async def test_auto_rebalance_sells_excess_sol(self, keypair, tmp_path) -> None:
        network = SolanaNetwork(keypair)
        sink = CollectingSink()
        wallet = str(keypair.pubkey())

        async with build_api(network, keypair, str(tmp_path / "ledger.db"), sink) as api:
            result = await api.auto_rebalance(wallet)
            status = await api.status(wallet)

        assert result.state == SessionState.COMPLETED
        assert result.executed_count == 1
        [quote] = network.quotes
        assert (quote["inputMint"], quote["outputMint"]) == (SOL_MINT, USDC_MINT)
        assert quote["slippageBps"] == "75"
        assert int(quote["amount"]) == pytest.approx(20 * 10**9, abs=1)

        [sent] = network.sent
        assert sent.signatures[0].verify(keypair.pubkey(), to_bytes_versioned(sent.message))

        trades = status["trades"]
        assert trades["signature"].tolist() == ["sig1"]
        assert trades["slippage_bps"].tolist() == [75]
        assert trades["output_amount"].iloc[0] == pytest.approx(2_000.0, abs=0.01)
        assert status["total_value"] == pytest.approx(10_000.0)
        assert [n.title for n in sink.of_type(NotificationType.SUCCESS)][0] == "Swap executed"

    @pytest.mark.asyncio
    async def test_refused_swap_is_captured(self, keypair, tmp_path) -> None:
        network = SolanaNetwork(keypair, fail_swaps=True)
        sink = CollectingSink()
        wallet = str(keypair.pubkey())

        async with build_api(network, keypair, str(tmp_path / "ledger.db"), sink) as api:
            result = await api.rebalance(wallet)
            trades = await api.ledger.list_trades(wallet)

        assert result.state == SessionState.FAILED
        assert result.failed_count == 1
        assert "Stale quote" in result.errors[0]
        assert network.sent == []
        assert trades.empty
        assert sink.of_type(NotificationType.ERROR)

    @pytest.mark.asyncio
    async def test_dry_run_plan(self, keypair, tmp_path) -> None:
        network = SolanaNetwork(keypair)
        wallet = str(keypair.pubkey())

        async with build_api(network, keypair, str(tmp_path / "ledger.db"), CollectingSink()) as api:
            plan = await api.plan(wallet)

        assert [a.describe() for a in plan] == ["sell SOL to USDC"]
        assert plan.actions[0].estimated_output == pytest.approx(2_000.0, abs=0.01)
        assert network.sent == []
