"""Shared fixtures and in-memory fakes for the test suite."""

from typing import Dict, List, Optional, Sequence, Set, Tuple

import pandas as pd
import pytest

from trade_agent.data.base import SOL_MINT, USDC_MINT, USDT_MINT
from trade_agent.execution.base import Signer
from trade_agent.ledger.base import AgentConfig, LedgerClient, TradeRecord
from trade_agent.portfolio.base import Asset, PortfolioSnapshot, TargetAllocation
from trade_agent.utils.exceptions import ExecutionError, LedgerRecordError
from trade_agent.venue.base import (
    Quote,
    QuoteOk,
    QuoteUnavailable,
    SubmitResult,
    SwapTransaction,
    SwapVenue,
)

WALLET = "8fJzV3mGf4rKQvA1tqDpYxLh2N7cWbE9sU6oZkRn5HyM"
JUP_MINT = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"
BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"

Pair = Tuple[str, str]


def make_quote(
    input_mint: str,
    output_mint: str,
    in_amount: int,
    out_amount: int,
    price_impact: float = 0.05,
) -> Quote:
    return Quote(
        input_mint=input_mint,
        output_mint=output_mint,
        in_amount=in_amount,
        out_amount=out_amount,
        other_amount_threshold=out_amount,
        slippage_bps=50,
        price_impact_pct=price_impact,
        route=("Whirlpool",),
        raw={"inputMint": input_mint, "outputMint": output_mint},
    )


def sol(amount: float, price: float = 100.0) -> Asset:
    return Asset.from_amount(SOL_MINT, "SOL", 9, amount, price)


def usdc(amount: float, price: float = 1.0) -> Asset:
    return Asset.from_amount(USDC_MINT, "USDC", 6, amount, price)


def usdt(amount: float, price: float = 1.0) -> Asset:
    return Asset.from_amount(USDT_MINT, "USDT", 6, amount, price)


def jup(amount: float, price: float = 0.5) -> Asset:
    return Asset.from_amount(JUP_MINT, "JUP", 6, amount, price)


def make_snapshot(*assets: Asset, wallet: str = WALLET) -> PortfolioSnapshot:
    return PortfolioSnapshot(wallet=wallet, assets=assets)


def history(
    prices: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    freq: str = "h",
    end: str = "2024-06-01",
) -> pd.DataFrame:
    """Price history frame ending at `end`, one row per `freq`."""
    index = pd.date_range(end=end, periods=len(prices), freq=freq, tz="UTC", name="timestamp")
    return pd.DataFrame(
        {
            "price": [float(p) for p in prices],
            "volume": [float(v) for v in (volumes if volumes is not None else [1000.0] * len(prices))],
        },
        index=index,
    )


class FakeVenue(SwapVenue):
    """Scriptable in-memory venue.

    Quotes return `out_amount = in_amount * rate` (raw units). Failures are
    keyed by (input_mint, output_mint).
    """

    def __init__(
        self,
        rate: float = 1.0,
        unavailable: Optional[Set[Pair]] = None,
        retryable: Optional[Set[Pair]] = None,
        build_failures: Optional[Set[Pair]] = None,
        submit_failures: Optional[Set[Pair]] = None,
        confirm_failures: Optional[Set[Pair]] = None,
        price_impact: float = 0.05,
    ):
        self.rate = rate
        self.unavailable = unavailable or set()
        self.retryable = retryable or set()
        self.build_failures = build_failures or set()
        self.submit_failures = submit_failures or set()
        self.confirm_failures = confirm_failures or set()
        self.price_impact = price_impact
        self.quote_calls: List[Tuple[str, str, int, int]] = []
        self.built: List[Pair] = []
        self.submitted: List[str] = []
        self._signatures: Dict[str, Pair] = {}
        self.closed = False

    async def get_quote(self, input_mint, output_mint, amount, slippage_bps):
        self.quote_calls.append((input_mint, output_mint, amount, slippage_bps))
        pair = (input_mint, output_mint)
        if pair in self.retryable:
            return QuoteUnavailable(reason="Venue timeout", retryable=True)
        if pair in self.unavailable:
            return QuoteUnavailable(reason="No route found")
        return QuoteOk(
            make_quote(input_mint, output_mint, amount, int(amount * self.rate), self.price_impact)
        )

    async def build_swap_transaction(self, quote, user_public_key, options):
        pair = (quote.input_mint, quote.output_mint)
        if pair in self.build_failures:
            raise ExecutionError("Insufficient liquidity")
        self.built.append(pair)
        return SwapTransaction(transaction=f"{quote.input_mint}:{quote.output_mint}")

    async def submit_signed(self, signed_transaction: bytes) -> SubmitResult:
        input_mint, output_mint = signed_transaction.decode().split(":")
        pair = (input_mint, output_mint)
        if pair in self.submit_failures:
            return SubmitResult(success=False, error="Blockhash not found")
        signature = f"sig{len(self.submitted) + 1}"
        self.submitted.append(signature)
        self._signatures[signature] = pair
        return SubmitResult(success=True, signature=signature)

    async def confirm_transaction(self, signature: str) -> SubmitResult:
        if self._signatures.get(signature) in self.confirm_failures:
            return SubmitResult(success=False, signature=signature, error="Slippage exceeded")
        return SubmitResult(success=True, signature=signature)

    async def close(self) -> None:
        self.closed = True


class FakeSigner(Signer):
    """Signs by echoing the transaction payload."""

    def __init__(self, public_key: str = WALLET):
        self._public_key = public_key
        self.signed: List[str] = []

    @property
    def public_key(self) -> str:
        return self._public_key

    async def sign(self, transaction: SwapTransaction) -> bytes:
        self.signed.append(transaction.transaction)
        return transaction.transaction.encode()


class InMemoryLedger(LedgerClient):
    def __init__(self, fail_records: bool = False):
        self.configs: Dict[str, AgentConfig] = {}
        self.snapshots: Dict[str, PortfolioSnapshot] = {}
        self.trades: List[TradeRecord] = []
        self.fail_records = fail_records

    async def get_agent_config(self, wallet):
        return self.configs.get(wallet)

    async def save_agent_config(self, config):
        self.configs[config.wallet] = config

    async def get_portfolio(self, wallet):
        return self.snapshots.get(wallet)

    async def save_portfolio(self, snapshot):
        self.snapshots[snapshot.wallet] = snapshot

    async def record_trade(self, record):
        if self.fail_records:
            raise LedgerRecordError("ledger unavailable")
        self.trades.append(record)

    async def list_trades(self, wallet, limit=50):
        rows = [vars(t) for t in self.trades if t.wallet == wallet][-limit:]
        return pd.DataFrame(rows)


@pytest.fixture
def venue() -> FakeVenue:
    return FakeVenue()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def sol_heavy_snapshot() -> PortfolioSnapshot:
    """70% SOL / 30% USDC, $10,000 total."""
    return make_snapshot(sol(70.0, price=100.0), usdc(3000.0))


@pytest.fixture
def even_targets() -> Tuple[TargetAllocation, ...]:
    return (
        TargetAllocation(mint=SOL_MINT, target_percentage=50.0),
        TargetAllocation(mint=USDC_MINT, target_percentage=50.0),
    )


@pytest.fixture
def agent_config(even_targets) -> AgentConfig:
    return AgentConfig(
        wallet=WALLET,
        target_allocations=even_targets,
        rebalance_threshold=5.0,
        auto_rebalance=True,
    )
