"""Unit tests for SqliteLedger."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from conftest import WALLET, jup, make_snapshot, sol, usdc
from trade_agent.data.base import SOL_MINT, USDC_MINT
from trade_agent.ledger.base import AgentConfig, StrategyConfig, TradeRecord
from trade_agent.ledger.sqlite_ledger import SqliteLedger
from trade_agent.portfolio.base import PortfolioSnapshot
from trade_agent.strategy.base import RiskProfile, StrategyType


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "db" / "ledger.db")


@pytest.fixture
def sqlite_ledger(db_path: str) -> SqliteLedger:
    return SqliteLedger(db_path)


def trade(minutes: int, signature: str, wallet: str = WALLET) -> TradeRecord:
    return TradeRecord(
        wallet=wallet,
        strategy_id="rebalance",
        from_mint=SOL_MINT,
        to_mint=USDC_MINT,
        input_amount=1.5,
        output_amount=150.0,
        slippage_bps=50,
        reason="sell SOL to USDC",
        signature=signature,
        timestamp=datetime(2024, 6, 1, 12, 0) + timedelta(minutes=minutes),
    )


class TestSqliteLedger:
    """Test cases for SqliteLedger."""

    def test_initialization_creates_file(self, sqlite_ledger: SqliteLedger, db_path: str) -> None:
        assert Path(db_path).exists()
        assert sqlite_ledger.db_path == db_path

    @pytest.mark.asyncio
    async def test_agent_config_roundtrip(self, sqlite_ledger: SqliteLedger, agent_config) -> None:
        config = AgentConfig(
            wallet=WALLET,
            target_allocations=agent_config.target_allocations,
            max_amount_per_trade=250.0,
            risk_profile=RiskProfile.AGGRESSIVE,
            preferred_tokens=(jup(1.0).mint,),
            strategies=(
                StrategyConfig(
                    id="dca-1", name="DCA", type=StrategyType.DCA, params={"fraction": 0.2}
                ),
            ),
        )
        await sqlite_ledger.save_agent_config(config)

        loaded = await sqlite_ledger.get_agent_config(WALLET)

        assert loaded == config
        assert loaded.strategies[0].params == {"fraction": 0.2}

    @pytest.mark.asyncio
    async def test_agent_config_update(self, sqlite_ledger: SqliteLedger, agent_config) -> None:
        await sqlite_ledger.save_agent_config(agent_config)
        updated = AgentConfig(wallet=WALLET, rebalance_threshold=2.5)
        await sqlite_ledger.save_agent_config(updated)

        assert (await sqlite_ledger.get_agent_config(WALLET)).rebalance_threshold == 2.5

    @pytest.mark.asyncio
    async def test_unknown_wallet(self, sqlite_ledger: SqliteLedger) -> None:
        assert await sqlite_ledger.get_agent_config("nobody") is None
        assert await sqlite_ledger.get_portfolio("nobody") is None

    @pytest.mark.asyncio
    async def test_latest_snapshot_wins(self, sqlite_ledger: SqliteLedger) -> None:
        older = PortfolioSnapshot(
            wallet=WALLET, assets=(sol(1.0),), timestamp=datetime(2024, 6, 1, 10, 0)
        )
        newer = PortfolioSnapshot(
            wallet=WALLET,
            assets=(sol(2.0), usdc(123.456789)),
            timestamp=datetime(2024, 6, 1, 11, 0),
        )
        await sqlite_ledger.save_portfolio(newer)
        await sqlite_ledger.save_portfolio(older)

        loaded = await sqlite_ledger.get_portfolio(WALLET)

        assert loaded.timestamp == newer.timestamp
        assert loaded.assets == newer.assets
        assert loaded.find(USDC_MINT).raw_balance == 123_456_789

    @pytest.mark.asyncio
    async def test_empty_snapshot(self, sqlite_ledger: SqliteLedger) -> None:
        await sqlite_ledger.save_portfolio(make_snapshot())

        loaded = await sqlite_ledger.get_portfolio(WALLET)

        assert loaded.assets == ()
        assert loaded.total_value == 0.0

    @pytest.mark.asyncio
    async def test_trades_newest_first(self, sqlite_ledger: SqliteLedger) -> None:
        for minutes, signature in [(0, "sig-a"), (10, "sig-c"), (5, "sig-b")]:
            await sqlite_ledger.record_trade(trade(minutes, signature))
        await sqlite_ledger.record_trade(trade(20, "sig-other", wallet="other"))

        df = await sqlite_ledger.list_trades(WALLET)

        assert df.index.name == "executed_at"
        assert df["signature"].tolist() == ["sig-c", "sig-b", "sig-a"]
        assert df["output_amount"].iloc[0] == 150.0

    @pytest.mark.asyncio
    async def test_trades_limit(self, sqlite_ledger: SqliteLedger) -> None:
        for minutes in range(5):
            await sqlite_ledger.record_trade(trade(minutes, f"sig-{minutes}"))

        df = await sqlite_ledger.list_trades(WALLET, limit=2)

        assert df["signature"].tolist() == ["sig-4", "sig-3"]

    @pytest.mark.asyncio
    async def test_no_trades(self, sqlite_ledger: SqliteLedger) -> None:
        df = await sqlite_ledger.list_trades(WALLET)

        assert df.empty

    @pytest.mark.asyncio
    async def test_data_persists_across_instances(self, db_path: str, agent_config) -> None:
        first = SqliteLedger(db_path)
        await first.save_agent_config(agent_config)
        await first.close()

        second = SqliteLedger(db_path)

        assert await second.get_agent_config(WALLET) == agent_config
        await second.close()
