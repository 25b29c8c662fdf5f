"""SQLite ledger implementation.

This module provides the SqliteLedger class for persisting agent
configuration, portfolio snapshots and executed trades. Blocking sqlite3
calls run in worker threads, each with its own connection.
"""

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from trade_agent.ledger.base import AgentConfig, LedgerClient, TradeRecord
from trade_agent.portfolio.base import Asset, PortfolioSnapshot
from trade_agent.utils.exceptions import LedgerError, LedgerRecordError
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)


class SqliteLedger(LedgerClient):
    """Ledger backed by a SQLite file.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        """Initialize the ledger and create tables.

        Args:
            db_path: Path to the SQLite database file. A file path is
                required; each worker thread opens its own connection.
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self.create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(self.db_path)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    def create_tables(self) -> None:
        """Create necessary database tables if they don't exist."""
        schema_path = Path(__file__).parent / "schema.sql"
        try:
            schema = schema_path.read_text()
            conn = self._get_connection()
            conn.executescript(schema)
            conn.commit()
            logger.info("Ledger initialized at %s", self.db_path)
        except (OSError, sqlite3.Error) as e:
            logger.error("Failed to create ledger tables: %s", e)
            raise LedgerError(f"Ledger initialization failed: {e}") from e

    # Synchronous operations

    def _load_agent_config(self, wallet: str) -> Optional[AgentConfig]:
        row = self._get_connection().execute(
            "SELECT config_json FROM agent_configs WHERE wallet = ?", (wallet,)
        ).fetchone()
        if row is None:
            return None
        return AgentConfig.from_dict(wallet, json.loads(row["config_json"]))

    def _store_agent_config(self, config: AgentConfig) -> None:
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO agent_configs (wallet, config_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(wallet) DO UPDATE SET
                config_json=excluded.config_json,
                updated_at=excluded.updated_at
                """,
                (config.wallet, json.dumps(config.to_dict()), datetime.now().isoformat()),
            )

    def _load_portfolio(self, wallet: str) -> Optional[PortfolioSnapshot]:
        conn = self._get_connection()
        header = conn.execute(
            """
            SELECT id, taken_at FROM portfolio_snapshots
            WHERE wallet = ? ORDER BY taken_at DESC, id DESC LIMIT 1
            """,
            (wallet,),
        ).fetchone()
        if header is None:
            return None

        rows = conn.execute(
            "SELECT mint, symbol, decimals, raw_balance, price FROM snapshot_assets WHERE snapshot_id = ?",
            (header["id"],),
        ).fetchall()
        assets = tuple(
            Asset(
                mint=row["mint"],
                symbol=row["symbol"],
                decimals=row["decimals"],
                raw_balance=int(row["raw_balance"]),
                price=row["price"],
            )
            for row in rows
        )
        return PortfolioSnapshot(
            wallet=wallet,
            assets=assets,
            timestamp=datetime.fromisoformat(header["taken_at"]),
        )

    def _store_portfolio(self, snapshot: PortfolioSnapshot) -> None:
        conn = self._get_connection()
        with conn:
            cursor = conn.execute(
                "INSERT INTO portfolio_snapshots (wallet, taken_at, total_value) VALUES (?, ?, ?)",
                (snapshot.wallet, snapshot.timestamp.isoformat(), snapshot.total_value),
            )
            conn.executemany(
                """
                INSERT INTO snapshot_assets (snapshot_id, mint, symbol, decimals, raw_balance, price)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (cursor.lastrowid, a.mint, a.symbol, a.decimals, str(a.raw_balance), a.price)
                    for a in snapshot.assets
                ],
            )

    def _insert_trade(self, record: TradeRecord) -> None:
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO trades
                (wallet, strategy_id, from_mint, to_mint, input_amount, output_amount,
                 slippage_bps, reason, signature, executed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.wallet,
                    record.strategy_id,
                    record.from_mint,
                    record.to_mint,
                    record.input_amount,
                    record.output_amount,
                    record.slippage_bps,
                    record.reason,
                    record.signature,
                    record.timestamp.isoformat(),
                ),
            )

    def _query_trades(self, wallet: str, limit: int) -> pd.DataFrame:
        df = pd.read_sql_query(
            """
            SELECT executed_at, strategy_id, from_mint, to_mint, input_amount,
                   output_amount, slippage_bps, reason, signature
            FROM trades WHERE wallet = ?
            ORDER BY executed_at DESC, id DESC LIMIT ?
            """,
            self._get_connection(),
            params=(wallet, limit),
            parse_dates=["executed_at"],
        )
        if not df.empty:
            df.set_index("executed_at", inplace=True)
        return df

    # LedgerClient interface

    async def get_agent_config(self, wallet: str) -> Optional[AgentConfig]:
        try:
            return await asyncio.to_thread(self._load_agent_config, wallet)
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to load agent config for {wallet}: {e}") from e

    async def save_agent_config(self, config: AgentConfig) -> None:
        try:
            await asyncio.to_thread(self._store_agent_config, config)
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to save agent config for {config.wallet}: {e}") from e
        logger.info("Saved agent config for %s", config.wallet)

    async def get_portfolio(self, wallet: str) -> Optional[PortfolioSnapshot]:
        try:
            return await asyncio.to_thread(self._load_portfolio, wallet)
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to load portfolio for {wallet}: {e}") from e

    async def save_portfolio(self, snapshot: PortfolioSnapshot) -> None:
        try:
            await asyncio.to_thread(self._store_portfolio, snapshot)
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to save portfolio for {snapshot.wallet}: {e}") from e

    async def record_trade(self, record: TradeRecord) -> None:
        try:
            await asyncio.to_thread(self._insert_trade, record)
        except sqlite3.Error as e:
            raise LedgerRecordError(f"Failed to record trade for {record.wallet}: {e}") from e
        logger.debug("Recorded trade %s for %s", record.signature, record.wallet)

    async def list_trades(self, wallet: str, limit: int = 50) -> pd.DataFrame:
        try:
            return await asyncio.to_thread(self._query_trades, wallet, limit)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise LedgerError(f"Failed to list trades for {wallet}: {e}") from e

    async def close(self) -> None:
        """Close the calling thread's connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
