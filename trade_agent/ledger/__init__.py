"""Ledger Layer - Agent configuration and trade records.

Components:
- LedgerClient: Abstract configuration / snapshot / trade-record contract
- SqliteLedger: SQLite implementation
- AgentConfig / StrategyConfig: Per-wallet agent configuration
- TradeRecord: An executed swap
"""

from trade_agent.ledger.base import (
    REBALANCE_STRATEGY_ID,
    AgentConfig,
    LedgerClient,
    StrategyConfig,
    TradeRecord,
)
from trade_agent.ledger.sqlite_ledger import SqliteLedger

__all__ = [
    "LedgerClient",
    "SqliteLedger",
    "AgentConfig",
    "StrategyConfig",
    "TradeRecord",
    "REBALANCE_STRATEGY_ID",
]
