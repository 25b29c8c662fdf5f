"""User-friendly API for the trading agent.

Components:
- TradeAgentAPI: Snapshot, analysis, planning, rebalancing, recommendations
  and status for configured wallets
"""

from trade_agent.api.agent_api import TradeAgentAPI, token_registry

__all__ = [
    "TradeAgentAPI",
    "token_registry",
]
