"""Orchestration Layer - Runs rebalance sessions and the automation loop.

This module provides the session state machine that drives one
analyze → plan → quote → execute cycle and the scheduler that runs
cycles unattended per wallet.
"""

from trade_agent.orchestration.scheduler import RebalanceScheduler
from trade_agent.orchestration.session import RebalanceSession

__all__ = [
    "RebalanceSession",
    "RebalanceScheduler",
]
