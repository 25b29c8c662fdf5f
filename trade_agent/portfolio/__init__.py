"""Portfolio Layer - Allocation analysis and rebalance planning.

Components:
- AllocationAnalyzer: Current vs. target allocation deviations
- RebalancePlanner: Ordered sell/buy actions through an intermediary asset
- PortfolioSnapshot / Asset: Point-in-time holdings
- RebalanceAction / RebalancePlan: Immutable planned trades
"""

from trade_agent.portfolio.allocation_analyzer import AllocationAnalyzer
from trade_agent.portfolio.base import (
    ActionStatus,
    AllocationDeviation,
    Asset,
    PortfolioSnapshot,
    RebalanceAction,
    RebalanceOperation,
    RebalancePlan,
    TargetAllocation,
)
from trade_agent.portfolio.rebalance_planner import RebalancePlanner, plan_decimals

__all__ = [
    # Components
    "AllocationAnalyzer",
    "RebalancePlanner",
    "plan_decimals",
    # Data classes
    "Asset",
    "PortfolioSnapshot",
    "TargetAllocation",
    "AllocationDeviation",
    "RebalanceAction",
    "RebalancePlan",
    # Enums
    "ActionStatus",
    "RebalanceOperation",
]
