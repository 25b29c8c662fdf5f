"""Execution Layer - Swap execution sessions.

This module executes quoted rebalance plans and accepted recommendations
against the swap venue, one action at a time per wallet.
"""

from trade_agent.execution.base import (
    ActionOutcome,
    CancellationToken,
    ExecutionOptions,
    RebalanceResult,
    SessionState,
    Signer,
    WalletLockRegistry,
)
from trade_agent.execution.coordinator import ExecutionCoordinator
from trade_agent.execution.signer import KeypairSigner

__all__ = [
    # Abstract interface
    "Signer",
    # Concrete implementations
    "ExecutionCoordinator",
    "KeypairSigner",
    # Data classes
    "ExecutionOptions",
    "ActionOutcome",
    "RebalanceResult",
    "CancellationToken",
    "WalletLockRegistry",
    # Enums
    "SessionState",
]
