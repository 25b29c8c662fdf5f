"""Venue Layer - Swap routing venue access.

Components:
- SwapVenue: Abstract quote / build / submit contract
- JupiterVenue: Jupiter API + Solana RPC implementation
- QuoteOk / QuoteUnavailable: Closed quote result variant

QuoteResolver lives in trade_agent.venue.quote_resolver; it depends on the
portfolio model and is imported from there directly.
"""

from trade_agent.venue.base import (
    Quote,
    QuoteOk,
    QuoteResult,
    QuoteUnavailable,
    SubmitResult,
    SwapOptions,
    SwapTransaction,
    SwapVenue,
)
from trade_agent.venue.jupiter_venue import JupiterVenue

__all__ = [
    # Abstract interface
    "SwapVenue",
    # Concrete implementations
    "JupiterVenue",
    # Data classes
    "Quote",
    "QuoteOk",
    "QuoteUnavailable",
    "QuoteResult",
    "SwapOptions",
    "SwapTransaction",
    "SubmitResult",
]
