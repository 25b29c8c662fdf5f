"""Data Providers - Token price history sources.

This module provides the price history provider implementations.
"""

from trade_agent.data.providers.birdeye_provider import BirdeyeProvider
from trade_agent.data.providers.static_provider import StaticProvider

__all__ = [
    "BirdeyeProvider",
    "StaticProvider",
]
