"""Custom exceptions for the trade agent.

This module defines the exception hierarchy for the application.

Only session-level setup errors (validation, configuration, missing
intermediary asset) propagate to callers. Per-action errors are captured
into the session result by the execution layer.
"""


class TradeAgentError(Exception):
    """Base exception for all trade agent errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(TradeAgentError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing required configuration keys
        - Invalid configuration values
        - Configuration file not found
    """

    pass


class ValidationError(TradeAgentError):
    """Raised when a portfolio snapshot or target allocation is malformed.

    Raised before any network call is made.

    Examples:
        - Negative balance
        - Non-finite price or USD value
        - Target percentage outside [0, 100]
    """

    pass


class DataError(TradeAgentError):
    """Base exception for market data errors."""

    pass


class DataProviderError(DataError):
    """Raised when a market data provider fails to fetch data.

    Examples:
        - API rate limit exceeded
        - Network connection failed
        - Invalid API credentials
    """

    pass


class PortfolioError(TradeAgentError):
    """Base exception for portfolio layer errors."""

    pass


class NoIntermediaryAssetError(PortfolioError):
    """Raised when no stablecoin or native gas asset is held.

    Rebalancing routes every trade through an intermediary asset, so
    planning cannot proceed without one.
    """

    pass


class VenueError(TradeAgentError):
    """Base exception for swap venue errors."""

    pass


class VenueConnectionError(VenueError):
    """Raised when the swap venue cannot be reached after all retries.

    Examples:
        - HTTP 5xx responses
        - Request timeout
        - Connection refused
    """

    pass


class QuoteUnavailableError(VenueError):
    """Raised when the venue returns no route for a requested trade.

    Examples:
        - No liquidity for the token pair
        - Amount below the venue minimum
    """

    pass


class ExecutionError(TradeAgentError):
    """Raised when a swap cannot be built, signed, submitted or confirmed.

    Examples:
        - Stale quote refused by the venue
        - Transaction failed on-chain
        - Confirmation timed out
    """

    pass


class SessionBusyError(ExecutionError):
    """Raised when a wallet already has a live execution session."""

    pass


class SessionCancelledError(ExecutionError):
    """Raised when a session is cancelled before an action starts."""

    pass


class LedgerError(TradeAgentError):
    """Base exception for ledger contract errors."""

    pass


class LedgerRecordError(LedgerError):
    """Raised when recording an executed trade fails.

    The swap has already happened on-chain, so this never changes the
    status of the executed action.
    """

    pass


class PartialFailureError(TradeAgentError):
    """Raised on request when some actions of a session failed.

    Attributes:
        result: The session result that triggered the error
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
