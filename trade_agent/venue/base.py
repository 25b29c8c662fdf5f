"""Abstract swap venue contract.

The venue is an opaque quote / build / submit service. Quote lookups never
raise for "no route" conditions: they return the closed variant
QuoteOk | QuoteUnavailable so every call site handles both cases.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class Quote:
    """Venue quote for an ExactIn swap.

    Attributes:
        input_mint: Mint being sold
        output_mint: Mint being bought
        in_amount: Input amount in raw units
        out_amount: Expected output amount in raw units
        other_amount_threshold: Minimum output after slippage, raw units
        slippage_bps: Slippage tolerance the quote was requested with
        price_impact_pct: Price impact in percent (0.5 == 0.5%)
        route: Route labels, in hop order
        swap_mode: "ExactIn" or "ExactOut"
        raw: Unmodified venue payload, sent back when building the swap
    """

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    other_amount_threshold: int
    slippage_bps: int
    price_impact_pct: float
    route: Tuple[str, ...] = ()
    swap_mode: str = "ExactIn"
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "Quote":
        """Build a Quote from a Jupiter /quote response body."""
        route = tuple(
            step.get("swapInfo", {}).get("label", "")
            for step in data.get("routePlan", [])
        )
        return cls(
            input_mint=data["inputMint"],
            output_mint=data["outputMint"],
            in_amount=int(data["inAmount"]),
            out_amount=int(data["outAmount"]),
            other_amount_threshold=int(data.get("otherAmountThreshold", data["outAmount"])),
            slippage_bps=int(data.get("slippageBps", 0)),
            price_impact_pct=float(data.get("priceImpactPct") or 0.0),
            route=route,
            swap_mode=data.get("swapMode", "ExactIn"),
            raw=dict(data),
        )

    def output_amount(self, decimals: int) -> float:
        """Expected output converted to human units."""
        return self.out_amount / (10 ** decimals)


@dataclass(frozen=True)
class QuoteOk:
    """A route was found."""

    quote: Quote


@dataclass(frozen=True)
class QuoteUnavailable:
    """No usable quote.

    Attributes:
        reason: Human-readable cause
        retryable: True for transport errors and timeouts, False when the
            venue answered that no route exists
    """

    reason: str
    retryable: bool = False


QuoteResult = Union[QuoteOk, QuoteUnavailable]


@dataclass(frozen=True)
class SwapOptions:
    """Transaction-building options passed to the venue."""

    dynamic_compute_unit_limit: bool = True
    dynamic_slippage: bool = True
    priority_level: str = "high"
    max_priority_lamports: int = 1_000_000
    wrap_and_unwrap_sol: bool = True

    def __post_init__(self):
        if self.priority_level not in ("medium", "high", "veryHigh"):
            raise ValueError(
                f"priority_level must be medium, high or veryHigh, got {self.priority_level}"
            )
        if self.max_priority_lamports < 0:
            raise ValueError(
                f"max_priority_lamports must be >= 0, got {self.max_priority_lamports}"
            )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "dynamicComputeUnitLimit": self.dynamic_compute_unit_limit,
            "dynamicSlippage": self.dynamic_slippage,
            "wrapAndUnwrapSol": self.wrap_and_unwrap_sol,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": self.max_priority_lamports,
                    "priorityLevel": self.priority_level,
                }
            },
        }


@dataclass(frozen=True)
class SwapTransaction:
    """Unsigned serialized transaction returned by the venue.

    Attributes:
        transaction: Base64-encoded versioned transaction
        last_valid_block_height: Block height after which the transaction expires
    """

    transaction: str
    last_valid_block_height: int = 0


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of submitting or confirming a signed transaction."""

    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None


class SwapVenue(ABC):
    """Abstract interface for the swap-routing venue.

    Example:
        >>> venue = JupiterVenue(rpc_url=creds.rpc_url)
        >>> result = await venue.get_quote(SOL_MINT, USDC_MINT, 1_000_000_000, 50)
        >>> if isinstance(result, QuoteOk):
        ...     tx = await venue.build_swap_transaction(result.quote, pubkey, SwapOptions())
    """

    @abstractmethod
    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> QuoteResult:
        """Quote an ExactIn swap of `amount` raw units of `input_mint`."""
        pass

    @abstractmethod
    async def build_swap_transaction(
        self,
        quote: Quote,
        user_public_key: str,
        options: SwapOptions,
    ) -> SwapTransaction:
        """Build an unsigned transaction for a previously fetched quote.

        Raises:
            ExecutionError: If the venue refuses (stale quote, no liquidity)
            VenueConnectionError: If the venue cannot be reached
        """
        pass

    @abstractmethod
    async def submit_signed(self, signed_transaction: bytes) -> SubmitResult:
        """Submit a signed transaction; returns its signature on acceptance."""
        pass

    @abstractmethod
    async def confirm_transaction(self, signature: str) -> SubmitResult:
        """Wait until the transaction is confirmed or has failed on-chain."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
