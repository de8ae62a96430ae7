"""
Shared data structures, exceptions, and utilities for exchange clients.

Adapters translate venue payloads into these types at their boundary so the
engine never sees raw exchange responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ============================================================================
# Exceptions
# ============================================================================


class ExchangeError(Exception):
    """Base class for every adapter-level failure."""

    def __init__(self, message: str, *, venue: Optional[str] = None):
        super().__init__(message)
        self.venue = venue


class TransientExchangeError(ExchangeError):
    """Timeouts, 5xx and throttling. Safe to retry for idempotent calls."""


class RateLimitExceededError(TransientExchangeError):
    """Local or venue-side rate limit hit."""


class ExchangeTimeoutError(TransientExchangeError):
    """Venue did not answer within the configured timeout."""


class PreSubmissionError(TransientExchangeError):
    """The order request provably never reached the venue."""


class AmbiguousOrderError(ExchangeError):
    """
    Order outcome unknown (e.g. submission timed out).

    Never retried blindly: the caller must re-query the position.
    """


class OrderRejectedError(ExchangeError):
    """Venue explicitly refused the order."""


class ExchangeAuthenticationError(ExchangeError):
    """Credentials refused by the venue."""


class MissingCredentialsError(Exception):
    """Raised when exchange credentials are missing or invalid (placeholders)."""


_PLACEHOLDERS = {
    "your_api_key_here",
    "your_secret_key_here",
    "your_private_key_here",
    "PLACEHOLDER",
    "placeholder",
    "",
}


def validate_credentials(
    credential_name: str,
    credential_value: Optional[str],
    placeholder_values: Optional[List[str]] = None,
) -> None:
    """
    Reject missing or placeholder credentials.

    Raises:
        MissingCredentialsError: If credential is missing or is a placeholder
    """
    placeholders = set(placeholder_values) if placeholder_values is not None else _PLACEHOLDERS

    if not credential_value:
        raise MissingCredentialsError(f"Missing {credential_name} environment variable")

    if credential_value in placeholders:
        raise MissingCredentialsError(f"{credential_name} is not configured (placeholder or empty)")


# ============================================================================
# Canonical payloads
# ============================================================================


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    FILLED = "filled"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FundingRate:
    """Funding rate observation, expressed as a fraction per funding period."""

    venue: str
    instrument: str
    rate: Decimal
    observed_at: datetime = field(default_factory=utc_now)
    next_funding_at: Optional[datetime] = None


@dataclass(frozen=True)
class OrderBookLevel:
    price: Decimal
    size: Decimal


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Depth snapshot. Bids sorted by price descending, asks ascending."""

    venue: str
    instrument: str
    bids: Tuple[OrderBookLevel, ...] = ()
    asks: Tuple[OrderBookLevel, ...] = ()
    observed_at: datetime = field(default_factory=utc_now)

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return (self.best_bid + self.best_ask) / Decimal("2")

    @property
    def spread_pct(self) -> Optional[Decimal]:
        """Relative bid/ask spread as a fraction of the best bid."""
        if self.best_bid is None or self.best_ask is None or self.best_bid <= 0:
            return None
        return (self.best_ask - self.best_bid) / self.best_bid

    @classmethod
    def from_levels(
        cls,
        venue: str,
        instrument: str,
        bids: List[Tuple[Any, Any]],
        asks: List[Tuple[Any, Any]],
        observed_at: Optional[datetime] = None,
    ) -> "OrderBookSnapshot":
        """Build a snapshot from raw (price, size) pairs in any order."""
        bid_levels = sorted(
            (OrderBookLevel(Decimal(str(p)), Decimal(str(s))) for p, s in bids),
            key=lambda level: level.price,
            reverse=True,
        )
        ask_levels = sorted(
            (OrderBookLevel(Decimal(str(p)), Decimal(str(s))) for p, s in asks),
            key=lambda level: level.price,
        )
        return cls(
            venue=venue,
            instrument=instrument,
            bids=tuple(bid_levels),
            asks=tuple(ask_levels),
            observed_at=observed_at or utc_now(),
        )


@dataclass(frozen=True)
class OrderRequest:
    """Immediate-or-cancel order in base-asset quantity."""

    instrument: str
    side: OrderSide
    quantity: Decimal
    reference_price: Optional[Decimal] = None
    time_in_force: str = "IOC"
    reduce_only: bool = False
    client_order_id: Optional[str] = None


@dataclass
class TradeResult:
    """Standardized order result returned by ``execute_order``."""

    order_id: Optional[str]
    venue: str
    instrument: str
    side: OrderSide
    status: OrderStatus
    filled_qty: Decimal = Decimal("0")
    avg_price: Optional[Decimal] = None
    fees: Decimal = Decimal("0")
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED and self.filled_qty > 0

    @property
    def has_exposure(self) -> bool:
        """True when some quantity may be resting on the venue."""
        return self.filled_qty > 0 or self.status in (OrderStatus.PARTIAL, OrderStatus.UNKNOWN)


@dataclass
class ExchangePositionSnapshot:
    """
    Normalized live position on a venue.

    ``quantity`` is unsigned; ``side`` is ``"long"`` or ``"short"``.
    """

    instrument: str
    quantity: Decimal = Decimal("0")
    side: Optional[str] = None
    entry_price: Optional[Decimal] = None
    mark_price: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None
    leverage: Optional[Decimal] = None
    liquidation_price: Optional[Decimal] = None
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AccountBalance:
    venue: str
    available: Decimal
    used: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.available + self.used
