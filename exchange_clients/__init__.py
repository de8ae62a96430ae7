"""
Venue adapter contract and shared plumbing.

Modules:
    - base_client: adapter capability contract (BaseExchangeClient)
    - base_models: canonical payloads, exception taxonomy, credential checks
    - rate_limiter: per-venue token bucket
    - guarded_client: timeout / rate-limit / retry wrapper
    - factory: dynamic adapter loading
"""

from .base_client import BaseExchangeClient
from .base_models import (
    AccountBalance,
    AmbiguousOrderError,
    ExchangeAuthenticationError,
    ExchangeError,
    ExchangePositionSnapshot,
    ExchangeTimeoutError,
    FundingRate,
    MissingCredentialsError,
    OrderBookLevel,
    OrderBookSnapshot,
    OrderRejectedError,
    OrderRequest,
    OrderSide,
    OrderStatus,
    PreSubmissionError,
    RateLimitExceededError,
    TradeResult,
    TransientExchangeError,
    validate_credentials,
)
from .guarded_client import GuardedExchangeClient
from .rate_limiter import VenueRateLimiter

__all__ = [
    "AccountBalance",
    "AmbiguousOrderError",
    "BaseExchangeClient",
    "ExchangeAuthenticationError",
    "ExchangeError",
    "ExchangePositionSnapshot",
    "ExchangeTimeoutError",
    "FundingRate",
    "GuardedExchangeClient",
    "MissingCredentialsError",
    "OrderBookLevel",
    "OrderBookSnapshot",
    "OrderRejectedError",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "PreSubmissionError",
    "RateLimitExceededError",
    "TradeResult",
    "TransientExchangeError",
    "VenueRateLimiter",
    "validate_credentials",
]
