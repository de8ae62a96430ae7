"""
Guarded adapter wrapper.

Every venue call made by the engine goes through ``GuardedExchangeClient``,
which applies (in order) the venue rate limit, a per-call timeout, and a
bounded exponential-backoff retry for transient failures.

Retry rules:
- idempotent calls (queries, leverage, close) retry on ``TransientExchangeError``
- ``execute_order`` retries only on ``PreSubmissionError``; a timeout during
  submission becomes ``AmbiguousOrderError`` and is never retried
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from exchange_clients.base_client import BaseExchangeClient
from exchange_clients.base_models import (
    AccountBalance,
    AmbiguousOrderError,
    ExchangePositionSnapshot,
    ExchangeTimeoutError,
    FundingRate,
    OrderBookSnapshot,
    OrderRequest,
    PreSubmissionError,
    TradeResult,
    TransientExchangeError,
)
from exchange_clients.rate_limiter import VenueRateLimiter
from helpers.unified_logger import get_exchange_logger


T = TypeVar("T")


class GuardedExchangeClient(BaseExchangeClient):
    """
    Decorates an adapter with rate limiting, timeouts and retries.

    Args:
        inner: Raw venue adapter
        rate_limiter: Token bucket shared by all calls to this venue
        timeout_seconds: Per-attempt timeout
        max_attempts: Attempts for retryable calls (1 disables retry)
        min_backoff / max_backoff: Exponential backoff bounds in seconds
        fail_fast_market_data: Market-data calls raise instead of waiting for
            a rate-limit slot
    """

    def __init__(
        self,
        inner: BaseExchangeClient,
        rate_limiter: Optional[VenueRateLimiter] = None,
        *,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        min_backoff: float = 0.5,
        max_backoff: float = 5.0,
        fail_fast_market_data: bool = False,
    ) -> None:
        self.inner = inner
        self.venue = inner.get_exchange_name()
        super().__init__(dict(inner.config))
        self.rate_limiter = rate_limiter
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self.fail_fast_market_data = fail_fast_market_data
        self.logger = get_exchange_logger(self.venue)

    def get_exchange_name(self) -> str:
        return self.venue

    def get_taker_fee(self) -> Optional[Decimal]:
        return self.inner.get_taker_fee()

    async def connect(self) -> None:
        await self.inner.connect()

    async def disconnect(self) -> None:
        await self.inner.disconnect()

    # ========================================================================
    # Plumbing
    # ========================================================================

    async def _attempt(self, call: Callable[[], Awaitable[T]], *, block: bool, name: str) -> T:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(block=block)
        try:
            return await asyncio.wait_for(call(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ExchangeTimeoutError(
                f"{self.venue}.{name} timed out after {self.timeout_seconds}s", venue=self.venue
            ) from exc

    def _log_retry(self, name: str) -> Callable[[RetryCallState], None]:
        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            self.logger.warning(
                f"⚠️ [{self.venue.upper()}] {name} attempt {retry_state.attempt_number}/"
                f"{self.max_attempts} failed: {exc}"
            )

        return _before_sleep

    async def _guarded(
        self,
        name: str,
        call: Callable[[], Awaitable[T]],
        *,
        retry_on: Type[BaseException] = TransientExchangeError,
        block: bool = True,
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.min_backoff, min=self.min_backoff, max=self.max_backoff),
            retry=retry_if_exception_type(retry_on),
            before_sleep=self._log_retry(name),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._attempt(call, block=block, name=name)
        raise AssertionError("unreachable")  # pragma: no cover

    # ========================================================================
    # Market data (idempotent)
    # ========================================================================

    async def get_current_funding_rate(self, instrument: str) -> FundingRate:
        return await self._guarded(
            "get_current_funding_rate",
            lambda: self.inner.get_current_funding_rate(instrument),
            block=not self.fail_fast_market_data,
        )

    async def get_funding_rate_history(self, instrument: str, hours: int) -> List[FundingRate]:
        return await self._guarded(
            "get_funding_rate_history",
            lambda: self.inner.get_funding_rate_history(instrument, hours),
            block=not self.fail_fast_market_data,
        )

    async def get_order_book(self, instrument: str, depth: int = 50) -> OrderBookSnapshot:
        return await self._guarded(
            "get_order_book",
            lambda: self.inner.get_order_book(instrument, depth),
            block=not self.fail_fast_market_data,
        )

    # ========================================================================
    # Account / trading
    # ========================================================================

    async def get_position(self, instrument: str) -> Optional[ExchangePositionSnapshot]:
        return await self._guarded("get_position", lambda: self.inner.get_position(instrument))

    async def get_balance(self) -> AccountBalance:
        return await self._guarded("get_balance", self.inner.get_balance)

    async def set_leverage(self, instrument: str, leverage: int) -> bool:
        return await self._guarded("set_leverage", lambda: self.inner.set_leverage(instrument, leverage))

    async def set_isolated_margin(self, instrument: str) -> bool:
        return await self._guarded("set_isolated_margin", lambda: self.inner.set_isolated_margin(instrument))

    async def close_position(self, instrument: str) -> bool:
        return await self._guarded("close_position", lambda: self.inner.close_position(instrument))

    async def execute_order(self, request: OrderRequest) -> TradeResult:
        """
        Submit an order.

        Raises:
            AmbiguousOrderError: Submission timed out; outcome unknown.
            PreSubmissionError: Request never reached the venue after all attempts.
        """
        try:
            return await self._guarded(
                "execute_order",
                lambda: self.inner.execute_order(request),
                retry_on=PreSubmissionError,
            )
        except ExchangeTimeoutError as exc:
            self.logger.error(
                f"🚨 [{self.venue.upper()}] Order submission timed out for "
                f"{request.side.value} {request.quantity} {request.instrument}; outcome unknown"
            )
            raise AmbiguousOrderError(str(exc), venue=self.venue) from exc

