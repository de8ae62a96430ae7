"""
Tests for GuardedExchangeClient: retry, timeout and rate-limit policy.
"""

import asyncio
import pytest
from decimal import Decimal

from exchange_clients.base_models import (
    AmbiguousOrderError,
    ExchangeTimeoutError,
    OrderRejectedError,
    OrderRequest,
    OrderSide,
    PreSubmissionError,
    RateLimitExceededError,
    TransientExchangeError,
)
from exchange_clients.guarded_client import GuardedExchangeClient
from exchange_clients.rate_limiter import VenueRateLimiter
from tests.fakes import FakeExchangeClient, make_book


class FlakyClient(FakeExchangeClient):
    """Raises the queued exceptions (one per call) before behaving normally."""

    def __init__(self, venue="flaky", **kwargs):
        super().__init__(venue, books={"BTC": make_book(venue)}, **kwargs)
        self.failures = []
        self.calls = 0
        self.delay = 0.0

    async def _maybe_fail(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)

    async def get_position(self, instrument):
        await self._maybe_fail()
        return await super().get_position(instrument)

    async def get_order_book(self, instrument, depth=50):
        await self._maybe_fail()
        return await super().get_order_book(instrument, depth)

    async def execute_order(self, request):
        await self._maybe_fail()
        return await super().execute_order(request)


def guard(inner, **kwargs):
    kwargs.setdefault("min_backoff", 0)
    kwargs.setdefault("max_backoff", 0)
    return GuardedExchangeClient(inner, **kwargs)


def buy(quantity="1"):
    return OrderRequest(instrument="BTC", side=OrderSide.BUY, quantity=Decimal(quantity))


class TestQueries:

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        inner = FlakyClient()
        inner.failures = [TransientExchangeError("502"), ExchangeTimeoutError("slow")]

        book = await guard(inner).get_order_book("BTC")

        assert inner.calls == 3
        assert book.best_bid == Decimal("99.99")

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        inner = FlakyClient()
        inner.failures = [TransientExchangeError("502")] * 5

        with pytest.raises(TransientExchangeError):
            await guard(inner, max_attempts=2).get_position("BTC")

        assert inner.calls == 2

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self):
        inner = FlakyClient()
        inner.failures = [OrderRejectedError("bad symbol")]

        with pytest.raises(OrderRejectedError):
            await guard(inner).get_position("BTC")

        assert inner.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_exchange_timeout(self):
        inner = FlakyClient()
        inner.delay = 1.0

        with pytest.raises(ExchangeTimeoutError) as exc_info:
            await guard(inner, timeout_seconds=0.01, max_attempts=1).get_position("BTC")

        assert exc_info.value.venue == "flaky"

    @pytest.mark.asyncio
    async def test_fail_fast_market_data(self):
        inner = FlakyClient()
        limiter = VenueRateLimiter("flaky", 1, 60.0)
        client = guard(inner, rate_limiter=limiter, fail_fast_market_data=True, max_attempts=1)

        await client.get_order_book("BTC")
        with pytest.raises(RateLimitExceededError):
            await client.get_order_book("BTC")

        assert inner.calls == 1


class TestOrders:

    @pytest.mark.asyncio
    async def test_submission_timeout_is_ambiguous_and_not_retried(self):
        inner = FlakyClient()
        inner.delay = 1.0

        with pytest.raises(AmbiguousOrderError):
            await guard(inner, timeout_seconds=0.01).execute_order(buy())

        assert inner.calls == 1

    @pytest.mark.asyncio
    async def test_pre_submission_failure_is_retried(self):
        inner = FlakyClient()
        inner.failures = [PreSubmissionError("connection refused")]

        result = await guard(inner).execute_order(buy())

        assert result.is_filled
        assert inner.calls == 2
        assert len(inner.orders) == 1

    @pytest.mark.asyncio
    async def test_other_transient_failure_is_not_retried(self):
        inner = FlakyClient()
        inner.failures = [TransientExchangeError("503 after send")]

        with pytest.raises(TransientExchangeError):
            await guard(inner).execute_order(buy())

        assert inner.calls == 1


class TestPassThrough:

    @pytest.mark.asyncio
    async def test_identity_and_lifecycle(self):
        inner = FlakyClient("bybit")
        client = guard(inner)

        await client.connect()
        assert inner.connected
        assert client.get_exchange_name() == "bybit"
        assert await client.set_leverage("BTC", 3) is True
        assert inner.leverage_calls == [("BTC", 3)]
        await client.disconnect()
        assert not inner.connected
