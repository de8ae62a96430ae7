"""
Tests for ExecutionCoordinator

Open path: fills, verification, compensating close, ambiguous submissions,
persistence failure. Close path: idempotency and per-strategy serialisation.
"""

import asyncio
import pytest
from datetime import timedelta
from decimal import Decimal

from helpers.event_notifier import ArbEvent
from strategies.implementations.funding_arbitrage.config import FundingArbConfig
from strategies.implementations.funding_arbitrage.models import (
    ArbitrageOpportunity,
    OpportunityStatus,
    PositionSide,
    PositionStatus,
    StrategyStatus,
)
from strategies.implementations.funding_arbitrage.operations.execution_coordinator import (
    DATA_INTEGRITY_EVENT,
    UNHEDGED_EXPOSURE_EVENT,
    ExecutionCoordinator,
)
from strategies.implementations.funding_arbitrage.operations.strategy_locks import StrategyLockRegistry
from tests.fakes import NOW, FakeExchangeClient, FakeStore, RecordingNotifier, fixed_clock, make_book


def make_opportunity(**overrides) -> ArbitrageOpportunity:
    fields = dict(
        instrument="BTC",
        long_venue="A",
        short_venue="B",
        long_rate=Decimal("0.0001"),
        short_rate=Decimal("0.0015"),
        rate_spread=Decimal("0.0014"),
        spread_basis_points=Decimal("14"),
        estimated_daily_profit=Decimal("3"),
        optimal_notional_size=Decimal("1000"),
        confidence=Decimal("0.85"),
        risk_score=Decimal("0.3"),
        discovered_at=NOW,
    )
    fields.update(overrides)
    return ArbitrageOpportunity(**fields)


@pytest.fixture
def venues():
    return {
        "A": FakeExchangeClient("A", books={"BTC": make_book("A")}),
        "B": FakeExchangeClient("B", books={"BTC": make_book("B")}),
    }


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def coordinator(venues, store, notifier):
    config = FundingArbConfig(instruments=["BTC"])
    return ExecutionCoordinator(config, venues, store, StrategyLockRegistry(), notifier, clock=fixed_clock())


class TestOpen:

    @pytest.mark.asyncio
    async def test_both_legs_filled(self, coordinator, venues, store, notifier):
        opp = make_opportunity()

        result = await coordinator.execute(opp)

        assert result.success is True
        assert result.strategy_id is not None
        assert result.persisted is True

        legs = store.positions_for(result.strategy_id)
        assert len(legs) == 2
        assert {leg.side for leg in legs} == {PositionSide.LONG, PositionSide.SHORT}
        assert {leg.venue for leg in legs} == {"A", "B"}
        assert all(leg.status == PositionStatus.OPEN for leg in legs)
        assert legs[0].quantity == legs[1].quantity

        assert store.strategies[result.strategy_id].status == StrategyStatus.ACTIVE
        assert len(store.trades) == 2
        assert store.opportunity_status[opp.opportunity_id] == OpportunityStatus.EXECUTED
        assert len(notifier.of(ArbEvent.TRADE_EXECUTED)) == 1

    @pytest.mark.asyncio
    async def test_long_buys_on_low_rate_venue_short_sells_on_high(self, coordinator, venues):
        await coordinator.execute(make_opportunity())

        assert venues["A"].orders[0].side.value == "buy"
        assert venues["B"].orders[0].side.value == "sell"
        assert venues["A"].orders[0].time_in_force == "IOC"
        # same base quantity on both legs: 1000 / mean(best ask A, best bid B) = 1000 / 100
        assert venues["A"].orders[0].quantity == venues["B"].orders[0].quantity == Decimal("10")

    @pytest.mark.asyncio
    async def test_leverage_set_on_both_venues(self, coordinator, venues):
        await coordinator.execute(make_opportunity())
        assert venues["A"].leverage_calls == [("BTC", 5)]
        assert venues["B"].leverage_calls == [("BTC", 5)]

    @pytest.mark.asyncio
    async def test_liquidation_price_estimated_when_venue_reports_none(self, coordinator, store):
        result = await coordinator.execute(make_opportunity())

        long_leg = next(p for p in store.positions_for(result.strategy_id) if p.side == PositionSide.LONG)
        assert long_leg.liquidation_price == Decimal("81.00")

    @pytest.mark.asyncio
    async def test_short_failed_long_filled_is_rolled_back(self, coordinator, venues, store):
        venues["B"].order_outcome = "failed"
        opp = make_opportunity()

        result = await coordinator.execute(opp)

        assert result.success is False
        assert result.strategy_id is None
        assert result.rollback_performed is True
        assert venues["A"].closed == ["BTC"]
        assert venues["B"].closed == []
        assert "BTC" not in venues["A"].positions
        assert store.strategies == {}
        assert store.opportunity_status[opp.opportunity_id] == OpportunityStatus.REJECTED

    @pytest.mark.asyncio
    async def test_quantity_mismatch_rolls_back_both(self, coordinator, venues):
        venues["B"].order_outcome = "partial"

        result = await coordinator.execute(make_opportunity())

        assert result.success is False
        assert sorted(v for v in ("A", "B") if venues[v].closed) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_ambiguous_leg_with_position_is_closed(self, coordinator, venues):
        venues["B"].order_outcome = "ambiguous_filled"

        result = await coordinator.execute(make_opportunity())

        assert result.success is False
        assert venues["A"].closed == ["BTC"]
        assert venues["B"].closed == ["BTC"]
        # the ambiguous order is never re-sent
        assert len(venues["B"].orders) == 1

    @pytest.mark.asyncio
    async def test_ambiguous_leg_without_position_is_not_closed(self, coordinator, venues):
        venues["B"].order_outcome = "ambiguous_flat"

        result = await coordinator.execute(make_opportunity())

        assert result.success is False
        assert venues["A"].closed == ["BTC"]
        assert venues["B"].closed == []

    @pytest.mark.asyncio
    async def test_failed_compensating_close_reports_unhedged(self, coordinator, venues, store, notifier):
        venues["B"].order_outcome = "failed"
        venues["A"].close_ok = False

        result = await coordinator.execute(make_opportunity())

        assert result.unhedged_venues == ["A"]
        assert len(notifier.of(ArbEvent.UNHEDGED_EXPOSURE)) == 1
        assert store.events_of(UNHEDGED_EXPOSURE_EVENT)[0]["level"] == "CRITICAL"

    @pytest.mark.asyncio
    async def test_leverage_failure_sends_no_orders(self, coordinator, venues):
        venues["B"].leverage_ok = False

        result = await coordinator.execute(make_opportunity())

        assert result.success is False
        assert venues["A"].orders == [] and venues["B"].orders == []

    @pytest.mark.asyncio
    async def test_stale_opportunity_not_executed(self, coordinator, venues, store):
        opp = make_opportunity(discovered_at=NOW - timedelta(seconds=121))

        result = await coordinator.execute(opp)

        assert result.success is False
        assert result.error == "opportunity_expired"
        assert venues["A"].orders == []
        assert store.opportunity_status[opp.opportunity_id] == OpportunityStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_venue_rejected(self, coordinator):
        result = await coordinator.execute(make_opportunity(short_venue="Z"))
        assert result.success is False
        assert result.error == "venue_unavailable:Z"

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_strategy_id(self, coordinator, venues, store, notifier):
        store.fail_open_strategy = True

        result = await coordinator.execute(make_opportunity())

        assert result.success is True
        assert result.strategy_id is not None
        assert result.persisted is False
        # the legs are real and stay open on the venues
        assert "BTC" in venues["A"].positions and "BTC" in venues["B"].positions
        assert len(notifier.of(ArbEvent.DATA_INTEGRITY)) == 1
        assert store.events_of(DATA_INTEGRITY_EVENT)


class TestClose:

    @pytest.mark.asyncio
    async def test_close_marks_strategy_closed(self, coordinator, venues, store):
        opened = await coordinator.execute(make_opportunity())

        result = await coordinator.close_strategy(opened.strategy_id, "exit")

        assert result.fully_closed
        assert result.status == StrategyStatus.CLOSED
        strategy = store.strategies[opened.strategy_id]
        assert strategy.status == StrategyStatus.CLOSED
        assert strategy.exit_time is not None
        assert strategy.close_reason == "exit"
        assert all(p.status == PositionStatus.CLOSED for p in store.positions_for(opened.strategy_id))

    @pytest.mark.asyncio
    async def test_kill_marks_strategy_killed(self, coordinator, store):
        opened = await coordinator.execute(make_opportunity())

        result = await coordinator.close_strategy(opened.strategy_id, "near_liquidation", kill=True)

        assert result.status == StrategyStatus.KILLED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, coordinator, venues, store):
        opened = await coordinator.execute(make_opportunity())
        await coordinator.close_strategy(opened.strategy_id, "exit")
        venues["A"].closed.clear()

        again = await coordinator.close_strategy(opened.strategy_id, "exit")

        assert again.noop is True
        assert again.status == StrategyStatus.CLOSED
        assert venues["A"].closed == []

    @pytest.mark.asyncio
    async def test_concurrent_close_returns_in_progress(self, coordinator, venues, store):
        opened = await coordinator.execute(make_opportunity())
        release = asyncio.Event()
        original = venues["A"].close_position

        async def slow_close(instrument):
            await release.wait()
            return await original(instrument)

        venues["A"].close_position = slow_close

        first = asyncio.ensure_future(coordinator.close_strategy(opened.strategy_id, "exit"))
        await asyncio.sleep(0)
        second = await coordinator.close_strategy(opened.strategy_id, "manual")
        release.set()
        first_result = await first

        assert second.already_in_progress is True
        assert first_result.status == StrategyStatus.CLOSED

    @pytest.mark.asyncio
    async def test_close_waits_for_other_lock_holder(self, coordinator, store):
        opened = await coordinator.execute(make_opportunity())

        async with coordinator.locks.hold(opened.strategy_id):
            pending = asyncio.ensure_future(coordinator.close_strategy(opened.strategy_id, "manual"))
            await asyncio.sleep(0)
            assert coordinator.locks.is_closing(opened.strategy_id)
            assert not pending.done()

        result = await pending

        assert result.already_in_progress is False
        assert result.status == StrategyStatus.CLOSED
        assert store.strategies[opened.strategy_id].status == StrategyStatus.CLOSED

    @pytest.mark.asyncio
    async def test_kill_during_running_close_is_applied(self, coordinator, venues, store):
        opened = await coordinator.execute(make_opportunity())
        release = asyncio.Event()
        original = venues["A"].close_position

        async def slow_close(instrument):
            await release.wait()
            return await original(instrument)

        venues["A"].close_position = slow_close

        running = asyncio.ensure_future(coordinator.close_strategy(opened.strategy_id, "exit"))
        await asyncio.sleep(0)
        kill = await coordinator.close_strategy(opened.strategy_id, "near_liquidation", kill=True)
        release.set()
        result = await running

        assert kill.already_in_progress is True
        assert result.status == StrategyStatus.KILLED
        assert store.strategies[opened.strategy_id].status == StrategyStatus.KILLED
        assert not coordinator.is_pending_kill(opened.strategy_id)

    @pytest.mark.asyncio
    async def test_kill_goes_straight_to_killed(self, coordinator, store):
        opened = await coordinator.execute(make_opportunity())
        seen = []
        original = store.update_strategy_status

        async def recording(strategy_id, status, **kwargs):
            seen.append(status)
            await original(strategy_id, status, **kwargs)

        store.update_strategy_status = recording

        await coordinator.close_strategy(opened.strategy_id, "near_liquidation", kill=True)

        assert seen == [StrategyStatus.KILLED]

    @pytest.mark.asyncio
    async def test_failed_leg_stays_open_for_retry(self, coordinator, venues, store):
        opened = await coordinator.execute(make_opportunity())
        venues["B"].close_ok = False

        result = await coordinator.close_strategy(opened.strategy_id, "exit", kill=True)

        assert result.failed_venues == ["B"]
        assert store.strategies[opened.strategy_id].status == StrategyStatus.CLOSING
        open_legs = await store.list_open_positions(opened.strategy_id)
        assert [leg.venue for leg in open_legs] == ["B"]
        assert coordinator.is_pending_kill(opened.strategy_id)

        venues["B"].close_ok = True
        retried = await coordinator.close_strategy(opened.strategy_id, "exit")
        assert retried.status == StrategyStatus.KILLED

    @pytest.mark.asyncio
    async def test_unknown_strategy_is_noop(self, coordinator):
        result = await coordinator.close_strategy("missing", "manual")
        assert result.noop is True
        assert result.status is None
