"""
Tests for PositionSupervisor and the kill-switch predicates.
"""

import asyncio
import pytest
from decimal import Decimal

from exchange_clients.base_models import ExchangePositionSnapshot
from helpers.event_notifier import ArbEvent
from strategies.implementations.funding_arbitrage.config import FundingArbConfig, KillSwitchConfig
from strategies.implementations.funding_arbitrage.models import (
    Position,
    PositionSide,
    PositionStatus,
    Strategy,
    StrategyStatus,
)
from strategies.implementations.funding_arbitrage.operations.execution_coordinator import ExecutionCoordinator
from strategies.implementations.funding_arbitrage.operations.strategy_locks import StrategyLockRegistry
from strategies.implementations.funding_arbitrage.position_monitor import PositionSupervisor
from strategies.implementations.funding_arbitrage.risk_management.kill_switch import KillReason, KillSwitchEvaluator
from strategies.implementations.funding_arbitrage.risk_management.limit_engine import KILL_SWITCH_EVENT
from tests.fakes import FakeExchangeClient, FakeStore, RecordingNotifier, fixed_clock


def snapshot(side, quantity="10", mark="100", liq=None, pnl="0"):
    return ExchangePositionSnapshot(
        instrument="BTC",
        quantity=Decimal(quantity),
        side=side,
        entry_price=Decimal("100"),
        mark_price=Decimal(mark),
        unrealized_pnl=Decimal(pnl),
        liquidation_price=Decimal(liq) if liq is not None else None,
    )


def seed_strategy(store, venues):
    strategy = Strategy(instrument="BTC", long_venue="A", short_venue="B", expected_profit_bps=Decimal("50"))
    legs = [
        Position(strategy.strategy_id, "A", "BTC", PositionSide.LONG, Decimal("100"), Decimal("10"), 5),
        Position(strategy.strategy_id, "B", "BTC", PositionSide.SHORT, Decimal("100"), Decimal("10"), 5),
    ]
    store.add_strategy(strategy, legs)
    venues["A"].positions["BTC"] = snapshot("long")
    venues["B"].positions["BTC"] = snapshot("short")
    return strategy


def make_leg(side, venue, mark="100", liq=None, pnl="0", quantity="10"):
    return Position(
        strategy_id="s1",
        venue=venue,
        instrument="BTC",
        side=side,
        entry_price=Decimal("100"),
        quantity=Decimal(quantity),
        leverage=5,
        mark_price=Decimal(mark),
        liquidation_price=Decimal(liq) if liq is not None else None,
        unrealized_pnl=Decimal(pnl),
    )


@pytest.fixture
def venues():
    return {"A": FakeExchangeClient("A"), "B": FakeExchangeClient("B")}


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def make_supervisor(venues, store, notifier, **kill_switch):
    config = FundingArbConfig(instruments=["BTC"], kill_switch=KillSwitchConfig(**kill_switch))
    coordinator = ExecutionCoordinator(config, venues, store, StrategyLockRegistry(), notifier, clock=fixed_clock())
    return PositionSupervisor(config, venues, store, coordinator, notifier, clock=fixed_clock())


class TestKillSwitchEvaluator:

    @pytest.fixture
    def evaluator(self):
        config = FundingArbConfig(instruments=["BTC"])
        return KillSwitchEvaluator(config.kill_switch, config.risk)

    def test_healthy_pair(self, evaluator):
        legs = [make_leg(PositionSide.LONG, "A"), make_leg(PositionSide.SHORT, "B")]
        assert evaluator.evaluate(legs) == (False, None, "")

    def test_single_leg(self, evaluator):
        kill, reason, _ = evaluator.evaluate([make_leg(PositionSide.LONG, "A")])
        assert kill and reason == KillReason.SINGLE_LEG

    def test_same_side_pair_is_not_hedged(self, evaluator):
        legs = [make_leg(PositionSide.LONG, "A"), make_leg(PositionSide.LONG, "B")]
        assert evaluator.evaluate(legs)[1] == KillReason.SINGLE_LEG

    def test_near_liquidation(self, evaluator):
        legs = [make_leg(PositionSide.LONG, "A", mark="90", liq="80"), make_leg(PositionSide.SHORT, "B", mark="90")]
        # (90 - 80) / 90 = 11.1% < 15%
        assert evaluator.evaluate(legs)[1] == KillReason.NEAR_LIQUIDATION

    def test_max_drawdown(self, evaluator):
        legs = [make_leg(PositionSide.LONG, "A", pnl="-101"), make_leg(PositionSide.SHORT, "B", pnl="101")]
        assert evaluator.evaluate(legs)[1] == KillReason.MAX_DRAWDOWN

    def test_size_mismatch(self, evaluator):
        legs = [make_leg(PositionSide.LONG, "A", quantity="10"), make_leg(PositionSide.SHORT, "B", quantity="7")]
        assert evaluator.evaluate(legs)[1] == KillReason.SIZE_MISMATCH

    def test_oversized(self, evaluator):
        # 13 x 100 = 1300 > 1000 x 1.2
        legs = [make_leg(PositionSide.LONG, "A", quantity="13"), make_leg(PositionSide.SHORT, "B", quantity="13")]
        assert evaluator.evaluate(legs)[1] == KillReason.OVERSIZED


class TestSupervisorCycle:

    @pytest.mark.asyncio
    async def test_healthy_strategy_is_refreshed(self, venues, store, notifier):
        strategy = seed_strategy(store, venues)
        venues["A"].positions["BTC"] = snapshot("long", mark="101", pnl="10", liq="82")
        supervisor = make_supervisor(venues, store, notifier)

        stats = await supervisor.run_cycle()

        assert stats["checked"] == 1 and stats["killed"] == 0
        long_leg = next(p for p in store.positions_for(strategy.strategy_id) if p.venue == "A")
        assert long_leg.mark_price == Decimal("101")
        assert long_leg.unrealized_pnl == Decimal("10")
        assert long_leg.liquidation_price == Decimal("82")
        assert store.strategies[strategy.strategy_id].status == StrategyStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_near_liquidation_kills_strategy(self, venues, store, notifier):
        """Long entry 100, liquidation 85, mark 90, threshold 20% -> kill (5.6% away)."""
        strategy = seed_strategy(store, venues)
        venues["A"].positions["BTC"] = snapshot("long", mark="90", liq="85")
        venues["B"].positions["BTC"] = snapshot("short", mark="90")
        supervisor = make_supervisor(venues, store, notifier, near_liquidation_percent=Decimal("20"))

        stats = await supervisor.run_cycle()

        assert stats["killed"] == 1
        assert store.strategies[strategy.strategy_id].status == StrategyStatus.KILLED
        assert venues["A"].closed == ["BTC"] and venues["B"].closed == ["BTC"]
        events = store.events_of(KILL_SWITCH_EVENT)
        assert len(events) == 1
        assert events[0]["metadata"]["reason"] == KillReason.NEAR_LIQUIDATION
        assert len(notifier.of(ArbEvent.POSITION_KILLED)) == 1

    @pytest.mark.asyncio
    async def test_vanished_leg_triggers_single_leg_kill(self, venues, store, notifier):
        strategy = seed_strategy(store, venues)
        del venues["B"].positions["BTC"]
        supervisor = make_supervisor(venues, store, notifier)

        await supervisor.run_cycle()

        assert store.strategies[strategy.strategy_id].status == StrategyStatus.KILLED
        assert venues["A"].closed == ["BTC"]
        # the vanished leg is not closed again on its venue
        assert venues["B"].closed == []
        assert all(p.status == PositionStatus.CLOSED for p in store.positions_for(strategy.strategy_id))
        assert store.events_of(KILL_SWITCH_EVENT)[0]["metadata"]["reason"] == KillReason.SINGLE_LEG

    @pytest.mark.asyncio
    async def test_fetch_error_keeps_previous_data(self, venues, store, notifier):
        strategy = seed_strategy(store, venues)
        venues["A"].position_error = ConnectionError("timeout")
        supervisor = make_supervisor(venues, store, notifier)

        stats = await supervisor.run_cycle()

        assert stats["killed"] == 0
        assert store.strategies[strategy.strategy_id].status == StrategyStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_busy_strategy_is_skipped(self, venues, store, notifier):
        strategy = seed_strategy(store, venues)
        supervisor = make_supervisor(venues, store, notifier)

        async with supervisor.locks.hold(strategy.strategy_id):
            stats = await supervisor.run_cycle()

        assert stats["skipped"] == 1 and stats["checked"] == 0

    @pytest.mark.asyncio
    async def test_close_during_refresh_is_not_dropped(self, venues, store, notifier):
        strategy = seed_strategy(store, venues)
        supervisor = make_supervisor(venues, store, notifier)
        polling = asyncio.Event()
        release = asyncio.Event()
        original = venues["A"].get_position

        async def slow_position(instrument):
            polling.set()
            await release.wait()
            return await original(instrument)

        venues["A"].get_position = slow_position

        cycle = asyncio.ensure_future(supervisor.run_cycle())
        await polling.wait()
        result = await supervisor.coordinator.close_strategy(strategy.strategy_id, "manual")
        release.set()
        stats = await cycle

        assert result.already_in_progress is False
        assert result.status == StrategyStatus.CLOSED
        assert venues["A"].closed == ["BTC"] and venues["B"].closed == ["BTC"]
        assert store.strategies[strategy.strategy_id].status == StrategyStatus.CLOSED
        assert all(p.status == PositionStatus.CLOSED for p in store.positions_for(strategy.strategy_id))
        assert stats["killed"] == 0
        assert notifier.of(ArbEvent.POSITION_KILLED) == []

    @pytest.mark.asyncio
    async def test_one_failing_strategy_does_not_abort_cycle(self, venues, store, notifier):
        healthy = seed_strategy(store, venues)
        broken = Strategy(instrument="ETH", long_venue="A", short_venue="Z", expected_profit_bps=Decimal("50"))
        store.add_strategy(broken, [])
        supervisor = make_supervisor(venues, store, notifier)

        original = store.list_open_positions

        async def flaky(strategy_id=None):
            if strategy_id == broken.strategy_id:
                raise RuntimeError("db hiccup")
            return await original(strategy_id)

        store.list_open_positions = flaky

        stats = await supervisor.run_cycle()

        assert stats["errors"] == 1
        assert stats["checked"] == 2
        assert store.strategies[healthy.strategy_id].status == StrategyStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_closing_strategy_is_retried(self, venues, store, notifier):
        strategy = seed_strategy(store, venues)
        supervisor = make_supervisor(venues, store, notifier)
        venues["B"].close_ok = False
        await supervisor.coordinator.close_strategy(strategy.strategy_id, "exit")
        assert store.strategies[strategy.strategy_id].status == StrategyStatus.CLOSING

        venues["B"].close_ok = True
        await supervisor.run_cycle()

        assert store.strategies[strategy.strategy_id].status == StrategyStatus.CLOSED

    @pytest.mark.asyncio
    async def test_strategy_metrics(self, venues, store, notifier):
        strategy = seed_strategy(store, venues)
        venues["A"].positions["BTC"] = snapshot("long", mark="110", pnl="100", liq="85")
        venues["B"].positions["BTC"] = snapshot("short", mark="110", pnl="-90")
        supervisor = make_supervisor(venues, store, notifier)
        await supervisor.run_cycle()

        metrics = await supervisor.get_strategy_metrics(strategy.strategy_id)

        assert metrics.total_unrealized_pnl == Decimal("10")
        assert metrics.total_notional == Decimal("2200")
        assert metrics.return_pct == Decimal("0.5")
        assert len(metrics.legs) == 2
        assert await supervisor.get_strategy_metrics("missing") is None
