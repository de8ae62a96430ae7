"""
Funding Arbitrage Engine

Wires the pipeline together and schedules its periodic jobs:

    analysis   (every analysis_interval_seconds)
        OpportunityAnalyzer -> RiskLimitEngine -> ExecutionCoordinator
    supervisor (every supervisor_interval_seconds)
        PositionSupervisor -> kill switch -> ExecutionCoordinator.close_strategy
    exposure   (every risk_snapshot_interval_seconds)
        ExposureMonitor -> RiskSnapshot + emergency reduction

Every collaborator is passed in (or built from the ones passed in); nothing
is looked up from module globals.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from exchange_clients.base_client import BaseExchangeClient
from exchange_clients.guarded_client import GuardedExchangeClient
from exchange_clients.rate_limiter import VenueRateLimiter
from funding_rate_service.market_data import MarketDataService
from funding_rate_service.tasks import PeriodicTask, TaskScheduler
from helpers.event_notifier import ArbEventNotifier
from helpers.unified_logger import get_strategy_logger, log_stage

from .config import FundingArbConfig
from .models import (
    ArbitrageOpportunity,
    CloseResult,
    ExecutionResult,
    OpportunityStatus,
    StrategyMetrics,
    StrategyStatus,
)
from .operations.execution_coordinator import ExecutionCoordinator
from .operations.opportunity_analyzer import OpportunityAnalyzer
from .operations.strategy_locks import StrategyLockRegistry
from .position_monitor import PositionSupervisor
from .risk_management.exposure_monitor import ExposureMonitor
from .risk_management.limit_engine import KILL_SWITCH_EVENT, BookReader, RiskLimitEngine


MANUAL_CLOSE_REASON = "manual"


def build_guarded_clients(
    config: FundingArbConfig,
    clients: Mapping[str, BaseExchangeClient],
) -> Dict[str, BaseExchangeClient]:
    """Wrap raw adapters with the per-venue rate limit, timeout and retry policy."""
    guarded: Dict[str, BaseExchangeClient] = {}
    for venue, client in clients.items():
        if isinstance(client, GuardedExchangeClient):
            guarded[venue] = client
            continue
        venue_config = config.venues.get(venue)
        if venue_config is None:
            guarded[venue] = GuardedExchangeClient(
                client,
                VenueRateLimiter(venue, 10, 1.0),
                fail_fast_market_data=config.fail_fast_market_data,
            )
            continue
        guarded[venue] = GuardedExchangeClient(
            client,
            VenueRateLimiter(
                venue,
                venue_config.rate_limit_requests,
                float(venue_config.rate_limit_window_seconds),
            ),
            timeout_seconds=float(venue_config.request_timeout_seconds),
            max_attempts=venue_config.max_attempts,
            fail_fast_market_data=config.fail_fast_market_data,
        )
    return guarded


class FundingArbEngine:
    """
    Runs the funding arbitrage pipeline.

    Usage:
        engine = FundingArbEngine(config, clients, store, notifier)
        await engine.start()        # runs until stop()
    """

    def __init__(
        self,
        config: FundingArbConfig,
        clients: Mapping[str, BaseExchangeClient],
        store,
        notifier: Optional[ArbEventNotifier] = None,
        *,
        market_data: Optional[MarketDataService] = None,
        locks: Optional[StrategyLockRegistry] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config
        self.clients = dict(clients)
        self.store = store
        self.notifier = notifier
        self._clock = clock
        self.logger = get_strategy_logger(config.strategy_name, component="engine")

        self.locks = locks or StrategyLockRegistry()
        self.market_data = market_data or MarketDataService(self.clients, store)
        self.analyzer = OpportunityAnalyzer(config, self.market_data, store, notifier, clock=clock)
        self.limit_engine = RiskLimitEngine(config.risk)
        self.book_reader = BookReader(store)
        self.coordinator = ExecutionCoordinator(config, self.clients, store, self.locks, notifier, clock=clock)
        self.supervisor = PositionSupervisor(config, self.clients, store, self.coordinator, notifier, clock=clock)
        self.exposure_monitor = ExposureMonitor(config, self.clients, store, self.coordinator, notifier, clock=clock)

        self.tasks: List[PeriodicTask] = [
            PeriodicTask("opportunity_analysis", config.analysis_interval_seconds, self.run_analysis_cycle),
            PeriodicTask("position_supervisor", config.supervisor_interval_seconds, self.supervisor.run_cycle),
            PeriodicTask("exposure_monitor", config.risk_snapshot_interval_seconds, self.exposure_monitor.run_cycle),
        ]
        self.scheduler = TaskScheduler(self.tasks)
        self._stop_requested = asyncio.Event()
        self._running = False

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        log_stage(self.logger, f"Starting {self.config.strategy_name}", icon="🚀")
        self.logger.info(
            f"Venues: {', '.join(self.clients)} | instruments: {', '.join(self.config.instruments)} | "
            f"auto_execute={self.config.auto_execute}"
        )
        await self._connect_clients()
        await self.scheduler.start()
        self._running = True
        try:
            await self._stop_requested.wait()
        finally:
            self._running = False
            await self.scheduler.shutdown()

    async def stop(self) -> None:
        self.logger.info("🛑 Stopping engine")
        self._stop_requested.set()

    async def shutdown(self) -> None:
        """Stop the scheduler, disconnect adapters and flush pending notifications."""
        await self.stop()
        await self.scheduler.shutdown()
        results = await asyncio.gather(
            *(client.disconnect() for client in self.clients.values()),
            return_exceptions=True,
        )
        for venue, result in zip(self.clients, results):
            if isinstance(result, Exception):
                self.logger.warning(f"[{venue}] Disconnect failed: {result}")
        if self.notifier is not None:
            await self.notifier.drain()

    async def _connect_clients(self) -> None:
        results = await asyncio.gather(
            *(client.connect() for client in self.clients.values()),
            return_exceptions=True,
        )
        for venue, result in zip(list(self.clients), results):
            if isinstance(result, Exception):
                self.logger.error(f"❌ [{venue}] Connection failed, venue disabled: {result}")
                self.clients.pop(venue, None)
                self.market_data.clients.pop(venue, None)
                self.coordinator.clients.pop(venue, None)
                self.supervisor.clients.pop(venue, None)
                self.exposure_monitor.clients.pop(venue, None)
            else:
                self.logger.info(f"✅ [{venue}] Connected")

    # ========================================================================
    # Analysis -> risk -> execution
    # ========================================================================

    async def run_analysis_cycle(self) -> List[ExecutionResult]:
        opportunities = await self.analyzer.find_opportunities()
        if not opportunities or not self.config.auto_execute:
            return []

        results: List[ExecutionResult] = []
        for opportunity in opportunities:
            if len(results) >= self.config.execution.max_executions_per_cycle:
                break
            result = await self.consider(opportunity)
            if result is not None:
                results.append(result)
        return results

    async def consider(self, opportunity: ArbitrageOpportunity) -> Optional[ExecutionResult]:
        """Risk-check one opportunity and execute it when allowed; None when rejected."""
        book = await self.book_reader.load()
        decision = self.limit_engine.validate(opportunity, book, now=self._clock())
        if not decision.allowed:
            self.logger.info(f"⏭️  {opportunity.instrument} not executed ({decision.check}): {decision.reason}")
            try:
                await self.store.update_opportunity_status(opportunity.opportunity_id, OpportunityStatus.REJECTED)
            except Exception as exc:
                self.logger.warning(f"Failed to mark opportunity {opportunity.opportunity_id} rejected: {exc}")
            return None

        return await self.coordinator.execute(opportunity)

    # ========================================================================
    # Queries & manual control
    # ========================================================================

    async def status(self) -> Dict[str, Any]:
        strategies = await self.store.list_active_strategies()
        active = [s for s in strategies if s.status == StrategyStatus.ACTIVE]
        last_kill = await self.store.last_event_time(KILL_SWITCH_EVENT)
        cooldown = timedelta(minutes=self.config.risk.kill_switch_cooldown_minutes)
        kill_recent = last_kill is not None and self._clock() - last_kill < cooldown
        return {
            "running": self._running,
            "active_strategy_count": len(active),
            "closing_strategy_count": len(strategies) - len(active),
            "last_analysis_time": self.analyzer.last_analysis_time,
            "kill_switch_active_in_last_hour": kill_recent,
            "venues": list(self.clients),
            "tasks": [task.get_metrics() for task in self.tasks],
            "scheduler": self.scheduler.get_scheduler_status(),
        }

    async def get_strategy_metrics(self, strategy_id: str) -> Optional[StrategyMetrics]:
        return await self.supervisor.get_strategy_metrics(strategy_id)

    async def force_close(self, strategy_id: str, reason: str = MANUAL_CLOSE_REASON) -> CloseResult:
        self.logger.warning(f"Manual close requested for {strategy_id}")
        return await self.coordinator.close_strategy(strategy_id, reason)

    async def run_task(self, task_name: str) -> Dict[str, Any]:
        """Run one periodic job now; skipped if its scheduled run is in flight."""
        return await self.scheduler.force_run_job(task_name)
