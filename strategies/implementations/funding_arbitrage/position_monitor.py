"""
Position supervision for the funding arbitrage strategy.

Responsible for:
 - Polling exchanges for live leg metrics (mark, PnL, liquidation price).
 - Evaluating the kill-switch predicates over each strategy.
 - Force-closing strategies that trip a predicate.
 - Retrying closure of strategies left in ``closing``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional

from exchange_clients.base_client import BaseExchangeClient
from exchange_clients.base_models import ExchangePositionSnapshot
from helpers.event_notifier import ArbEvent, ArbEventNotifier
from helpers.unified_logger import get_strategy_logger

from .config import FundingArbConfig
from .models import Position, PositionStatus, Strategy, StrategyMetrics, StrategyStatus
from .operations.execution_coordinator import ExecutionCoordinator
from .risk_management.kill_switch import KillReason, KillSwitchEvaluator, position_liquidation_distance
from .risk_management.limit_engine import KILL_SWITCH_EVENT


HUNDRED = Decimal("100")


class PositionSupervisor:
    """Refreshes open strategies and enforces the kill switch."""

    def __init__(
        self,
        config: FundingArbConfig,
        clients: Mapping[str, BaseExchangeClient],
        store,
        coordinator: ExecutionCoordinator,
        notifier: Optional[ArbEventNotifier] = None,
        evaluator: Optional[KillSwitchEvaluator] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config
        self.clients = dict(clients)
        self.store = store
        self.coordinator = coordinator
        self.locks = coordinator.locks
        self.notifier = notifier
        self.evaluator = evaluator or KillSwitchEvaluator(config.kill_switch, config.risk)
        self._clock = clock
        self.logger = get_strategy_logger(config.strategy_name, component="supervisor")

    async def run_cycle(self) -> Dict[str, int]:
        """
        One supervision pass over every active/closing strategy.

        Returns counters for the periodic task metrics.
        """
        stats = {"checked": 0, "killed": 0, "skipped": 0, "errors": 0}
        strategies = await self.store.list_active_strategies()
        if not strategies:
            self.logger.debug("No active strategies to supervise")
            return stats

        for strategy in strategies:
            if self.locks.is_busy(strategy.strategy_id) or self.locks.is_closing(strategy.strategy_id):
                stats["skipped"] += 1
                continue
            try:
                if StrategyStatus(strategy.status) == StrategyStatus.CLOSING:
                    await self._retry_close(strategy)
                    continue

                stats["checked"] += 1
                if await self.supervise_strategy(strategy):
                    stats["killed"] += 1
            except Exception as exc:
                stats["errors"] += 1
                self.logger.error(f"Error supervising strategy {strategy.strategy_id} ({strategy.instrument}): {exc}")

        return stats

    async def supervise_strategy(self, strategy: Strategy) -> bool:
        """
        Refresh one strategy and kill it if a predicate fires; True when killed.

        Venues are polled without the strategy lock; it is taken only for the
        store writes, which are skipped when a close started meanwhile (a
        kill is then handed to that close).
        """
        legs = await self.store.list_open_positions(strategy.strategy_id)
        await self._refresh_legs(legs)
        open_legs = [leg for leg in legs if leg.is_open]

        should_kill, reason, detail = self.evaluator.evaluate(open_legs)
        # legs that vanished on the venue are persisted closed before a kill
        to_persist = open_legs if not should_kill else [leg for leg in legs if not leg.is_open]
        if not should_kill and self.locks.is_closing(strategy.strategy_id):
            return False

        async with self.locks.hold(strategy.strategy_id):
            closing = self.locks.is_closing(strategy.strategy_id)
            current = await self.store.get_strategy(strategy.strategy_id)
            if current is None or StrategyStatus(current.status).is_terminal:
                self.logger.debug(f"Strategy {strategy.strategy_id} finished during refresh; results dropped")
                return False
            if not closing and StrategyStatus(current.status) == StrategyStatus.ACTIVE:
                for leg in to_persist:
                    await self.store.update_position(leg)
            elif not should_kill:
                return False

        if not should_kill:
            self._log_legs(strategy, open_legs)
            return False

        await self._kill(strategy, reason, detail, open_legs)
        return True

    async def _refresh_legs(self, legs: List[Position]) -> None:
        snapshots = await asyncio.gather(
            *(self._fetch_snapshot(leg) for leg in legs),
            return_exceptions=True,
        )
        now = self._clock()
        for leg, snapshot in zip(legs, snapshots):
            if isinstance(snapshot, Exception):
                self.logger.warning(
                    f"[{leg.venue}] Failed to refresh {leg.instrument} {leg.side}: {snapshot}; keeping last data"
                )
                continue

            if snapshot is None or snapshot.quantity == 0:
                self.logger.warning(f"[{leg.venue}] {leg.instrument} {leg.side} leg no longer exists on venue")
                leg.status = PositionStatus.CLOSED
                leg.updated_at = now
                continue

            self._apply_snapshot(leg, snapshot, now)

    async def _fetch_snapshot(self, leg: Position) -> Optional[ExchangePositionSnapshot]:
        client = self.clients.get(leg.venue)
        if client is None:
            raise RuntimeError(f"no adapter for {leg.venue}")
        return await client.get_position(leg.instrument)

    @staticmethod
    def _apply_snapshot(leg: Position, snapshot: ExchangePositionSnapshot, now: datetime) -> None:
        leg.quantity = abs(snapshot.quantity)
        if snapshot.mark_price is not None:
            leg.mark_price = snapshot.mark_price
        if snapshot.unrealized_pnl is not None:
            leg.unrealized_pnl = snapshot.unrealized_pnl
        if snapshot.liquidation_price is not None:
            leg.liquidation_price = snapshot.liquidation_price
        leg.updated_at = now

    async def _kill(self, strategy: Strategy, reason: str, detail: str, legs: List[Position]) -> None:
        self.logger.critical(
            f"⛔ KILL SWITCH: strategy {strategy.strategy_id} ({strategy.instrument}) reason={reason} | {detail}"
        )
        metadata = {
            "strategy_id": strategy.strategy_id,
            "instrument": strategy.instrument,
            "reason": reason,
            "detail": detail,
        }
        # the activation is recorded before closing so the cooldown applies even if the close fails
        try:
            await self.store.record_event(
                "CRITICAL" if reason in (KillReason.NEAR_LIQUIDATION, KillReason.SINGLE_LEG) else "WARNING",
                KILL_SWITCH_EVENT,
                f"Kill switch activated: {reason}",
                metadata=metadata,
                source="supervisor",
            )
        except Exception as exc:
            self.logger.error(f"Failed to record kill switch event for {strategy.strategy_id}: {exc}")

        result = await self.coordinator.close_strategy(strategy.strategy_id, reason, kill=True)
        if result.noop:
            self.logger.warning(f"Strategy {strategy.strategy_id} already finished; kill not applied")
            return
        if result.already_in_progress:
            metadata["handed_to_running_close"] = "yes"
        if result.failed_venues:
            metadata["unclosed_venues"] = ", ".join(result.failed_venues)

        if self.notifier is not None:
            self.notifier.notify(
                ArbEvent.POSITION_KILLED,
                {**metadata, "unrealized_pnl": sum((leg.unrealized_pnl for leg in legs), Decimal("0"))},
                message=f"Strategy killed: {reason}",
            )

    async def _retry_close(self, strategy: Strategy) -> None:
        kill = self.coordinator.is_pending_kill(strategy.strategy_id)
        self.logger.info(f"🔁 Retrying close of strategy {strategy.strategy_id} ({strategy.instrument})")
        await self.coordinator.close_strategy(
            strategy.strategy_id,
            strategy.close_reason or "retry_close",
            kill=kill,
        )

    def _log_legs(self, strategy: Strategy, legs: List[Position]) -> None:
        for leg in legs:
            self.logger.debug(
                f"{strategy.instrument} {leg.venue} {leg.side} qty={leg.quantity} mark={leg.mark_price} "
                f"pnl={leg.unrealized_pnl} liq_dist={position_liquidation_distance(leg):.1f}%"
            )

    # ========================================================================
    # Metrics
    # ========================================================================

    async def get_strategy_metrics(self, strategy_id: str) -> Optional[StrategyMetrics]:
        strategy = await self.store.get_strategy(strategy_id)
        if strategy is None:
            return None

        legs = await self.store.list_open_positions(strategy_id)
        total_pnl = sum((leg.unrealized_pnl for leg in legs), Decimal("0"))
        total_notional = sum((leg.notional for leg in legs), Decimal("0"))
        entry_notional = sum((leg.entry_notional for leg in legs), Decimal("0"))
        return_pct = total_pnl / entry_notional * HUNDRED if entry_notional > 0 else Decimal("0")

        return StrategyMetrics(
            strategy_id=strategy.strategy_id,
            instrument=strategy.instrument,
            status=StrategyStatus(strategy.status),
            legs=[
                {
                    "venue": leg.venue,
                    "side": leg.side.value,
                    "quantity": leg.quantity,
                    "entry_price": leg.entry_price,
                    "mark_price": leg.mark_price,
                    "liquidation_price": leg.liquidation_price,
                    "unrealized_pnl": leg.unrealized_pnl,
                    "notional": leg.notional,
                    "liquidation_distance_pct": position_liquidation_distance(leg),
                }
                for leg in legs
            ],
            total_unrealized_pnl=total_pnl,
            total_notional=total_notional,
            return_pct=return_pct,
            entry_time=strategy.entry_time,
        )
