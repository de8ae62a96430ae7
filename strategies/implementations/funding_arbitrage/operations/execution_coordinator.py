"""
Execution Coordinator

Opens a hedged long/short pair from an approved opportunity and closes
strategies on request (strategy exit, kill switch, manual force-close).

Open flow:
    1. re-validate (staleness, adapters present)
    2. set leverage / isolated margin on both venues
    3. submit both IOC legs concurrently
    4. verify both filled with matching quantities
    5. on failure: compensating close of every leg that may have filled
    6. on success: persist strategy + positions + trades in one transaction
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from exchange_clients.base_client import BaseExchangeClient
from exchange_clients.base_models import (
    AmbiguousOrderError,
    ExchangePositionSnapshot,
    OrderBookSnapshot,
    OrderRequest,
    OrderSide,
    OrderStatus,
    TradeResult,
)
from helpers.event_notifier import ArbEvent, ArbEventNotifier
from helpers.unified_logger import get_strategy_logger, log_stage

from ..config import FundingArbConfig
from ..funding_analyzer import estimate_liquidation_price
from ..models import (
    ArbitrageOpportunity,
    CloseResult,
    ExecutionResult,
    OpportunityStatus,
    Position,
    PositionSide,
    PositionStatus,
    Strategy,
    StrategyStatus,
    TradeRecord,
    new_id,
)
from .strategy_locks import StrategyLockRegistry


DATA_INTEGRITY_EVENT = "data_integrity"
UNHEDGED_EXPOSURE_EVENT = "unhedged_exposure"


class ExecutionCoordinator:
    """Two-leg execution with verification and compensating close."""

    def __init__(
        self,
        config: FundingArbConfig,
        clients: Mapping[str, BaseExchangeClient],
        store,
        locks: Optional[StrategyLockRegistry] = None,
        notifier: Optional[ArbEventNotifier] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config
        self.clients = dict(clients)
        self.store = store
        self.locks = locks or StrategyLockRegistry()
        self.notifier = notifier
        self._clock = clock
        self.logger = get_strategy_logger(config.strategy_name, component="execution")
        self._pending_kills: Set[str] = set()

    # ========================================================================
    # Open
    # ========================================================================

    async def execute(self, opportunity: ArbitrageOpportunity) -> ExecutionResult:
        """
        Open the long/short pair for ``opportunity``.

        Returns a result carrying a ``strategy_id`` only when both legs are
        open on the venues.
        """
        opp = opportunity
        exec_cfg = self.config.execution

        if opp.is_stale(exec_cfg.opportunity_max_age_seconds, self._clock()):
            self.logger.info(
                f"⏭️  {opp.instrument} opportunity is {opp.age_seconds(self._clock()):.0f}s old, not executing"
            )
            await self._mark_opportunity(opp, OpportunityStatus.EXPIRED)
            return ExecutionResult(False, opp.opportunity_id, error="opportunity_expired")

        long_client = self.clients.get(opp.long_venue)
        short_client = self.clients.get(opp.short_venue)
        if long_client is None or short_client is None:
            missing = opp.long_venue if long_client is None else opp.short_venue
            self.logger.warning(f"⚠️  No adapter for {missing}, skipping {opp.instrument}")
            await self._mark_opportunity(opp, OpportunityStatus.REJECTED)
            return ExecutionResult(False, opp.opportunity_id, error=f"venue_unavailable:{missing}")

        strategy_id = new_id()
        async with self.locks.hold(strategy_id):
            result = await self._execute_locked(strategy_id, opp, long_client, short_client)

        await self._mark_opportunity(
            opp, OpportunityStatus.EXECUTED if result.success else OpportunityStatus.REJECTED
        )
        if not result.success:
            self.locks.discard(strategy_id)
        return result

    async def _execute_locked(
        self,
        strategy_id: str,
        opp: ArbitrageOpportunity,
        long_client: BaseExchangeClient,
        short_client: BaseExchangeClient,
    ) -> ExecutionResult:
        log_stage(self.logger, f"Opening {opp.instrument}: long {opp.long_venue} / short {opp.short_venue}", icon="🚀")

        prepared, error = await self._prepare_venues(opp, long_client, short_client)
        if not prepared:
            return ExecutionResult(False, opp.opportunity_id, error=error)

        quantity, reference_price = await self._order_quantity(opp, long_client, short_client)
        if quantity is None:
            return ExecutionResult(False, opp.opportunity_id, error="no_reference_price")

        long_request = OrderRequest(
            instrument=opp.instrument,
            side=OrderSide.BUY,
            quantity=quantity,
            reference_price=reference_price,
            client_order_id=f"{strategy_id[:8]}-L",
        )
        short_request = OrderRequest(
            instrument=opp.instrument,
            side=OrderSide.SELL,
            quantity=quantity,
            reference_price=reference_price,
            client_order_id=f"{strategy_id[:8]}-S",
        )

        long_result, short_result = await asyncio.gather(
            self._submit(long_client, long_request),
            self._submit(short_client, short_request),
        )
        legs = [long_result, short_result]
        for leg in legs:
            self.logger.log_order(
                leg.venue, leg.order_id or "-", leg.side.value, leg.filled_qty, leg.avg_price, leg.status.value
            )

        verified, reason = self._verify_fills(long_result, short_result)
        if not verified:
            self.logger.warning(f"⚠️  {opp.instrument} execution failed verification: {reason}")
            unhedged = await self._rollback(strategy_id, opp, [(long_client, long_result), (short_client, short_result)])
            return ExecutionResult(
                False,
                opp.opportunity_id,
                error=reason,
                rollback_performed=True,
                unhedged_venues=unhedged,
                legs=legs,
            )

        strategy, positions, trades = await self._build_records(
            strategy_id, opp, long_client, short_client, long_result, short_result
        )
        persisted = await self._persist(strategy, positions, trades)

        self.logger.info(
            f"✅ Strategy {strategy_id} open: {opp.instrument} {long_result.filled_qty} "
            f"long {opp.long_venue} @ {long_result.avg_price} / short {opp.short_venue} @ {short_result.avg_price}"
        )
        self._notify(
            ArbEvent.TRADE_EXECUTED,
            {
                "strategy_id": strategy_id,
                "instrument": opp.instrument,
                "long_venue": opp.long_venue,
                "short_venue": opp.short_venue,
                "quantity": long_result.filled_qty,
                "long_price": long_result.avg_price,
                "short_price": short_result.avg_price,
                "size_usd": opp.optimal_notional_size,
                "spread_bps": opp.spread_basis_points,
            },
            message=f"Opened {opp.instrument} funding arbitrage",
        )
        return ExecutionResult(
            True,
            opp.opportunity_id,
            strategy_id=strategy_id,
            legs=legs,
            persisted=persisted,
        )

    async def _prepare_venues(
        self,
        opp: ArbitrageOpportunity,
        long_client: BaseExchangeClient,
        short_client: BaseExchangeClient,
    ) -> Tuple[bool, Optional[str]]:
        leverage = self.config.execution.leverage
        results = await asyncio.gather(
            long_client.set_leverage(opp.instrument, leverage),
            short_client.set_leverage(opp.instrument, leverage),
            return_exceptions=True,
        )
        for venue, result in zip((opp.long_venue, opp.short_venue), results):
            if isinstance(result, Exception) or result is False:
                self.logger.error(f"❌ [{venue}] Failed to set {leverage}x leverage for {opp.instrument}: {result}")
                return False, f"leverage_failed:{venue}"

        if self.config.execution.use_isolated_margin:
            margin_results = await asyncio.gather(
                long_client.set_isolated_margin(opp.instrument),
                short_client.set_isolated_margin(opp.instrument),
                return_exceptions=True,
            )
            for venue, result in zip((opp.long_venue, opp.short_venue), margin_results):
                if isinstance(result, Exception):
                    self.logger.error(f"❌ [{venue}] Failed to set isolated margin for {opp.instrument}: {result}")
                    return False, f"margin_mode_failed:{venue}"
                if result is False:
                    self.logger.debug(f"[{venue}] isolated margin not supported, continuing")

        return True, None

    async def _order_quantity(
        self,
        opp: ArbitrageOpportunity,
        long_client: BaseExchangeClient,
        short_client: BaseExchangeClient,
    ) -> Tuple[Optional[Decimal], Optional[Decimal]]:
        """
        Base quantity shared by both legs.

        Reference price is the mean of the long venue's best ask and the
        short venue's best bid (mid price when a side is empty).
        """
        books = await asyncio.gather(
            long_client.get_order_book(opp.instrument, 5),
            short_client.get_order_book(opp.instrument, 5),
            return_exceptions=True,
        )
        long_book, short_book = books
        prices: List[Decimal] = []
        for book, use_ask in ((long_book, True), (short_book, False)):
            if isinstance(book, Exception):
                self.logger.warning(f"Order book unavailable for sizing: {book}")
                continue
            price = self._reference_from_book(book, use_ask)
            if price is not None:
                prices.append(price)

        if not prices:
            self.logger.error(f"❌ No reference price for {opp.instrument}, cannot size orders")
            return None, None

        reference_price = sum(prices, Decimal("0")) / Decimal(len(prices))
        return opp.optimal_notional_size / reference_price, reference_price

    @staticmethod
    def _reference_from_book(book: OrderBookSnapshot, use_ask: bool) -> Optional[Decimal]:
        price = book.best_ask if use_ask else book.best_bid
        return price if price is not None else book.mid_price

    async def _submit(self, client: BaseExchangeClient, request: OrderRequest) -> TradeResult:
        venue = client.get_exchange_name()
        try:
            return await client.execute_order(request)
        except AmbiguousOrderError as exc:
            self.logger.error(f"🚨 [{venue}] Order outcome unknown ({exc}); re-querying position")
            return await self._resolve_ambiguous(client, request)
        except Exception as exc:
            self.logger.error(f"❌ [{venue}] Order submission failed: {exc}")
            return TradeResult(
                order_id=None,
                venue=venue,
                instrument=request.instrument,
                side=request.side,
                status=OrderStatus.FAILED,
                error_message=str(exc),
            )

    async def _resolve_ambiguous(self, client: BaseExchangeClient, request: OrderRequest) -> TradeResult:
        """An existing position means the order (possibly partially) went through."""
        venue = client.get_exchange_name()
        snapshot: Optional[ExchangePositionSnapshot] = None
        try:
            snapshot = await client.get_position(request.instrument)
        except Exception as exc:
            self.logger.error(f"🚨 [{venue}] Position re-query failed after ambiguous order: {exc}")
            return TradeResult(
                order_id=None,
                venue=venue,
                instrument=request.instrument,
                side=request.side,
                status=OrderStatus.UNKNOWN,
                error_message="ambiguous order, position unknown",
            )

        if snapshot is not None and snapshot.quantity > 0:
            return TradeResult(
                order_id=None,
                venue=venue,
                instrument=request.instrument,
                side=request.side,
                status=OrderStatus.UNKNOWN,
                filled_qty=snapshot.quantity,
                avg_price=snapshot.entry_price,
                error_message="ambiguous order, position exists",
            )

        return TradeResult(
            order_id=None,
            venue=venue,
            instrument=request.instrument,
            side=request.side,
            status=OrderStatus.FAILED,
            error_message="ambiguous order, no position found",
        )

    def _verify_fills(self, long_result: TradeResult, short_result: TradeResult) -> Tuple[bool, str]:
        if not long_result.is_filled:
            return False, f"long leg {long_result.status.value}"
        if not short_result.is_filled:
            return False, f"short leg {short_result.status.value}"

        avg_qty = (long_result.filled_qty + short_result.filled_qty) / Decimal("2")
        mismatch = abs(long_result.filled_qty - short_result.filled_qty) / avg_qty
        if mismatch > self.config.execution.max_quantity_mismatch:
            return False, f"quantity mismatch {mismatch:.4%}"
        return True, "ok"

    async def _rollback(
        self,
        strategy_id: str,
        opp: ArbitrageOpportunity,
        legs: Sequence[Tuple[BaseExchangeClient, TradeResult]],
    ) -> List[str]:
        """
        Close every leg that may hold a position.

        Returns:
            Venues where the compensating close failed (unhedged exposure).
        """
        exposed = [(client, result) for client, result in legs if result.has_exposure]
        if not exposed:
            self.logger.info("No filled legs to unwind")
            return []

        self.logger.warning(f"🚨 ROLLBACK: closing {len(exposed)} filled leg(s) for {opp.instrument}")
        outcomes = await asyncio.gather(
            *(client.close_position(opp.instrument) for client, _ in exposed),
            return_exceptions=True,
        )

        unhedged: List[str] = []
        for (client, result), outcome in zip(exposed, outcomes):
            venue = client.get_exchange_name()
            if isinstance(outcome, Exception) or outcome is False:
                unhedged.append(venue)
                self.logger.critical(
                    f"🚨 UNHEDGED EXPOSURE: failed to close {result.side.value} {result.filled_qty} "
                    f"{opp.instrument} on {venue}: {outcome}"
                )
            else:
                self.logger.info(f"✅ [{venue}] Rolled back {result.side.value} leg")

        if unhedged:
            payload = {
                "instrument": opp.instrument,
                "venues": ", ".join(unhedged),
                "opportunity_id": opp.opportunity_id,
                "attempted_strategy_id": strategy_id,
            }
            self._notify(
                ArbEvent.UNHEDGED_EXPOSURE,
                payload,
                message="Compensating close failed; manual intervention required",
            )
            await self._record_event("CRITICAL", UNHEDGED_EXPOSURE_EVENT, "Compensating close failed", payload)
        return unhedged

    async def _build_records(
        self,
        strategy_id: str,
        opp: ArbitrageOpportunity,
        long_client: BaseExchangeClient,
        short_client: BaseExchangeClient,
        long_result: TradeResult,
        short_result: TradeResult,
    ) -> Tuple[Strategy, List[Position], List[TradeRecord]]:
        now = self._clock()
        strategy = Strategy(
            strategy_id=strategy_id,
            instrument=opp.instrument,
            long_venue=opp.long_venue,
            short_venue=opp.short_venue,
            expected_profit_bps=opp.spread_basis_points,
            entry_time=now,
            opportunity_id=opp.opportunity_id,
        )

        snapshots = await asyncio.gather(
            long_client.get_position(opp.instrument),
            short_client.get_position(opp.instrument),
            return_exceptions=True,
        )

        positions = [
            self._position_from_fill(strategy_id, PositionSide.LONG, long_result, snapshots[0], now),
            self._position_from_fill(strategy_id, PositionSide.SHORT, short_result, snapshots[1], now),
        ]
        trades = [TradeRecord.from_result(strategy_id, long_result), TradeRecord.from_result(strategy_id, short_result)]
        return strategy, positions, trades

    def _position_from_fill(
        self,
        strategy_id: str,
        side: PositionSide,
        fill: TradeResult,
        snapshot,
        now: datetime,
    ) -> Position:
        leverage = self.config.execution.leverage
        entry_price = fill.avg_price or Decimal("0")
        liquidation_price = None
        mark_price = None

        if isinstance(snapshot, ExchangePositionSnapshot):
            liquidation_price = snapshot.liquidation_price
            mark_price = snapshot.mark_price
            if not entry_price and snapshot.entry_price:
                entry_price = snapshot.entry_price

        if liquidation_price is None and entry_price > 0:
            liquidation_price = estimate_liquidation_price(
                side.value, entry_price, leverage, self.config.execution.maintenance_margin_rate
            )

        return Position(
            strategy_id=strategy_id,
            venue=fill.venue,
            instrument=fill.instrument,
            side=side,
            entry_price=entry_price,
            quantity=fill.filled_qty,
            leverage=leverage,
            liquidation_price=liquidation_price,
            mark_price=mark_price,
            opened_at=now,
            updated_at=now,
        )

    async def _persist(self, strategy: Strategy, positions: List[Position], trades: List[TradeRecord]) -> bool:
        try:
            await self.store.open_strategy(strategy, positions, trades)
            return True
        except Exception as exc:
            payload = {
                "strategy_id": strategy.strategy_id,
                "instrument": strategy.instrument,
                "long_venue": strategy.long_venue,
                "short_venue": strategy.short_venue,
                "legs": ", ".join(f"{p.venue}:{p.side.value}:{p.quantity}@{p.entry_price}" for p in positions),
            }
            self.logger.critical(
                f"🚨 DATA INTEGRITY: strategy {strategy.strategy_id} is open on venues but could not "
                f"be persisted ({exc}); manual reconciliation required. Legs: {payload['legs']}"
            )
            self._notify(ArbEvent.DATA_INTEGRITY, payload, message="Open strategy not persisted")
            await self._record_event("CRITICAL", DATA_INTEGRITY_EVENT, f"Strategy not persisted: {exc}", payload)
            return False

    # ========================================================================
    # Close
    # ========================================================================

    def is_pending_kill(self, strategy_id: str) -> bool:
        return strategy_id in self._pending_kills

    async def close_strategy(self, strategy_id: str, reason: str, kill: bool = False) -> CloseResult:
        """
        Close every open leg of a strategy.

        Idempotent: closing a closed/killed strategy is a no-op, and a call
        made while another close of the same strategy is queued or running
        returns immediately with ``already_in_progress`` (a kill request is
        handed to that close). A close waits for any other holder of the
        strategy lock. Legs that fail to close stay open (the strategy stays
        ``closing``) and are retried next cycle.
        """
        if self.locks.is_closing(strategy_id):
            if kill:
                self._pending_kills.add(strategy_id)
            self.logger.debug(f"Close of {strategy_id} already in progress")
            return CloseResult(strategy_id, already_in_progress=True)

        async with self.locks.closing(strategy_id):
            result = await self._close_locked(strategy_id, reason, kill)

        if result.status is not None and result.status.is_terminal:
            self.locks.discard(strategy_id)
        return result

    async def _close_locked(self, strategy_id: str, reason: str, kill: bool) -> CloseResult:
        strategy = await self.store.get_strategy(strategy_id)
        if strategy is None:
            self.logger.warning(f"Close requested for unknown strategy {strategy_id}")
            return CloseResult(strategy_id, noop=True)

        if StrategyStatus(strategy.status).is_terminal:
            self._pending_kills.discard(strategy_id)
            return CloseResult(strategy_id, status=StrategyStatus(strategy.status), noop=True)

        kill = kill or self.is_pending_kill(strategy_id)
        if kill:
            self._pending_kills.add(strategy_id)

        positions = await self.store.list_open_positions(strategy_id)
        marked_closing = strategy.status == StrategyStatus.CLOSING
        if not kill and not marked_closing:
            await self.store.update_strategy_status(strategy_id, StrategyStatus.CLOSING, close_reason=reason)
            marked_closing = True

        self.logger.info(
            f"{'⛔ KILL' if kill else '🔒 Closing'} strategy {strategy_id} ({strategy.instrument}): {reason}"
        )

        outcomes = await asyncio.gather(
            *(self._close_leg(position) for position in positions),
            return_exceptions=True,
        )

        result = CloseResult(strategy_id)
        realized = Decimal("0")
        for position, outcome in zip(positions, outcomes):
            if isinstance(outcome, Exception) or outcome is False:
                result.failed_venues.append(position.venue)
                self.logger.error(f"❌ [{position.venue}] Failed to close {position.side} leg: {outcome}")
                continue

            position.status = PositionStatus.CLOSED
            position.updated_at = self._clock()
            realized += position.unrealized_pnl
            result.closed_venues.append(position.venue)
            try:
                await self.store.update_position(position)
            except Exception as exc:
                self.logger.error(f"Failed to persist closed leg {position.venue} of {strategy_id}: {exc}")

        if result.failed_venues:
            result.status = StrategyStatus.CLOSING
            if not marked_closing:
                await self.store.update_strategy_status(strategy_id, StrategyStatus.CLOSING, close_reason=reason)
            self.logger.warning(
                f"⚠️  Strategy {strategy_id} partially closed; open legs on {', '.join(result.failed_venues)} "
                f"will be retried"
            )
            return result

        # a kill requested while this close was running still applies
        kill = kill or self.is_pending_kill(strategy_id)
        final_status = StrategyStatus.KILLED if kill else StrategyStatus.CLOSED
        prior = strategy.realized_pnl or Decimal("0")
        result.realized_pnl = prior + realized
        result.status = final_status
        await self.store.update_strategy_status(
            strategy_id,
            final_status,
            exit_time=self._clock(),
            realized_pnl=result.realized_pnl,
            close_reason=reason,
        )
        self._pending_kills.discard(strategy_id)
        self.logger.info(f"✅ Strategy {strategy_id} {final_status.value} (PnL ${result.realized_pnl:.2f})")
        return result

    async def _close_leg(self, position: Position) -> bool:
        client = self.clients.get(position.venue)
        if client is None:
            raise RuntimeError(f"no adapter for {position.venue}")
        return await client.close_position(position.instrument)

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _mark_opportunity(self, opp: ArbitrageOpportunity, status: OpportunityStatus) -> None:
        try:
            await self.store.update_opportunity_status(opp.opportunity_id, status)
        except Exception as exc:
            self.logger.warning(f"Failed to mark opportunity {opp.opportunity_id} {status.value}: {exc}")

    async def _record_event(self, level: str, event_type: str, message: str, metadata: Dict) -> None:
        try:
            await self.store.record_event(level, event_type, message, metadata=metadata, source="execution")
        except Exception as exc:
            self.logger.error(f"Failed to record {event_type} event: {exc}")

    def _notify(self, event: ArbEvent, payload: Dict, message: str = "") -> None:
        if self.notifier is not None:
            self.notifier.notify(event, payload, message=message)
