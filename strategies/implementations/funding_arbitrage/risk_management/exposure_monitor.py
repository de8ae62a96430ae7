"""
Portfolio-level exposure audit and emergency enforcement.

Every cycle a ``RiskSnapshot`` is persisted. When total exposure breaches
the emergency ratio, strategies are closed worst-PnL first until the book
is back under the target ratio.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional

from exchange_clients.base_client import BaseExchangeClient
from exchange_clients.base_models import AccountBalance
from helpers.event_notifier import ArbEvent, ArbEventNotifier
from helpers.unified_logger import get_strategy_logger

from ..config import FundingArbConfig
from ..models import Position, RiskSnapshot
from .kill_switch import drawdown_pct, position_liquidation_distance


RISK_LIMIT_ENFORCEMENT = "risk_limit_enforcement"


class ExposureMonitor:
    def __init__(
        self,
        config: FundingArbConfig,
        clients: Mapping[str, BaseExchangeClient],
        store,
        coordinator,
        notifier: Optional[ArbEventNotifier] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config
        self.clients = dict(clients)
        self.store = store
        self.coordinator = coordinator
        self.notifier = notifier
        self._clock = clock
        self.logger = get_strategy_logger(config.strategy_name, component="exposure")
        self.last_snapshot: Optional[RiskSnapshot] = None

    async def run_cycle(self) -> RiskSnapshot:
        positions = await self.store.list_open_positions()
        strategies = await self.store.list_active_strategies()

        snapshot = RiskSnapshot(
            total_exposure=sum((p.notional for p in positions), Decimal("0")),
            margin_utilization=await self._margin_utilization(),
            unrealized_pnl=sum((p.unrealized_pnl for p in positions), Decimal("0")),
            near_liquidation_count=sum(
                1
                for p in positions
                if position_liquidation_distance(p) < self.config.kill_switch.near_liquidation_percent
            ),
            max_drawdown_pct=max((drawdown_pct(p) for p in positions), default=Decimal("0")),
            active_strategy_count=len(strategies),
            observed_at=self._clock(),
        )
        self.last_snapshot = snapshot

        try:
            await self.store.save_risk_snapshot(snapshot)
        except Exception as exc:
            self.logger.warning(f"Failed to persist risk snapshot: {exc}")

        self.logger.debug(
            f"📈 Exposure ${snapshot.total_exposure:.2f} | margin {snapshot.margin_utilization:.1%} | "
            f"uPnL ${snapshot.unrealized_pnl:.2f} | near-liq {snapshot.near_liquidation_count} | "
            f"strategies {snapshot.active_strategy_count}"
        )

        self._warn_oversized(positions)
        await self.enforce_exposure_limits(positions, snapshot.total_exposure)
        return snapshot

    async def _margin_utilization(self) -> Decimal:
        balances = await asyncio.gather(
            *(client.get_balance() for client in self.clients.values()),
            return_exceptions=True,
        )
        used = Decimal("0")
        total = Decimal("0")
        for venue, balance in zip(self.clients.keys(), balances):
            if isinstance(balance, AccountBalance):
                used += balance.used
                total += balance.total
            else:
                self.logger.warning(f"[{venue}] Balance unavailable: {balance}")
        return used / total if total > 0 else Decimal("0")

    def _warn_oversized(self, positions: List[Position]) -> None:
        limit = self.config.risk.max_position_size * self.config.risk.oversize_warning_tolerance
        for position in positions:
            if position.notional <= limit:
                continue
            self.logger.warning(
                f"⚠️  {position.instrument} {position.side.value} on {position.venue} notional "
                f"${position.notional:.2f} above ${limit:.2f}"
            )
            self._notify(
                {
                    "strategy_id": position.strategy_id,
                    "venue": position.venue,
                    "instrument": position.instrument,
                    "notional": position.notional,
                    "limit": limit,
                },
                "Position above size limit",
            )

    async def enforce_exposure_limits(self, positions: List[Position], total_exposure: Decimal) -> List[str]:
        """
        Close strategies (worst unrealized PnL first) while exposure is
        above the emergency threshold.

        Returns:
            Ids of the strategies that were fully closed.
        """
        capital = self.config.risk.total_capital
        emergency = capital * self.config.risk.emergency_exposure_ratio
        if total_exposure <= emergency:
            return []

        target = capital * self.config.risk.target_exposure_ratio
        self.logger.warning(
            f"🚨 Exposure ${total_exposure:.2f} above emergency limit ${emergency:.2f}; reducing to ${target:.2f}"
        )
        self._notify(
            {"total_exposure": total_exposure, "emergency_limit": emergency, "target": target},
            "Emergency exposure limit breached",
        )

        pnl: Dict[str, Decimal] = defaultdict(Decimal)
        notional: Dict[str, Decimal] = defaultdict(Decimal)
        for position in positions:
            pnl[position.strategy_id] += position.unrealized_pnl
            notional[position.strategy_id] += position.notional

        closed: List[str] = []
        remaining = total_exposure
        for strategy_id in sorted(pnl, key=lambda sid: pnl[sid]):
            if remaining <= target:
                break
            result = await self.coordinator.close_strategy(strategy_id, RISK_LIMIT_ENFORCEMENT)
            if result.fully_closed and not result.noop:
                closed.append(strategy_id)
                remaining -= notional[strategy_id]
                self.logger.info(f"Closed {strategy_id} for exposure; remaining ${remaining:.2f}")
            else:
                self.logger.warning(f"Could not fully close {strategy_id} during exposure enforcement")
        return closed

    def _notify(self, payload: Dict, message: str) -> None:
        if self.notifier is not None:
            self.notifier.notify(ArbEvent.RISK_WARNING, payload, message=message)
