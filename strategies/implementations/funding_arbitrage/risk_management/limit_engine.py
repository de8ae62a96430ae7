"""
Pre-trade risk limits.

Waterfall of checks evaluated in priority order; the first failing check
rejects the opportunity:

1. Global exposure       open notional + new size <= capital x 0.8
2. Concentration         instrument notional + new size <= capital x 0.3
3. Concurrency           active strategies < max_concurrent_positions
4. Size bounds           minimum_position_size <= size <= max_position_size
5. Quality               risk_score <= 0.7 and confidence >= 0.4
6. Kill-switch cooldown  no kill-switch activation in the trailing window

``validate`` is a pure function of (opportunity, book, now): no I/O, no
mutation, safe to call concurrently.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from helpers.unified_logger import get_strategy_logger

from ..config import RiskLimitsConfig
from ..models import ArbitrageOpportunity, BookState, RiskDecision


KILL_SWITCH_EVENT = "kill_switch"


class RiskLimitEngine:
    """Decides whether an opportunity may be executed given the current book."""

    def __init__(self, limits: RiskLimitsConfig):
        self.limits = limits
        self.logger = get_strategy_logger("funding_arbitrage", component="risk_limits")
        self._checks: List[Tuple[str, Callable]] = [
            ("global_exposure", self._check_global_exposure),
            ("instrument_concentration", self._check_concentration),
            ("concurrent_strategies", self._check_concurrency),
            ("position_size", self._check_size),
            ("quality", self._check_quality),
            ("kill_switch_cooldown", self._check_cooldown),
        ]

    def validate(
        self,
        opportunity: ArbitrageOpportunity,
        book: BookState,
        now: Optional[datetime] = None,
    ) -> RiskDecision:
        now = now or datetime.now(timezone.utc)
        for name, check in self._checks:
            reason = check(opportunity, book, now)
            if reason is not None:
                self.logger.debug(f"⛔ {opportunity.instrument} rejected by {name}: {reason}")
                return RiskDecision.reject(name, reason)
        return RiskDecision.allow()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Checks (return a reason string on failure)
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def _check_global_exposure(self, opp: ArbitrageOpportunity, book: BookState, now: datetime) -> Optional[str]:
        limit = self.limits.total_capital * self.limits.max_total_exposure_ratio
        projected = book.total_exposure + opp.optimal_notional_size
        if projected > limit:
            return (
                f"global exposure ${projected:.2f} would exceed ${limit:.2f} "
                f"({self.limits.max_total_exposure_ratio:.0%} of capital)"
            )
        return None

    def _check_concentration(self, opp: ArbitrageOpportunity, book: BookState, now: datetime) -> Optional[str]:
        limit = self.limits.total_capital * self.limits.max_instrument_concentration_ratio
        projected = book.instrument_exposure(opp.instrument) + opp.optimal_notional_size
        if projected > limit:
            return f"{opp.instrument} exposure ${projected:.2f} would exceed ${limit:.2f}"
        return None

    def _check_concurrency(self, opp: ArbitrageOpportunity, book: BookState, now: datetime) -> Optional[str]:
        active = len(book.active_strategy_ids)
        if active >= self.limits.max_concurrent_positions:
            return f"{active} active strategies (max {self.limits.max_concurrent_positions})"
        return None

    def _check_size(self, opp: ArbitrageOpportunity, book: BookState, now: datetime) -> Optional[str]:
        size = opp.optimal_notional_size
        if size > self.limits.max_position_size:
            return f"position size ${size:.2f} exceeds max ${self.limits.max_position_size:.2f}"
        if size < self.limits.minimum_position_size:
            return f"position size ${size:.2f} below minimum ${self.limits.minimum_position_size:.2f}"
        return None

    def _check_quality(self, opp: ArbitrageOpportunity, book: BookState, now: datetime) -> Optional[str]:
        if opp.risk_score > self.limits.max_risk_score:
            return f"risk score {opp.risk_score:.2f} above {self.limits.max_risk_score}"
        if opp.confidence < self.limits.min_confidence:
            return f"confidence {opp.confidence:.2f} below {self.limits.min_confidence}"
        return None

    def _check_cooldown(self, opp: ArbitrageOpportunity, book: BookState, now: datetime) -> Optional[str]:
        if book.last_kill_switch_at is None:
            return None
        window = timedelta(minutes=self.limits.kill_switch_cooldown_minutes)
        elapsed = now - book.last_kill_switch_at
        if elapsed < window:
            remaining = int((window - elapsed).total_seconds() // 60)
            return f"kill switch activated {int(elapsed.total_seconds() // 60)}m ago ({remaining}m cooldown left)"
        return None


class BookReader:
    """Builds the ``BookState`` the limit engine evaluates against."""

    def __init__(self, store):
        self.store = store

    async def load(self) -> BookState:
        positions = await self.store.list_open_positions()
        strategies = await self.store.list_active_strategies()
        last_kill = await self.store.last_event_time(KILL_SWITCH_EVENT)
        return BookState(
            open_positions=tuple(positions),
            active_strategy_ids=frozenset(s.strategy_id for s in strategies),
            last_kill_switch_at=last_kill,
        )
