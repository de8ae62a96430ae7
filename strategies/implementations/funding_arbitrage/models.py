"""
Data Models for Funding Arbitrage

Opportunity -> Strategy (a long/short pair) -> Positions (one per leg).
All monetary values are Decimal, all timestamps timezone-aware UTC.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from exchange_clients.base_models import TradeResult


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# ============================================================================
# Enums
# ============================================================================

class OpportunityStatus(str, Enum):
    IDENTIFIED = "identified"
    EXECUTED = "executed"
    REJECTED = "rejected"
    EXPIRED = "expired"


class StrategyStatus(str, Enum):
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in (StrategyStatus.CLOSED, StrategyStatus.KILLED)


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# ============================================================================
# Opportunity
# ============================================================================

@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    Ranked funding divergence between two venues for one instrument.

    Long where funding is cheapest (``long_venue``), short where it is most
    expensive (``short_venue``). Immutable once produced; consumed once.
    """
    instrument: str
    long_venue: str
    short_venue: str
    long_rate: Decimal
    short_rate: Decimal
    rate_spread: Decimal  # short_rate - long_rate
    spread_basis_points: Decimal
    estimated_daily_profit: Decimal
    optimal_notional_size: Decimal
    confidence: Decimal
    risk_score: Decimal
    venue_count: int = 2
    opportunity_id: str = field(default_factory=new_id)
    discovered_at: datetime = field(default_factory=utc_now)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utc_now()) - self.discovered_at).total_seconds()

    def is_stale(self, max_age_seconds: float, now: Optional[datetime] = None) -> bool:
        return self.age_seconds(now) > max_age_seconds

    def summary(self) -> str:
        return (
            f"{self.instrument} long {self.long_venue} ({self.long_rate}) / "
            f"short {self.short_venue} ({self.short_rate}) | "
            f"{self.spread_basis_points:.1f} bps | size ${self.optimal_notional_size:.2f} | "
            f"daily ${self.estimated_daily_profit:.4f}"
        )


# ============================================================================
# Strategy / Position
# ============================================================================

@dataclass
class Strategy:
    """A hedged long/short pair opened from one opportunity."""
    instrument: str
    long_venue: str
    short_venue: str
    expected_profit_bps: Decimal
    strategy_id: str = field(default_factory=new_id)
    entry_time: datetime = field(default_factory=utc_now)
    status: StrategyStatus = StrategyStatus.ACTIVE
    exit_time: Optional[datetime] = None
    realized_pnl: Optional[Decimal] = None
    close_reason: Optional[str] = None
    opportunity_id: Optional[str] = None

    @property
    def venues(self) -> List[str]:
        return [self.long_venue, self.short_venue]


@dataclass
class Position:
    """One leg of a strategy on one venue."""
    strategy_id: str
    venue: str
    instrument: str
    side: PositionSide
    entry_price: Decimal
    quantity: Decimal
    leverage: int
    liquidation_price: Optional[Decimal] = None
    mark_price: Optional[Decimal] = None
    unrealized_pnl: Decimal = Decimal("0")
    status: PositionStatus = PositionStatus.OPEN
    position_id: str = field(default_factory=new_id)
    opened_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def current_price(self) -> Decimal:
        return self.mark_price if self.mark_price is not None else self.entry_price

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.current_price

    @property
    def entry_notional(self) -> Decimal:
        return self.quantity * self.entry_price


@dataclass
class TradeRecord:
    """Persisted fill for one executed order."""
    strategy_id: str
    venue: str
    instrument: str
    side: str
    quantity: Decimal
    price: Decimal
    fees: Decimal
    status: str
    order_id: Optional[str] = None
    trade_id: str = field(default_factory=new_id)
    executed_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_result(cls, strategy_id: str, result: TradeResult) -> "TradeRecord":
        return cls(
            strategy_id=strategy_id,
            venue=result.venue,
            instrument=result.instrument,
            side=result.side.value,
            quantity=result.filled_qty,
            price=result.avg_price or Decimal("0"),
            fees=result.fees,
            status=result.status.value,
            order_id=result.order_id,
            executed_at=result.timestamp,
        )


# ============================================================================
# Risk
# ============================================================================

@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str = "ok"
    check: Optional[str] = None

    @classmethod
    def allow(cls) -> "RiskDecision":
        return cls(True)

    @classmethod
    def reject(cls, check: str, reason: str) -> "RiskDecision":
        return cls(False, reason, check)


@dataclass(frozen=True)
class BookState:
    """Read-only view of the current book handed to the risk limit engine."""
    open_positions: Sequence[Position] = ()
    active_strategy_ids: frozenset = frozenset()
    last_kill_switch_at: Optional[datetime] = None

    @property
    def total_exposure(self) -> Decimal:
        return sum((p.notional for p in self.open_positions), Decimal("0"))

    def instrument_exposure(self, instrument: str) -> Decimal:
        return sum(
            (p.notional for p in self.open_positions if p.instrument == instrument),
            Decimal("0"),
        )


@dataclass(frozen=True)
class RiskSnapshot:
    total_exposure: Decimal
    margin_utilization: Decimal
    unrealized_pnl: Decimal
    near_liquidation_count: int
    max_drawdown_pct: Decimal
    active_strategy_count: int
    snapshot_id: str = field(default_factory=new_id)
    observed_at: datetime = field(default_factory=utc_now)


# ============================================================================
# Execution results
# ============================================================================

@dataclass
class ExecutionResult:
    success: bool
    opportunity_id: str
    strategy_id: Optional[str] = None
    error: Optional[str] = None
    rollback_performed: bool = False
    unhedged_venues: List[str] = field(default_factory=list)
    legs: List[TradeResult] = field(default_factory=list)
    persisted: bool = False


@dataclass
class CloseResult:
    strategy_id: str
    status: Optional[StrategyStatus] = None
    closed_venues: List[str] = field(default_factory=list)
    failed_venues: List[str] = field(default_factory=list)
    realized_pnl: Optional[Decimal] = None
    already_in_progress: bool = False
    noop: bool = False

    @property
    def fully_closed(self) -> bool:
        return not self.failed_venues and not self.already_in_progress


@dataclass
class StrategyMetrics:
    strategy_id: str
    instrument: str
    status: StrategyStatus
    legs: List[Dict[str, Any]]
    total_unrealized_pnl: Decimal
    total_notional: Decimal
    return_pct: Decimal
    entry_time: datetime
