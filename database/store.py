"""
ArbitrageStore - persistence facade used by the engine components.

Groups the per-table repositories behind the handful of operations the
analyzer, coordinator, supervisor and exposure monitor need. The only
multi-table write (opening a strategy) runs in a single transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from databases import Database

from database.repositories import (
    FundingRateRepository,
    OpportunityRepository,
    PositionRepository,
    RiskSnapshotRepository,
    StrategyRepository,
    SystemEventRepository,
    TradeRepository,
)
from exchange_clients.base_models import FundingRate
from strategies.implementations.funding_arbitrage.models import (
    ArbitrageOpportunity,
    OpportunityStatus,
    Position,
    RiskSnapshot,
    Strategy,
    StrategyStatus,
    TradeRecord,
)


class PersistenceError(Exception):
    """A write the engine depends on could not be completed."""


class ArbitrageStore:
    def __init__(self, db: Database):
        self.db = db
        self.funding_rates = FundingRateRepository(db)
        self.opportunities = OpportunityRepository(db)
        self.strategies = StrategyRepository(db)
        self.positions = PositionRepository(db)
        self.trades = TradeRepository(db)
        self.risk_snapshots = RiskSnapshotRepository(db)
        self.events = SystemEventRepository(db)

    async def connect(self) -> None:
        await self.db.connect()

    async def disconnect(self) -> None:
        await self.db.disconnect()

    # Funding rates ---------------------------------------------------------

    async def save_funding_rate(self, rate: FundingRate) -> None:
        await self.funding_rates.insert(rate)

    async def get_funding_history(self, instrument: str, venue: str, hours: int) -> List[FundingRate]:
        return await self.funding_rates.get_history(instrument, venue, hours)

    # Opportunities ---------------------------------------------------------

    async def save_opportunity(self, opportunity: ArbitrageOpportunity) -> None:
        await self.opportunities.insert(opportunity)

    async def update_opportunity_status(self, opportunity_id: str, status: OpportunityStatus) -> None:
        await self.opportunities.update_status(opportunity_id, status)

    # Strategies & positions ------------------------------------------------

    async def open_strategy(
        self,
        strategy: Strategy,
        positions: Sequence[Position],
        trades: Sequence[TradeRecord] = (),
    ) -> None:
        """
        Insert a strategy with its legs and fills atomically.

        Raises:
            PersistenceError: Nothing was written.
        """
        try:
            async with self.db.transaction():
                await self.strategies.insert(strategy)
                for position in positions:
                    await self.positions.insert(position)
                for trade in trades:
                    await self.trades.insert(trade)
        except Exception as exc:
            raise PersistenceError(f"Failed to persist strategy {strategy.strategy_id}: {exc}") from exc

    async def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        return await self.strategies.get(strategy_id)

    async def list_active_strategies(self) -> List[Strategy]:
        return await self.strategies.list_by_status([StrategyStatus.ACTIVE, StrategyStatus.CLOSING])

    async def update_strategy_status(
        self,
        strategy_id: str,
        status: StrategyStatus,
        *,
        exit_time: Optional[datetime] = None,
        realized_pnl: Optional[Decimal] = None,
        close_reason: Optional[str] = None,
    ) -> None:
        await self.strategies.update_status(
            strategy_id,
            status,
            exit_time=exit_time,
            realized_pnl=realized_pnl,
            close_reason=close_reason,
        )

    async def list_open_positions(self, strategy_id: Optional[str] = None) -> List[Position]:
        return await self.positions.list_open(strategy_id)

    async def update_position(self, position: Position) -> None:
        await self.positions.update(position)

    # Risk & events ---------------------------------------------------------

    async def save_risk_snapshot(self, snapshot: RiskSnapshot) -> None:
        await self.risk_snapshots.insert(snapshot)

    async def record_event(
        self,
        level: str,
        event_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> None:
        await self.events.insert(level, event_type, message, metadata=metadata, source=source)

    async def last_event_time(self, event_type: str) -> Optional[datetime]:
        return await self.events.last_event_time(event_type)
