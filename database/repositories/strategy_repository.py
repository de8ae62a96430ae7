"""
Strategy Repository - lifecycle of hedged long/short pairs
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from databases import Database

from strategies.implementations.funding_arbitrage.models import Strategy, StrategyStatus


def _row_to_strategy(row) -> Strategy:
    return Strategy(
        strategy_id=str(row["strategy_id"]),
        instrument=row["instrument"],
        long_venue=row["long_venue"],
        short_venue=row["short_venue"],
        expected_profit_bps=row["expected_profit_bps"],
        entry_time=row["entry_time"],
        exit_time=row["exit_time"],
        realized_pnl=row["realized_pnl"],
        status=StrategyStatus(row["status"]),
        close_reason=row["close_reason"],
        opportunity_id=str(row["opportunity_id"]) if row["opportunity_id"] else None,
    )


class StrategyRepository:
    """Repository for Strategy rows"""

    _COLUMNS = """
        strategy_id, instrument, long_venue, short_venue, entry_time, exit_time,
        expected_profit_bps, realized_pnl, status, close_reason, opportunity_id
    """

    def __init__(self, db: Database):
        self.db = db

    async def insert(self, strategy: Strategy) -> None:
        query = """
            INSERT INTO strategies (
                strategy_id, instrument, long_venue, short_venue, entry_time,
                expected_profit_bps, status, opportunity_id
            )
            VALUES (
                :strategy_id, :instrument, :long_venue, :short_venue, :entry_time,
                :expected_profit_bps, :status, :opportunity_id
            )
        """
        await self.db.execute(
            query,
            {
                "strategy_id": strategy.strategy_id,
                "instrument": strategy.instrument,
                "long_venue": strategy.long_venue,
                "short_venue": strategy.short_venue,
                "entry_time": strategy.entry_time,
                "expected_profit_bps": strategy.expected_profit_bps,
                "status": StrategyStatus(strategy.status).value,
                "opportunity_id": strategy.opportunity_id,
            },
        )

    async def get(self, strategy_id: str) -> Optional[Strategy]:
        query = f"SELECT {self._COLUMNS} FROM strategies WHERE strategy_id = :strategy_id"
        row = await self.db.fetch_one(query, {"strategy_id": strategy_id})
        return _row_to_strategy(row) if row else None

    async def list_by_status(self, statuses: List[StrategyStatus]) -> List[Strategy]:
        query = f"""
            SELECT {self._COLUMNS}
            FROM strategies
            WHERE status = ANY(:statuses)
            ORDER BY entry_time ASC
        """
        rows = await self.db.fetch_all(query, {"statuses": [StrategyStatus(s).value for s in statuses]})
        return [_row_to_strategy(row) for row in rows]

    async def update_status(
        self,
        strategy_id: str,
        status: StrategyStatus,
        *,
        exit_time: Optional[datetime] = None,
        realized_pnl: Optional[Decimal] = None,
        close_reason: Optional[str] = None,
    ) -> None:
        query = """
            UPDATE strategies
            SET status = :status,
                exit_time = COALESCE(:exit_time, exit_time),
                realized_pnl = COALESCE(:realized_pnl, realized_pnl),
                close_reason = COALESCE(:close_reason, close_reason)
            WHERE strategy_id = :strategy_id
        """
        await self.db.execute(
            query,
            {
                "strategy_id": strategy_id,
                "status": StrategyStatus(status).value,
                "exit_time": exit_time,
                "realized_pnl": realized_pnl,
                "close_reason": close_reason,
            },
        )
