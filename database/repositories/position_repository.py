"""
Position Repository - per-venue legs of each strategy
"""

from typing import List, Optional

from databases import Database

from strategies.implementations.funding_arbitrage.models import (
    Position,
    PositionSide,
    PositionStatus,
)


def _row_to_position(row) -> Position:
    return Position(
        position_id=str(row["position_id"]),
        strategy_id=str(row["strategy_id"]),
        venue=row["venue"],
        instrument=row["instrument"],
        side=PositionSide(row["side"]),
        entry_price=row["entry_price"],
        quantity=row["quantity"],
        leverage=row["leverage"],
        liquidation_price=row["liquidation_price"],
        mark_price=row["mark_price"],
        unrealized_pnl=row["unrealized_pnl"],
        status=PositionStatus(row["status"]),
        opened_at=row["opened_at"],
        updated_at=row["updated_at"],
    )


class PositionRepository:
    """Repository for Position rows (UNIQUE per strategy, venue, instrument)"""

    def __init__(self, db: Database):
        self.db = db

    async def insert(self, position: Position) -> None:
        query = """
            INSERT INTO positions (
                position_id, strategy_id, venue, instrument, side,
                entry_price, quantity, leverage, liquidation_price, mark_price,
                unrealized_pnl, status, opened_at, updated_at
            )
            VALUES (
                :position_id, :strategy_id, :venue, :instrument, :side,
                :entry_price, :quantity, :leverage, :liquidation_price, :mark_price,
                :unrealized_pnl, :status, :opened_at, :updated_at
            )
        """
        await self.db.execute(
            query,
            {
                "position_id": position.position_id,
                "strategy_id": position.strategy_id,
                "venue": position.venue,
                "instrument": position.instrument,
                "side": PositionSide(position.side).value,
                "entry_price": position.entry_price,
                "quantity": position.quantity,
                "leverage": position.leverage,
                "liquidation_price": position.liquidation_price,
                "mark_price": position.mark_price,
                "unrealized_pnl": position.unrealized_pnl,
                "status": PositionStatus(position.status).value,
                "opened_at": position.opened_at,
                "updated_at": position.updated_at,
            },
        )

    async def list_open(self, strategy_id: Optional[str] = None) -> List[Position]:
        """Open legs, optionally limited to one strategy."""
        query = """
            SELECT *
            FROM positions
            WHERE status = :status
              AND (CAST(:strategy_id AS UUID) IS NULL OR strategy_id = CAST(:strategy_id AS UUID))
            ORDER BY opened_at ASC
        """
        rows = await self.db.fetch_all(
            query, {"status": PositionStatus.OPEN.value, "strategy_id": strategy_id}
        )
        return [_row_to_position(row) for row in rows]

    async def update(self, position: Position) -> None:
        """Persist refreshed market fields and status of a leg."""
        query = """
            UPDATE positions
            SET mark_price = :mark_price,
                liquidation_price = :liquidation_price,
                unrealized_pnl = :unrealized_pnl,
                quantity = :quantity,
                status = :status,
                updated_at = :updated_at
            WHERE position_id = :position_id
        """
        await self.db.execute(
            query,
            {
                "position_id": position.position_id,
                "mark_price": position.mark_price,
                "liquidation_price": position.liquidation_price,
                "unrealized_pnl": position.unrealized_pnl,
                "quantity": position.quantity,
                "status": PositionStatus(position.status).value,
                "updated_at": position.updated_at,
            },
        )
