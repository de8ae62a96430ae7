"""
Trade Repository - one row per executed order
"""

from databases import Database

from strategies.implementations.funding_arbitrage.models import TradeRecord


class TradeRepository:
    def __init__(self, db: Database):
        self.db = db

    async def insert(self, trade: TradeRecord) -> None:
        query = """
            INSERT INTO trades (
                trade_id, strategy_id, venue, instrument, side,
                quantity, price, fees, status, order_id, executed_at
            )
            VALUES (
                :trade_id, :strategy_id, :venue, :instrument, :side,
                :quantity, :price, :fees, :status, :order_id, :executed_at
            )
        """
        await self.db.execute(
            query,
            {
                "trade_id": trade.trade_id,
                "strategy_id": trade.strategy_id,
                "venue": trade.venue,
                "instrument": trade.instrument,
                "side": trade.side,
                "quantity": trade.quantity,
                "price": trade.price,
                "fees": trade.fees,
                "status": trade.status,
                "order_id": trade.order_id,
                "executed_at": trade.executed_at,
            },
        )
