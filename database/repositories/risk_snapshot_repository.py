"""
Risk Snapshot Repository - append-only audit trail of book-level risk
"""

from databases import Database

from strategies.implementations.funding_arbitrage.models import RiskSnapshot


class RiskSnapshotRepository:
    def __init__(self, db: Database):
        self.db = db

    async def insert(self, snapshot: RiskSnapshot) -> None:
        query = """
            INSERT INTO risk_snapshots (
                snapshot_id, total_exposure, margin_utilization, unrealized_pnl,
                near_liquidation_count, max_drawdown_pct, active_strategy_count, observed_at
            )
            VALUES (
                :snapshot_id, :total_exposure, :margin_utilization, :unrealized_pnl,
                :near_liquidation_count, :max_drawdown_pct, :active_strategy_count, :observed_at
            )
        """
        await self.db.execute(
            query,
            {
                "snapshot_id": snapshot.snapshot_id,
                "total_exposure": snapshot.total_exposure,
                "margin_utilization": snapshot.margin_utilization,
                "unrealized_pnl": snapshot.unrealized_pnl,
                "near_liquidation_count": snapshot.near_liquidation_count,
                "max_drawdown_pct": snapshot.max_drawdown_pct,
                "active_strategy_count": snapshot.active_strategy_count,
                "observed_at": snapshot.observed_at,
            },
        )
