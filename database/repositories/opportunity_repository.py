"""
Opportunity Repository - append-only log of detected arbitrage opportunities
"""

from datetime import datetime, timezone

from databases import Database

from strategies.implementations.funding_arbitrage.models import (
    ArbitrageOpportunity,
    OpportunityStatus,
)


class OpportunityRepository:
    """Repository for Arbitrage Opportunity data access"""

    def __init__(self, db: Database):
        self.db = db

    async def insert(self, opportunity: ArbitrageOpportunity) -> None:
        """Record a freshly identified opportunity (status ``identified``)."""
        query = """
            INSERT INTO arbitrage_opportunities (
                opportunity_id, instrument, long_venue, short_venue,
                long_rate, short_rate, rate_spread, spread_basis_points,
                estimated_daily_profit, optimal_notional_size,
                confidence, risk_score, venue_count, status, discovered_at
            )
            VALUES (
                :opportunity_id, :instrument, :long_venue, :short_venue,
                :long_rate, :short_rate, :rate_spread, :spread_basis_points,
                :estimated_daily_profit, :optimal_notional_size,
                :confidence, :risk_score, :venue_count, :status, :discovered_at
            )
        """
        await self.db.execute(
            query,
            {
                "opportunity_id": opportunity.opportunity_id,
                "instrument": opportunity.instrument,
                "long_venue": opportunity.long_venue,
                "short_venue": opportunity.short_venue,
                "long_rate": opportunity.long_rate,
                "short_rate": opportunity.short_rate,
                "rate_spread": opportunity.rate_spread,
                "spread_basis_points": opportunity.spread_basis_points,
                "estimated_daily_profit": opportunity.estimated_daily_profit,
                "optimal_notional_size": opportunity.optimal_notional_size,
                "confidence": opportunity.confidence,
                "risk_score": opportunity.risk_score,
                "venue_count": opportunity.venue_count,
                "status": OpportunityStatus.IDENTIFIED.value,
                "discovered_at": opportunity.discovered_at,
            },
        )

    async def update_status(self, opportunity_id: str, status: OpportunityStatus) -> None:
        query = """
            UPDATE arbitrage_opportunities
            SET status = :status, status_updated_at = :updated_at
            WHERE opportunity_id = :opportunity_id
        """
        await self.db.execute(
            query,
            {
                "opportunity_id": opportunity_id,
                "status": OpportunityStatus(status).value,
                "updated_at": datetime.now(timezone.utc),
            },
        )
