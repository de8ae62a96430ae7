"""
Funding Rate Repository - read/write access to funding rate observations
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from databases import Database

from exchange_clients.base_models import FundingRate


class FundingRateRepository:
    """Repository for funding rate history"""

    def __init__(self, db: Database):
        self.db = db

    async def insert(self, rate: FundingRate) -> None:
        query = """
            INSERT INTO funding_rates (venue, instrument, rate, observed_at, next_funding_at)
            VALUES (:venue, :instrument, :rate, :observed_at, :next_funding_at)
        """
        await self.db.execute(
            query,
            {
                "venue": rate.venue,
                "instrument": rate.instrument,
                "rate": rate.rate,
                "observed_at": rate.observed_at,
                "next_funding_at": rate.next_funding_at,
            },
        )

    async def get_history(
        self,
        instrument: str,
        venue: str,
        hours: int,
        now: Optional[datetime] = None,
    ) -> List[FundingRate]:
        """Observations for one venue/instrument in the trailing window, oldest first."""
        since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        query = """
            SELECT venue, instrument, rate, observed_at, next_funding_at
            FROM funding_rates
            WHERE instrument = :instrument
              AND venue = :venue
              AND observed_at >= :since
            ORDER BY observed_at ASC
        """
        rows = await self.db.fetch_all(query, {"instrument": instrument, "venue": venue, "since": since})
        return [
            FundingRate(
                venue=row["venue"],
                instrument=row["instrument"],
                rate=row["rate"],
                observed_at=row["observed_at"],
                next_funding_at=row["next_funding_at"],
            )
            for row in rows
        ]
