"""
System Event Repository - audit log (kill switch activations, integrity incidents)
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from databases import Database


class SystemEventRepository:
    """Repository for system_events"""

    def __init__(self, db: Database):
        self.db = db

    async def insert(
        self,
        level: str,
        event_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        query = """
            INSERT INTO system_events (level, event_type, message, metadata, source, created_at)
            VALUES (:level, :event_type, :message, CAST(:metadata AS JSONB), :source, :created_at)
        """
        await self.db.execute(
            query,
            {
                "level": level.upper(),
                "event_type": event_type,
                "message": message,
                "metadata": json.dumps(metadata, default=str) if metadata is not None else None,
                "source": source,
                "created_at": created_at or datetime.now(timezone.utc),
            },
        )

    async def last_event_time(self, event_type: str) -> Optional[datetime]:
        query = """
            SELECT MAX(created_at)
            FROM system_events
            WHERE event_type = :event_type
        """
        return await self.db.fetch_val(query, {"event_type": event_type})
