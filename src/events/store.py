"""Append-only audit event store using Turso/libSQL.

Every recognition decision and review action is written here. Rows are
never updated or deleted; candidate profile ids only appear as salted
hash prefixes inside the payload.
"""

import json
import logging
from collections.abc import AsyncIterator
from datetime import datetime

from src.db.turso import TursoClient
from src.events.base import Event

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS audit_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT UNIQUE NOT NULL,
        event_type TEXT NOT NULL,
        tenant_id TEXT NOT NULL,
        event_data TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_audit_events_tenant
    ON audit_events(tenant_id, timestamp)
    """,
]


class EventStore:
    """Tenant-scoped, append-only store for audit events."""

    def __init__(self, client: TursoClient):
        self.client = client

    async def init_schema(self) -> None:
        """Create the audit_events table and index if missing."""
        await self.client.execute_batch(SCHEMA)
        logger.info("Audit event store schema initialized")

    async def append(self, event: Event) -> None:
        """Persist one event.

        Args:
            event: The event to store
        """
        row = event.to_store_dict()
        await self.client.execute(
            """INSERT INTO audit_events
               (event_id, event_type, tenant_id, event_data, timestamp)
               VALUES (?, ?, ?, ?, ?)""",
            [
                row["event_id"],
                row["event_type"],
                row["tenant_id"],
                json.dumps(row["data"], default=str),
                row["timestamp"],
            ],
        )
        logger.debug(f"Stored {event.event_type} {event.event_id} for {event.tenant_id}")

    async def get_events_for_tenant(
        self,
        tenant_id: str,
        since: datetime | None = None,
        limit: int = 100,
    ) -> AsyncIterator[dict]:
        """Yield a tenant's events in insertion order.

        Args:
            tenant_id: Tenant identifier
            since: Only events with a later timestamp
            limit: Maximum events to return
        """
        sql = "SELECT event_id, event_type, event_data, timestamp FROM audit_events "
        sql += "WHERE tenant_id = ?"
        params: list = [tenant_id]
        if since is not None:
            sql += " AND timestamp > ?"
            params.append(since.isoformat())
        sql += " ORDER BY id ASC LIMIT ?"
        params.append(limit)

        result = await self.client.execute(sql, params)
        for event_id, event_type, event_data, timestamp in result.rows:
            yield {
                "event_id": event_id,
                "event_type": event_type,
                "data": json.loads(event_data),
                "timestamp": timestamp,
            }

    async def count_events(self, tenant_id: str | None = None) -> int:
        """Count stored events, for all tenants or one."""
        if tenant_id:
            result = await self.client.execute(
                "SELECT COUNT(*) FROM audit_events WHERE tenant_id = ?", [tenant_id]
            )
        else:
            result = await self.client.execute("SELECT COUNT(*) FROM audit_events")
        return result.rows[0][0]
