"""Base class for records written to the audit event store."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

# Envelope fields stored in their own columns rather than in event_data
ENVELOPE_FIELDS = {"event_id", "timestamp", "tenant_id"}


class Event(BaseModel):
    """An immutable, tenant-scoped fact.

    Subclasses add their payload fields. The envelope (id, timestamp,
    tenant) is stored in dedicated columns; the payload is stored as JSON.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    tenant_id: str = Field(description="Church (tenant) the event belongs to")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Non-identifying context, e.g. feedback_provided",
    )

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_store_dict(self) -> dict[str, Any]:
        """Split the event into envelope columns and a JSON-safe payload."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "tenant_id": self.tenant_id,
            "data": self.model_dump(mode="json", exclude=ENVELOPE_FIELDS),
        }
