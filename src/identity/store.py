"""Collaborator contracts consumed by the recognition core.

The core never assumes a storage engine: it talks to an IdentityStore
and reports decisions to an AuditSink. Implementations satisfy these
protocols structurally, without inheriting.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from src.identity.schemas import (
    ChangeSet,
    IdentityRecord,
    ProfileMatchSuggestion,
    QueueStatus,
    RecognitionInput,
    ReviewQueueItem,
)

if TYPE_CHECKING:
    from src.events.types import AuditEvent


@runtime_checkable
class IdentityStore(Protocol):
    """Lookup and write operations over person profiles and review records.

    Implementations raise DependencyUnavailableError when the backing
    store fails, so callers can tell "no match" from "couldn't check".
    """

    async def find_candidates(
        self, tenant_id: str, query: RecognitionInput
    ) -> list[IdentityRecord]:
        """Plausible candidates for an input, scoped to the tenant."""
        ...

    async def get_profile(self, profile_id: str, tenant_id: str) -> IdentityRecord | None:
        ...

    async def find_family_members(
        self, tenant_id: str, family_id: str, exclude_profile_id: str
    ) -> list[IdentityRecord]:
        ...

    async def update_profile(self, profile_id: str, tenant_id: str, fields: dict) -> None:
        ...

    async def create_suggestion(self, suggestion: ProfileMatchSuggestion) -> str:
        ...

    async def get_suggestion(
        self, suggestion_id: str, tenant_id: str
    ) -> ProfileMatchSuggestion | None:
        ...

    async def find_pending_suggestion(
        self, tenant_id: str, source_profile_id: str
    ) -> ProfileMatchSuggestion | None:
        ...

    async def update_suggestion(self, suggestion_id: str, fields: dict) -> None:
        ...

    async def create_queue_item(self, item: ReviewQueueItem) -> str:
        ...

    async def get_queue_item(self, item_id: str, tenant_id: str) -> ReviewQueueItem | None:
        ...

    async def find_queue_item_for_suggestion(
        self, suggestion_id: str, tenant_id: str
    ) -> ReviewQueueItem | None:
        ...

    async def update_queue_item(self, item_id: str, fields: dict) -> None:
        ...

    async def list_queue_items(
        self, tenant_id: str, status: QueueStatus, limit: int, offset: int
    ) -> tuple[list[ReviewQueueItem], int]:
        """Page of queue items (newest first) and the total count."""
        ...

    async def repoint_dependents(self, source_id: str, target_id: str) -> None:
        ...

    async def link_submission(
        self, tenant_id: str, submission_id: str, profile: IdentityRecord
    ) -> None:
        """Point a form submission at a confirmed profile."""
        ...

    async def apply_changes(self, tenant_id: str, changes: ChangeSet) -> None:
        """Apply every mutation in the change set atomically."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Write-only compliance log. Must never block or fail the caller."""

    def record(self, event: "AuditEvent") -> None:
        ...
