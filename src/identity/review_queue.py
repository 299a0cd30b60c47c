"""Admin review workflow for uncertain recognition matches.

Admins list pending match suggestions and approve, reject or merge them.
Every action builds one ChangeSet and hands it to the identity store,
which applies it atomically; a failed write leaves the item pending.
"""

from datetime import UTC, datetime
from typing import Any

import structlog

from src.events.types import AuditAction, AuditEvent
from src.identity.cache import RecognitionCache
from src.identity.errors import AlreadyProcessedError, InvalidInputError, NotFoundError
from src.identity.masking import redact_identifier
from src.identity.schemas import (
    PROFILE_DATA_FIELDS,
    ApproveAction,
    ChangeSet,
    IdentityRecord,
    KeepData,
    MatchType,
    MergeAction,
    MergeOptions,
    Pagination,
    ProfileMatchSuggestion,
    ProfileStatus,
    ProfileSummary,
    QueueStatus,
    RejectAction,
    ReviewAction,
    ReviewActionResult,
    ReviewOutcome,
    ReviewQueueEntry,
    ReviewQueueItem,
    ReviewQueuePage,
    ReviewStatus,
)
from src.identity.store import AuditSink, IdentityStore

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100

# Fields taken from the source profile when the target has none
_LINK_FIELDS = ("member_id", "family_id")


def merge_profile_fields(
    source: IdentityRecord,
    target: IdentityRecord,
    keep_data: KeepData,
) -> dict[str, Any]:
    """Compute the surviving profile's data fields and confidence.

    - source: the source profile's data fields replace the target's
    - target: the target's data fields are kept as they are
    - merge: the target's non-null fields are kept and its null fields
      are filled from the source; confidence is the higher of the two

    When both sides hold a value, merge favours the target, not the
    source. A conflicting newer value from the source is dropped; use
    keep_data=source to take the source's values instead.

    Args:
        source: Profile merged away
        target: Surviving profile
        keep_data: Which side wins

    Returns:
        Field updates for the target profile
    """
    if keep_data == KeepData.SOURCE:
        fields = {f: getattr(source, f) for f in PROFILE_DATA_FIELDS}
        fields["confidence"] = source.confidence
    elif keep_data == KeepData.TARGET:
        fields = {f: getattr(target, f) for f in PROFILE_DATA_FIELDS}
        fields["confidence"] = target.confidence
    else:
        fields = {
            f: getattr(target, f) if getattr(target, f) is not None else getattr(source, f)
            for f in PROFILE_DATA_FIELDS
        }
        fields["confidence"] = max(source.confidence, target.confidence)

    for f in _LINK_FIELDS:
        if getattr(target, f) is None and getattr(source, f) is not None:
            fields[f] = getattr(source, f)
    return fields


class ReviewQueueManager:
    """Lists and resolves admin review queue items for a tenant."""

    def __init__(
        self,
        store: IdentityStore,
        audit: AuditSink,
        cache: RecognitionCache | None = None,
        reject_penalty: int = 30,
        redaction_salt: str = "recognition-audit",
    ):
        """Initialize manager.

        Args:
            store: Identity store adapter
            audit: Fire-and-forget audit sink
            cache: Recognition cache to invalidate after profile changes
            reject_penalty: Confidence removed from a rejected source profile
            redaction_salt: Salt for profile ids written to the audit log
        """
        self._store = store
        self._audit = audit
        self._cache = cache
        self._reject_penalty = reject_penalty
        self._salt = redaction_salt

    async def list_queue(
        self,
        tenant_id: str,
        status: QueueStatus = QueueStatus.PENDING,
        limit: int = 20,
        offset: int = 0,
    ) -> ReviewQueuePage:
        """Page of queue items joined with suggestions and profiles.

        Raises:
            InvalidInputError: limit outside 1..100 or negative offset
        """
        if not 1 <= limit <= MAX_PAGE_SIZE or offset < 0:
            msg = f"limit must be 1-{MAX_PAGE_SIZE} and offset non-negative"
            raise InvalidInputError(msg)

        items, total = await self._store.list_queue_items(tenant_id, status, limit, offset)
        entries = [await self._join(tenant_id, item) for item in items]
        return ReviewQueuePage(
            items=entries,
            pagination=Pagination(
                total=total,
                limit=limit,
                offset=offset,
                has_more=offset + len(items) < total,
            ),
        )

    async def _join(self, tenant_id: str, item: ReviewQueueItem) -> ReviewQueueEntry:
        suggestion = await self._store.get_suggestion(item.suggestion_id, tenant_id)
        source = target = None
        if suggestion:
            source = await self._store.get_profile(suggestion.source_profile_id, tenant_id)
            if suggestion.target_profile_id:
                target = await self._store.get_profile(suggestion.target_profile_id, tenant_id)
        return ReviewQueueEntry(
            item=item,
            suggestion=suggestion,
            source_profile=ProfileSummary.from_record(source) if source else None,
            target_profile=ProfileSummary.from_record(target) if target else None,
        )

    async def apply(self, tenant_id: str, action: ReviewAction) -> ReviewActionResult:
        """Dispatch a tagged review action."""
        if isinstance(action, ApproveAction):
            return await self.approve(tenant_id, action.queue_item_id, action.reviewed_by)
        if isinstance(action, RejectAction):
            return await self.reject(tenant_id, action.queue_item_id, action.reviewed_by)
        if isinstance(action, MergeAction):
            return await self.merge(
                tenant_id, action.queue_item_id, action.merge_options, action.reviewed_by
            )
        msg = f"Unsupported review action: {type(action).__name__}"
        raise InvalidInputError(msg)

    async def approve(
        self,
        tenant_id: str,
        queue_item_id: str,
        reviewed_by: str | None = None,
    ) -> ReviewActionResult:
        """Approve the suggestion behind a queue item.

        A member_link suggestion also links the source profile to the
        member, marks it verified and sets its confidence to 100.
        """
        item, suggestion = await self._load_pending(tenant_id, queue_item_id)
        now = datetime.now(UTC)
        changes = self._close(item, suggestion, ReviewOutcome.APPROVED, reviewed_by, now)

        if suggestion.match_type == MatchType.MEMBER_LINK and suggestion.target_member_id:
            source = await self._require_profile(tenant_id, suggestion.source_profile_id)
            changes.profile_updates.append(
                (
                    source.id,
                    {
                        "member_id": suggestion.target_member_id,
                        "status": ProfileStatus.VERIFIED,
                        "confidence": 100,
                        "verified_at": now,
                    },
                )
            )

        await self._commit(tenant_id, changes)
        self._emit(tenant_id, AuditAction.REVIEW_APPROVED, suggestion, reviewed_by)
        logger.info("review approved", tenant_id=tenant_id, queue_item_id=item.id)
        return ReviewActionResult(success=True, message="Match approved successfully")

    async def reject(
        self,
        tenant_id: str,
        queue_item_id: str,
        reviewed_by: str | None = None,
    ) -> ReviewActionResult:
        """Reject the suggestion and lower the source profile's confidence."""
        item, suggestion = await self._load_pending(tenant_id, queue_item_id)
        now = datetime.now(UTC)
        changes = self._close(item, suggestion, ReviewOutcome.REJECTED, reviewed_by, now)

        source = await self._store.get_profile(suggestion.source_profile_id, tenant_id)
        if source is not None:
            changes.profile_updates.append(
                (source.id, {"confidence": max(0, source.confidence - self._reject_penalty)})
            )

        await self._commit(tenant_id, changes)
        self._emit(tenant_id, AuditAction.REVIEW_REJECTED, suggestion, reviewed_by)
        logger.info("review rejected", tenant_id=tenant_id, queue_item_id=item.id)
        return ReviewActionResult(success=True, message="Match rejected")

    async def merge(
        self,
        tenant_id: str,
        queue_item_id: str,
        options: MergeOptions,
        reviewed_by: str | None = None,
    ) -> ReviewActionResult:
        """Merge the source profile into the target and close the item.

        Raises:
            InvalidInputError: Source and target are the same profile, or
                either was already merged away
            NotFoundError: Item, suggestion or either profile is missing
            AlreadyProcessedError: Item already completed
        """
        if options.source_profile_id == options.target_profile_id:
            msg = "Cannot merge a profile into itself"
            raise InvalidInputError(msg)

        item, suggestion = await self._load_pending(tenant_id, queue_item_id)
        source = await self._require_profile(tenant_id, options.source_profile_id)
        target = await self._require_profile(tenant_id, options.target_profile_id)
        for profile in (source, target):
            if profile.status == ProfileStatus.MERGED:
                msg = f"Profile {profile.id} was already merged"
                raise InvalidInputError(msg)

        now = datetime.now(UTC)
        target_fields = merge_profile_fields(source, target, options.keep_data)
        original = [*target.original_profiles]
        for pid in (source.id, *source.original_profiles):
            if pid not in original:
                original.append(pid)
        target_fields.update(
            status=ProfileStatus.VERIFIED,
            verified_at=now,
            original_profiles=original,
        )

        changes = self._close(
            item,
            suggestion,
            ReviewOutcome.MERGED,
            reviewed_by,
            now,
            notes=f"Profiles merged: {source.id} -> {target.id}",
            result={"merged_into": target.id, "keep_data": options.keep_data.value},
        )
        changes.profile_updates.extend(
            [
                (target.id, target_fields),
                (source.id, {"status": ProfileStatus.MERGED, "merged_into": target.id}),
            ]
        )
        changes.repoint = (source.id, target.id)

        await self._commit(tenant_id, changes)
        self._emit(tenant_id, AuditAction.REVIEW_MERGED, suggestion, reviewed_by, extra=target.id)
        logger.info(
            "profiles merged",
            tenant_id=tenant_id,
            queue_item_id=item.id,
            keep_data=options.keep_data.value,
        )
        return ReviewActionResult(
            success=True,
            message="Profiles merged successfully",
            merged_profile_id=target.id,
        )

    async def _load_pending(
        self,
        tenant_id: str,
        queue_item_id: str,
    ) -> tuple[ReviewQueueItem, ProfileMatchSuggestion]:
        item = await self._store.get_queue_item(queue_item_id, tenant_id)
        if item is None:
            msg = f"Review item {queue_item_id} not found"
            raise NotFoundError(msg)
        if item.status == QueueStatus.COMPLETED:
            msg = f"Review item {queue_item_id} has already been processed"
            raise AlreadyProcessedError(msg)

        suggestion = await self._store.get_suggestion(item.suggestion_id, tenant_id)
        if suggestion is None:
            msg = f"Match suggestion {item.suggestion_id} not found"
            raise NotFoundError(msg)
        if suggestion.review_status != ReviewStatus.PENDING:
            msg = f"Match suggestion {suggestion.id} has already been reviewed"
            raise AlreadyProcessedError(msg)
        return item, suggestion

    async def _require_profile(self, tenant_id: str, profile_id: str) -> IdentityRecord:
        profile = await self._store.get_profile(profile_id, tenant_id)
        if profile is None:
            msg = f"Profile {profile_id} not found"
            raise NotFoundError(msg)
        return profile

    @staticmethod
    def _close(
        item: ReviewQueueItem,
        suggestion: ProfileMatchSuggestion,
        outcome: ReviewOutcome,
        reviewed_by: str | None,
        now: datetime,
        notes: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> ChangeSet:
        """Change set closing both the suggestion and its queue item."""
        review_status = (
            ReviewStatus.REJECTED if outcome == ReviewOutcome.REJECTED else ReviewStatus.APPROVED
        )
        processing_result = {"action": outcome.value, "admin_review_id": item.id, **(result or {})}
        return ChangeSet(
            suggestion_updates=[
                (
                    suggestion.id,
                    {
                        "review_status": review_status,
                        "reviewed_by": reviewed_by,
                        "reviewed_at": now,
                        "processing_result": processing_result,
                    },
                )
            ],
            queue_updates=[
                (
                    item.id,
                    {
                        "status": QueueStatus.COMPLETED,
                        "review_action": outcome,
                        "review_notes": notes,
                        "reviewed_by": reviewed_by,
                        "reviewed_at": now,
                    },
                )
            ],
        )

    async def _commit(self, tenant_id: str, changes: ChangeSet) -> None:
        await self._store.apply_changes(tenant_id, changes)
        if self._cache is not None:
            self._cache.invalidate_tenant(tenant_id)

    def _emit(
        self,
        tenant_id: str,
        action: AuditAction,
        suggestion: ProfileMatchSuggestion,
        reviewed_by: str | None,
        extra: str | None = None,
    ) -> None:
        ids = [suggestion.source_profile_id]
        if suggestion.target_profile_id:
            ids.append(suggestion.target_profile_id)
        if extra and extra not in ids:
            ids.append(extra)
        self._audit.record(
            AuditEvent(
                tenant_id=tenant_id,
                action=action,
                confidence=suggestion.confidence,
                candidate_ids_redacted=[redact_identifier(i, self._salt) for i in ids],
                actor=reviewed_by,
            )
        )
