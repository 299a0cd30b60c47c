"""RecognitionEngine decides how much of a known profile a form may see.

Recognition pipeline (in order):
1. Validate tenant and identifying fields
2. Cache lookup (keystroke-driven repeats)
3. Candidate lookup in the identity store (bounded by a timeout)
4. Per-field fuzzy scoring and weighted confidence
5. Tier decision: auto_fill / confirm_identity / admin_review / create_new
"""

import asyncio
import re
from datetime import UTC, datetime

import structlog

from src.events.types import AuditAction, AuditEvent
from src.identity.cache import RecognitionCache
from src.identity.confidence import calculate_confidence
from src.identity.errors import DependencyUnavailableError, InvalidInputError, NotFoundError
from src.identity.fuzzy_matcher import FieldMatcher
from src.identity.masking import mask_family_member, mask_profile, redact_identifier
from src.identity.schemas import (
    ChangeSet,
    ConfirmMatchResult,
    IdentityRecord,
    MatchCandidate,
    MatchType,
    ProfileMatchSuggestion,
    ProfileStatus,
    QueuePriority,
    RecognitionInput,
    RecognitionOptions,
    RecognitionResult,
    RecognitionTier,
    ReviewQueueItem,
)
from src.identity.store import AuditSink, IdentityStore

logger = structlog.get_logger()

AUTO_FILL_THRESHOLD = 98
CONFIRM_THRESHOLD = 85
REVIEW_THRESHOLD = 70

# Suggestions above this confidence are triaged first
HIGH_PRIORITY_CONFIDENCE = 80

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")

# Lookup failures that degrade to create_new instead of failing the form
STORE_FAILURES = (TimeoutError, ConnectionError, DependencyUnavailableError)

_TIER_ACTIONS = {
    RecognitionTier.AUTO_FILL: AuditAction.AUTO_FILL,
    RecognitionTier.CONFIRM_IDENTITY: AuditAction.CONFIRM_IDENTITY,
    RecognitionTier.ADMIN_REVIEW: AuditAction.ADMIN_REVIEW,
    RecognitionTier.CREATE_NEW: AuditAction.CREATE_NEW,
}


def classify_confidence(confidence: int) -> RecognitionTier:
    """Map a 0-100 confidence to its recognition tier.

    Tiers are contiguous: [98, 100] auto_fill, [85, 97] confirm_identity,
    [70, 84] admin_review, [0, 69] create_new.
    """
    if confidence >= AUTO_FILL_THRESHOLD:
        return RecognitionTier.AUTO_FILL
    if confidence >= CONFIRM_THRESHOLD:
        return RecognitionTier.CONFIRM_IDENTITY
    if confidence >= REVIEW_THRESHOLD:
        return RecognitionTier.ADMIN_REVIEW
    return RecognitionTier.CREATE_NEW


def validate_tenant_id(tenant_id: str | None) -> str:
    """Reject missing or malformed tenant ids. Never defaults."""
    if not tenant_id or not TENANT_ID_PATTERN.match(tenant_id):
        msg = "A valid tenant id is required"
        raise InvalidInputError(msg)
    return tenant_id


class RecognitionEngine:
    """Orchestrates progressive recognition for one request at a time.

    The engine holds no per-request state; the only shared state is the
    injected cache. The identity store and audit sink are collaborators
    behind protocols, so the engine never assumes a storage engine.
    """

    def __init__(
        self,
        store: IdentityStore,
        cache: RecognitionCache,
        audit: AuditSink,
        matcher: FieldMatcher | None = None,
        store_timeout_seconds: float = 2.0,
        redaction_salt: str = "recognition-audit",
        confirm_boost: int = 10,
        decline_penalty: int = 20,
    ):
        """Initialize engine with collaborators.

        Args:
            store: Identity store adapter
            cache: Recognition result cache
            audit: Fire-and-forget audit sink
            matcher: Per-field comparator (default FieldMatcher)
            store_timeout_seconds: Candidate lookups slower than this
                degrade to create_new
            redaction_salt: Salt for candidate ids written to the audit log
            confirm_boost: Confidence added when a submitter confirms
            decline_penalty: Confidence removed when a submitter declines
        """
        self._store = store
        self._cache = cache
        self._audit = audit
        self._matcher = matcher or FieldMatcher()
        self._timeout = store_timeout_seconds
        self._salt = redaction_salt
        self._confirm_boost = confirm_boost
        self._decline_penalty = decline_penalty

    async def recognize(
        self,
        tenant_id: str,
        query: RecognitionInput,
        options: RecognitionOptions | None = None,
    ) -> RecognitionResult:
        """Recognize a (possibly partial) form submission.

        Args:
            tenant_id: Tenant the form belongs to
            query: Normalized recognition input
            options: Caller options (max matches, family, privacy)

        Returns:
            RecognitionResult for the best candidate, or create_new

        Raises:
            InvalidInputError: Missing tenant id or identifying field
        """
        validate_tenant_id(tenant_id)
        if not query.has_identifier:
            msg = "At least one of email, phone or first name is required"
            raise InvalidInputError(msg)
        options = options or RecognitionOptions()

        key = self._cache.make_key(tenant_id, query, options)
        cached = self._cache.get_entry(key)
        if cached is not None:
            logger.debug(
                "recognition cache hit", tenant_id=tenant_id, tier=cached.result.tier.value
            )
            self._emit(
                tenant_id,
                _TIER_ACTIONS[cached.result.tier],
                cached.audit_confidence,
                list(cached.audit_ids),
                cache_hit=True,
            )
            return cached.result

        try:
            records = await asyncio.wait_for(
                self._store.find_candidates(tenant_id, query),
                timeout=self._timeout,
            )
        except STORE_FAILURES as e:
            logger.warning(
                "recognition degraded",
                tenant_id=tenant_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            self._emit(tenant_id, AuditAction.RECOGNITION_DEGRADED, None, [])
            return RecognitionResult(tier=RecognitionTier.CREATE_NEW, degraded=True)

        candidates = self.score_candidates(tenant_id, query, records)[: options.max_matches]
        result = await self._build_result(tenant_id, candidates, options)

        audit_ids = [redact_identifier(c.record.id, self._salt) for c in candidates]
        audit_confidence = result.confidence if candidates else None
        self._cache.set(key, tenant_id, result, tuple(audit_ids), audit_confidence)
        self._emit(tenant_id, _TIER_ACTIONS[result.tier], audit_confidence, audit_ids)
        logger.info(
            "recognition completed",
            tenant_id=tenant_id,
            tier=result.tier.value,
            confidence=result.confidence,
            candidates=len(records),
        )
        return result

    def score_candidates(
        self,
        tenant_id: str,
        query: RecognitionInput,
        records: list[IdentityRecord],
    ) -> list[MatchCandidate]:
        """Score records against an input, best first.

        Records from another tenant, merged records, and records sharing
        no field with the input are dropped. Ties are broken by id so
        the order is deterministic.
        """
        scored: list[MatchCandidate] = []
        for record in records:
            if record.tenant_id != tenant_id or record.status == ProfileStatus.MERGED:
                continue
            field_scores = self._matcher.score_fields(query, record)
            outcome = calculate_confidence(field_scores)
            if outcome is None:
                continue
            scored.append(
                MatchCandidate(
                    record=record,
                    field_scores=field_scores,
                    confidence=outcome.confidence,
                    match_reasons=outcome.match_reasons,
                )
            )
        scored.sort(key=lambda c: (-c.confidence, c.record.id))
        return scored

    async def _build_result(
        self,
        tenant_id: str,
        candidates: list[MatchCandidate],
        options: RecognitionOptions,
    ) -> RecognitionResult:
        if not candidates:
            return RecognitionResult(tier=RecognitionTier.CREATE_NEW)

        top = candidates[0]
        tier = classify_confidence(top.confidence)
        record = top.record

        if tier == RecognitionTier.AUTO_FILL:
            family = []
            if options.include_family and record.family_id:
                members = await self._find_family(tenant_id, record)
                family = [mask_family_member(m, options.respect_privacy) for m in members]
            return RecognitionResult(
                tier=tier,
                confidence=top.confidence,
                match_reasons=top.match_reasons,
                masked_profile=mask_profile(record, options.respect_privacy),
                family_members=family,
                alternatives=self._alternatives(candidates, options),
                display_message=_welcome_message(record),
            )

        if tier == RecognitionTier.CONFIRM_IDENTITY:
            return RecognitionResult(
                tier=tier,
                confidence=top.confidence,
                match_reasons=top.match_reasons,
                masked_profile=mask_profile(record, options.respect_privacy),
                alternatives=self._alternatives(candidates, options),
                display_message="Is this you? Please confirm before we use these details.",
            )

        if tier == RecognitionTier.ADMIN_REVIEW:
            item_id = await self._queue_for_review(tenant_id, top, options)
            return RecognitionResult(
                tier=tier,
                confidence=top.confidence,
                match_reasons=top.match_reasons,
                review_queue_item_id=item_id,
                display_message="Thanks! Our team will review your details shortly.",
            )

        return RecognitionResult(
            tier=tier,
            confidence=top.confidence,
            match_reasons=top.match_reasons,
        )

    def _alternatives(self, candidates: list[MatchCandidate], options: RecognitionOptions):
        """Masked runners-up that would disclose on their own."""
        return [
            mask_profile(c.record, options.respect_privacy)
            for c in candidates[1:]
            if classify_confidence(c.confidence)
            in (RecognitionTier.AUTO_FILL, RecognitionTier.CONFIRM_IDENTITY)
        ]

    async def _find_family(self, tenant_id: str, record: IdentityRecord) -> list[IdentityRecord]:
        try:
            members = await asyncio.wait_for(
                self._store.find_family_members(tenant_id, record.family_id, record.id),
                timeout=self._timeout,
            )
        except STORE_FAILURES as e:
            logger.warning("family lookup failed", tenant_id=tenant_id, error=str(e))
            return []
        return [m for m in members if m.tenant_id == tenant_id]

    async def _queue_for_review(
        self,
        tenant_id: str,
        top: MatchCandidate,
        options: RecognitionOptions,
    ) -> str | None:
        """Create (or reuse) a pending suggestion and its queue item.

        Returns:
            Queue item id, or None if queueing failed
        """
        record = top.record
        if options.submission_profile_id and options.submission_profile_id != record.id:
            source_id = options.submission_profile_id
            target_id = record.id
        else:
            source_id = record.id
            target_id = None

        try:
            suggestion = await self._store.find_pending_suggestion(tenant_id, source_id)
            if suggestion is not None:
                existing = await self._store.find_queue_item_for_suggestion(
                    suggestion.id, tenant_id
                )
                if existing is not None:
                    return existing.id
            else:
                suggestion = ProfileMatchSuggestion(
                    tenant_id=tenant_id,
                    source_profile_id=source_id,
                    target_profile_id=target_id,
                    target_member_id=record.member_id,
                    match_type=MatchType.MEMBER_LINK if record.member_id else MatchType.PROFILE_MERGE,
                    confidence=top.confidence,
                    match_reasons=top.match_reasons,
                )
                stored_id = await self._store.create_suggestion(suggestion)
                if stored_id != suggestion.id:
                    # A concurrent call queued this source first
                    existing = await self._store.find_queue_item_for_suggestion(
                        stored_id, tenant_id
                    )
                    if existing is not None:
                        return existing.id
                    suggestion = suggestion.model_copy(update={"id": stored_id})

            item = ReviewQueueItem(
                tenant_id=tenant_id,
                suggestion_id=suggestion.id,
                title=f"Possible match for {record.display_name or 'unnamed profile'}",
                description=f"{top.confidence}% confidence: {', '.join(top.match_reasons)}",
                priority=(
                    QueuePriority.HIGH
                    if top.confidence > HIGH_PRIORITY_CONFIDENCE
                    else QueuePriority.MEDIUM
                ),
            )
            item_id = await self._store.create_queue_item(item)
        except STORE_FAILURES as e:
            logger.error("review queueing failed", tenant_id=tenant_id, error=str(e))
            return None

        logger.info(
            "match queued for review",
            tenant_id=tenant_id,
            queue_item_id=item_id,
            confidence=top.confidence,
        )
        return item_id

    async def confirm_match(
        self,
        tenant_id: str,
        profile_id: str,
        *,
        confirmed: bool,
        submission_id: str | None = None,
        feedback: str | None = None,
    ) -> ConfirmMatchResult:
        """Apply a submitter's answer to "is this you?".

        Args:
            tenant_id: Tenant the profile belongs to
            profile_id: Profile shown in the confirm_identity preview
            confirmed: True if the submitter said yes
            submission_id: Form submission to link on confirmation
            feedback: Optional free-text reason (not stored verbatim)

        Returns:
            ConfirmMatchResult with the masked profile on confirmation

        Raises:
            NotFoundError: Profile does not exist in the tenant
        """
        validate_tenant_id(tenant_id)
        profile = await self._store.get_profile(profile_id, tenant_id)
        if profile is None or profile.status == ProfileStatus.MERGED:
            msg = f"Profile {profile_id} not found"
            raise NotFoundError(msg)

        now = datetime.now(UTC)
        if confirmed:
            fields = {
                "status": ProfileStatus.VERIFIED,
                "confidence": min(100, profile.confidence + self._confirm_boost),
                "verified_at": now,
            }
            updated = profile.model_copy(update=fields)
            changes = ChangeSet(
                profile_updates=[(profile.id, fields)],
                submission_link=(submission_id, updated) if submission_id else None,
            )
        else:
            fields = {"confidence": max(0, profile.confidence - self._decline_penalty)}
            updated = profile.model_copy(update=fields)
            changes = ChangeSet(profile_updates=[(profile.id, fields)])

        await self._store.apply_changes(tenant_id, changes)
        self._cache.invalidate_tenant(tenant_id)
        self._emit(
            tenant_id,
            AuditAction.MATCH_CONFIRMED if confirmed else AuditAction.MATCH_DECLINED,
            updated.confidence,
            [redact_identifier(profile.id, self._salt)],
            metadata={"feedback_provided": bool(feedback)},
        )

        if confirmed:
            return ConfirmMatchResult(
                status="confirmed",
                message="Thanks for confirming! Your details have been linked.",
                profile=mask_profile(updated),
            )
        return ConfirmMatchResult(
            status="rejected",
            message="Thanks for letting us know. We'll create a new profile for you.",
            create_new_profile=True,
        )

    def _emit(
        self,
        tenant_id: str,
        action: AuditAction,
        confidence: int | None,
        redacted_ids: list[str],
        cache_hit: bool = False,
        metadata: dict | None = None,
    ) -> None:
        self._audit.record(
            AuditEvent(
                tenant_id=tenant_id,
                action=action,
                confidence=confidence,
                candidate_ids_redacted=redacted_ids,
                cache_hit=cache_hit,
                metadata=metadata or {},
            )
        )


def _welcome_message(record: IdentityRecord) -> str:
    if record.first_name:
        return f"Welcome back, {record.first_name}! We've filled in your details."
    return "Welcome back! We've filled in your details."
