"""Progressive recognition schemas.

Defines identity records, recognition input/output, and the review
workflow records (match suggestions, queue items, review actions).
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.identity.normalizer import (
    clean_text,
    normalize_email,
    normalize_phone,
    normalize_zip,
)


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class ProfileStatus(str, Enum):
    """Lifecycle state of a stored person profile."""

    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    DUPLICATE = "duplicate"
    MERGED = "merged"


class RecognitionTier(str, Enum):
    """Decision taken for a recognition call."""

    AUTO_FILL = "auto_fill"
    CONFIRM_IDENTITY = "confirm_identity"
    ADMIN_REVIEW = "admin_review"
    CREATE_NEW = "create_new"


class MatchType(str, Enum):
    """What approving a suggestion would do."""

    MEMBER_LINK = "member_link"
    PROFILE_MERGE = "profile_merge"
    FAMILY_ADDITION = "family_addition"


class ReviewStatus(str, Enum):
    """Review state of a match suggestion. Only moves forward."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class QueueStatus(str, Enum):
    """Work state of an admin review queue item."""

    PENDING = "pending"
    COMPLETED = "completed"


class QueuePriority(str, Enum):
    """Triage priority of a queue item."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReviewOutcome(str, Enum):
    """Action recorded on a completed queue item."""

    APPROVED = "approved"
    REJECTED = "rejected"
    MERGED = "merged"


class KeepData(str, Enum):
    """Which profile's fields survive a merge."""

    SOURCE = "source"
    TARGET = "target"
    MERGE = "merge"


# Fields copied between profiles during a merge
PROFILE_DATA_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "date_of_birth",
    "address",
    "city",
    "state",
    "zip_code",
)


class IdentityRecord(BaseModel):
    """A known person profile owned by the identity store."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=_new_id, description="Profile identifier")
    tenant_id: str = Field(description="Church (tenant) owning the profile")
    member_id: str | None = Field(default=None, description="Linked member record")
    family_id: str | None = Field(default=None, description="Household reference")
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    relationship: str | None = Field(
        default=None, description="Role within the household (spouse, child...)"
    )
    status: ProfileStatus = Field(default=ProfileStatus.UNVERIFIED)
    confidence: int = Field(
        default=0, ge=0, le=100, description="Confidence in profile accuracy"
    )
    merged_into: str | None = Field(
        default=None, description="Surviving profile when status is merged"
    )
    original_profiles: list[str] = Field(
        default_factory=list, description="Profile ids merged into this one"
    )
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    verified_at: datetime | None = None

    @property
    def display_name(self) -> str:
        """First and last name joined, or empty string."""
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class RecognitionInput(BaseModel):
    """Partially filled identity fields typed into a public form.

    Values are normalized on construction: email lowercased/trimmed,
    phone and zip reduced to digits (zip truncated to 10), text trimmed,
    blank strings dropped.
    """

    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    date_of_birth: date | None = None

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v: Any) -> str | None:
        return normalize_email(v) if isinstance(v, str) else v

    @field_validator("phone", mode="before")
    @classmethod
    def _normalize_phone(cls, v: Any) -> str | None:
        if isinstance(v, int):
            v = str(v)
        return normalize_phone(v) if isinstance(v, str) else v

    @field_validator("zip_code", mode="before")
    @classmethod
    def _normalize_zip(cls, v: Any) -> str | None:
        if isinstance(v, int):
            v = str(v)
        return normalize_zip(v) if isinstance(v, str) else v

    @field_validator(
        "first_name", "last_name", "address", "city", "state", mode="before"
    )
    @classmethod
    def _trim(cls, v: Any) -> str | None:
        return clean_text(v) if isinstance(v, str) else v

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _blank_date(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        if isinstance(v, datetime):
            return v.date()
        return v

    @property
    def has_identifier(self) -> bool:
        """True if at least one of email, phone or first name is present."""
        return bool(self.email or self.phone or self.first_name)


class RecognitionOptions(BaseModel):
    """Caller options for a recognition call."""

    max_matches: int = Field(default=1, description="Candidates to return (1-5)")
    include_family: bool = Field(default=True)
    respect_privacy: bool = Field(default=True)
    submission_profile_id: str | None = Field(
        default=None,
        description="Submitter's provisional profile, used as suggestion source",
    )

    @field_validator("max_matches", mode="before")
    @classmethod
    def _clamp_max_matches(cls, v: Any) -> int:
        if v is None:
            return 1
        return max(1, min(int(v), 5))


class MatchCandidate(BaseModel):
    """A stored record scored against one recognition input."""

    record: IdentityRecord
    field_scores: dict[str, float] = Field(
        description="Per-field similarity, only fields with signal on both sides"
    )
    confidence: int = Field(ge=0, le=100)
    match_reasons: list[str] = Field(default_factory=list)


class MaskedProfile(BaseModel):
    """Privacy-safe view of a profile shown to an unauthenticated submitter."""

    profile_id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = Field(default=None, description="Partially redacted email")
    phone: str | None = Field(default=None, description="Partially redacted phone")
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    date_of_birth: date | None = None


class FamilyMember(BaseModel):
    """Masked household member returned alongside an auto-filled profile."""

    profile_id: str
    member_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    relationship: str = Field(default="family_member")
    date_of_birth: date | None = None
    email: str | None = Field(default=None, description="Partially redacted email")
    phone: str | None = Field(default=None, description="Partially redacted phone")


class RecognitionResult(BaseModel):
    """Outcome of one recognition call."""

    tier: RecognitionTier
    confidence: int = Field(default=0, ge=0, le=100)
    match_reasons: list[str] = Field(default_factory=list)
    masked_profile: MaskedProfile | None = None
    family_members: list[FamilyMember] = Field(default_factory=list)
    alternatives: list[MaskedProfile] = Field(
        default_factory=list,
        description="Other candidates that individually reach a disclosing tier",
    )
    review_queue_item_id: str | None = None
    display_message: str | None = None
    degraded: bool = Field(
        default=False,
        description="True when the identity store could not be checked",
    )

    @property
    def is_recognized(self) -> bool:
        """True when matched data may be shown to the submitter."""
        return self.tier in (RecognitionTier.AUTO_FILL, RecognitionTier.CONFIRM_IDENTITY)


class ConfirmMatchResult(BaseModel):
    """Outcome of a submitter answering "is this you?"."""

    status: Literal["confirmed", "rejected"]
    message: str
    profile: MaskedProfile | None = None
    create_new_profile: bool = False


class ProfileMatchSuggestion(BaseModel):
    """Persisted candidate match awaiting (or after) human adjudication."""

    id: str = Field(default_factory=_new_id)
    tenant_id: str
    source_profile_id: str
    target_profile_id: str | None = None
    target_member_id: str | None = None
    match_type: MatchType
    confidence: int = Field(ge=0, le=100)
    match_reasons: list[str] = Field(default_factory=list)
    suggested_action: str = Field(default="review_required")
    review_status: ReviewStatus = Field(default=ReviewStatus.PENDING)
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    processing_result: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class ReviewQueueItem(BaseModel):
    """Work-queue entry wrapping a match suggestion for triage."""

    id: str = Field(default_factory=_new_id)
    tenant_id: str
    item_type: str = Field(default="profile_match")
    suggestion_id: str
    title: str
    description: str | None = None
    priority: QueuePriority = Field(default=QueuePriority.MEDIUM)
    status: QueueStatus = Field(default=QueueStatus.PENDING)
    review_action: ReviewOutcome | None = None
    review_notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class ProfileSummary(BaseModel):
    """Unmasked profile summary for the authenticated admin context."""

    id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    status: ProfileStatus | None = None
    confidence: int | None = None

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "ProfileSummary":
        return cls(
            id=record.id,
            first_name=record.first_name,
            last_name=record.last_name,
            email=record.email,
            phone=record.phone,
            status=record.status,
            confidence=record.confidence,
        )


class ReviewQueueEntry(BaseModel):
    """Queue item joined with its suggestion and both profiles."""

    item: ReviewQueueItem
    suggestion: ProfileMatchSuggestion | None = None
    source_profile: ProfileSummary | None = None
    target_profile: ProfileSummary | None = None


class Pagination(BaseModel):
    """Offset pagination metadata."""

    total: int
    limit: int
    offset: int
    has_more: bool


class ReviewQueuePage(BaseModel):
    """One page of the admin review queue."""

    items: list[ReviewQueueEntry]
    pagination: Pagination


class MergeOptions(BaseModel):
    """Which two profiles to merge and whose data survives."""

    source_profile_id: str = Field(description="Profile merged away")
    target_profile_id: str = Field(description="Surviving profile")
    keep_data: KeepData = Field(default=KeepData.MERGE)


class ApproveAction(BaseModel):
    """Approve the suggestion behind a queue item."""

    action: Literal["approve"] = "approve"
    queue_item_id: str
    reviewed_by: str | None = None


class RejectAction(BaseModel):
    """Reject the suggestion behind a queue item."""

    action: Literal["reject"] = "reject"
    queue_item_id: str
    reviewed_by: str | None = None


class MergeAction(BaseModel):
    """Merge two profiles and close the queue item."""

    action: Literal["merge"] = "merge"
    queue_item_id: str
    merge_options: MergeOptions
    reviewed_by: str | None = None


ReviewAction = Annotated[
    ApproveAction | RejectAction | MergeAction,
    Field(discriminator="action"),
]


class ReviewActionResult(BaseModel):
    """Outcome of an admin review action."""

    success: bool
    message: str
    merged_profile_id: str | None = None


class ChangeSet(BaseModel):
    """Record mutations that must be applied atomically.

    Used by review and confirmation workflows so that suggestion status,
    queue status, profile updates and dependent re-pointing either all
    happen or none do.
    """

    profile_updates: list[tuple[str, dict[str, Any]]] = Field(default_factory=list)
    suggestion_updates: list[tuple[str, dict[str, Any]]] = Field(default_factory=list)
    queue_updates: list[tuple[str, dict[str, Any]]] = Field(default_factory=list)
    repoint: tuple[str, str] | None = Field(
        default=None, description="(source_profile_id, target_profile_id)"
    )
    submission_link: tuple[str, IdentityRecord] | None = Field(
        default=None, description="(submission_id, profile) to link"
    )
