"""Progressive recognition API endpoints.

Public form endpoints: recognize a partially filled form and record the
submitter's answer to "is this you?".
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from src.api.dependencies import recognition_rate_limit, require_tenant
from src.identity.engine import RecognitionEngine
from src.identity.schemas import (
    ConfirmMatchResult,
    FamilyMember,
    MaskedProfile,
    RecognitionInput,
    RecognitionOptions,
    RecognitionResult,
)

router = APIRouter(
    prefix="/recognition",
    tags=["recognition"],
    dependencies=[Depends(recognition_rate_limit)],
)


class RecognizeRequest(BaseModel):
    """Fields typed so far plus caller options."""

    data: RecognitionInput = Field(description="Identity fields entered on the form")
    options: RecognitionOptions = Field(default_factory=RecognitionOptions)


class RecognizeResponse(BaseModel):
    """Recognition outcome safe to return to an unauthenticated submitter."""

    tier: str = Field(description="auto_fill, confirm_identity, admin_review or create_new")
    recognized: bool = Field(description="True if profile data is included")
    confidence: int = Field(ge=0, le=100)
    match_reasons: list[str] = Field(default_factory=list)
    profile: MaskedProfile | None = None
    family_members: list[FamilyMember] = Field(default_factory=list)
    alternatives: list[MaskedProfile] = Field(default_factory=list)
    review_queue_item_id: str | None = None
    message: str | None = None
    degraded: bool = False

    @classmethod
    def from_result(cls, result: RecognitionResult) -> "RecognizeResponse":
        """Convert an engine result, withholding scores of undisclosed tiers."""
        if not result.is_recognized:
            return cls(
                tier=result.tier.value,
                recognized=False,
                confidence=0,
                review_queue_item_id=result.review_queue_item_id,
                message=result.display_message,
                degraded=result.degraded,
            )
        return cls(
            tier=result.tier.value,
            recognized=True,
            confidence=result.confidence,
            match_reasons=result.match_reasons,
            profile=result.masked_profile,
            family_members=result.family_members,
            alternatives=result.alternatives,
            message=result.display_message,
        )


class ConfirmRequest(BaseModel):
    """Submitter's answer to a confirm_identity preview."""

    profile_id: str = Field(description="Profile shown in the preview")
    confirmed: bool = Field(description="True if the submitter said it is them")
    submission_id: str | None = Field(
        default=None, description="Form submission to link on confirmation"
    )
    feedback: str | None = Field(default=None, max_length=1000)


def get_recognition_engine(request: Request) -> RecognitionEngine:
    """Dependency to get RecognitionEngine from app state."""
    return request.app.state.recognition_engine


@router.post("/recognize", response_model=RecognizeResponse)
async def recognize(
    body: RecognizeRequest,
    tenant_id: str = Depends(require_tenant),
    engine: RecognitionEngine = Depends(get_recognition_engine),
) -> RecognizeResponse:
    """Recognize a returning submitter from partial form input.

    Returns masked profile data only for the auto_fill and
    confirm_identity tiers.
    """
    result = await engine.recognize(tenant_id, body.data, body.options)
    return RecognizeResponse.from_result(result)


@router.post("/confirm", response_model=ConfirmMatchResult)
async def confirm_match(
    body: ConfirmRequest,
    tenant_id: str = Depends(require_tenant),
    engine: RecognitionEngine = Depends(get_recognition_engine),
) -> ConfirmMatchResult:
    """Confirm or decline a suggested identity."""
    return await engine.confirm_match(
        tenant_id,
        body.profile_id,
        confirmed=body.confirmed,
        submission_id=body.submission_id,
        feedback=body.feedback,
    )
