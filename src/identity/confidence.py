"""Weighted confidence calculation for progressive recognition.

Combines per-field similarity scores into one 0-100 confidence:
- Email and phone are the strongest identity signals
- Date of birth is a strong corroborating signal
- Names are moderate, address sub-fields individually weak
- Only fields with signal on both sides count (absent != mismatched)
- An evidence ceiling keeps a lone weak field out of the high tiers
"""

from pydantic import BaseModel, Field

from src.identity.fuzzy_matcher import MATCH_FIELDS

FIELD_WEIGHTS: dict[str, int] = {
    "email": 50,
    "phone": 45,
    "date_of_birth": 40,
    "address": 25,
    "first_name": 20,
    "last_name": 20,
    "zip_code": 15,
    "city": 10,
    "state": 5,
}

# Total weight of signal needed before confidence is uncapped
FULL_EVIDENCE_WEIGHT = 50

# Score at or above which a field counts as agreeing for match reasons
STRONG_SCORE = 0.8

_FIELD_LABELS = {
    "email": "email",
    "phone": "phone",
    "first_name": "first name",
    "last_name": "last name",
    "address": "address",
    "city": "city",
    "state": "state",
    "zip_code": "zip code",
    "date_of_birth": "date of birth",
}


class ConfidenceResult(BaseModel):
    """Aggregate confidence for one candidate."""

    confidence: int = Field(ge=0, le=100, description="Aggregate confidence (0-100)")
    match_reasons: list[str] = Field(default_factory=list)


def calculate_confidence(field_scores: dict[str, float]) -> ConfidenceResult | None:
    """Aggregate per-field similarities into a confidence value.

    confidence = 100 * (weighted mean of scores) * min(1, signal / 50)

    The evidence factor depends only on which fields carry signal, never
    on their scores, so raising any single score never lowers the result.

    Args:
        field_scores: Field name -> similarity in [0, 1], fields with
            signal only

    Returns:
        ConfidenceResult, or None when no field has signal (the candidate
        must be excluded rather than scored 0)
    """
    signal = {f: s for f, s in field_scores.items() if f in FIELD_WEIGHTS}
    if not signal:
        return None

    total_weight = sum(FIELD_WEIGHTS[f] for f in signal)
    weighted = sum(FIELD_WEIGHTS[f] * max(0.0, min(1.0, s)) for f, s in signal.items())
    evidence = min(1.0, total_weight / FULL_EVIDENCE_WEIGHT)

    confidence = round(100 * (weighted / total_weight) * evidence)
    confidence = max(0, min(100, confidence))

    return ConfidenceResult(
        confidence=confidence,
        match_reasons=describe_matches(signal),
    )


def describe_matches(field_scores: dict[str, float]) -> list[str]:
    """Build human-readable reasons for the fields that agreed.

    Deterministic: reasons follow the fixed field order.
    """
    reasons: list[str] = []
    for field in MATCH_FIELDS:
        score = field_scores.get(field)
        if score is None:
            continue
        reason = _describe_field(field, score)
        if reason:
            reasons.append(reason)

    names_agree = all(
        field_scores.get(f, 0.0) >= STRONG_SCORE for f in ("first_name", "last_name")
    )
    if names_agree and field_scores.get("zip_code", 0.0) >= STRONG_SCORE:
        reasons.append("name and zip code match")
    return reasons


def _describe_field(field: str, score: float) -> str | None:
    label = _FIELD_LABELS[field]
    if score >= 1.0:
        return f"{label} matches"
    if field == "email":
        if score >= STRONG_SCORE:
            return "email is a variation of a known address"
        if score > 0:
            return "email username matches"
        return None
    if score < STRONG_SCORE:
        return None
    if field == "address":
        return "address matches apart from unit"
    if field == "zip_code":
        return "zip code prefix matches"
    return f"{label} is similar"
