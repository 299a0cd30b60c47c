"""Per-field fuzzy matching using RapidFuzz.

Every comparator returns a similarity in [0, 1], or None when either
side is missing. None means "no signal" and is excluded from scoring,
which is different from a mismatch (0.0).
"""

from collections.abc import Callable
from datetime import date

from rapidfuzz.distance import Levenshtein

from src.identity.nicknames import are_nicknames
from src.identity.normalizer import (
    canonical_gmail,
    fold_case,
    normalize_email,
    normalize_street,
    normalize_zip,
    phone_suffix,
    strip_unit,
)
from src.identity.schemas import IdentityRecord, RecognitionInput

US_STATES = {
    "alabama": "al", "alaska": "ak", "arizona": "az", "arkansas": "ar",
    "california": "ca", "colorado": "co", "connecticut": "ct", "delaware": "de",
    "florida": "fl", "georgia": "ga", "hawaii": "hi", "idaho": "id",
    "illinois": "il", "indiana": "in", "iowa": "ia", "kansas": "ks",
    "kentucky": "ky", "louisiana": "la", "maine": "me", "maryland": "md",
    "massachusetts": "ma", "michigan": "mi", "minnesota": "mn",
    "mississippi": "ms", "missouri": "mo", "montana": "mt", "nebraska": "ne",
    "nevada": "nv", "new hampshire": "nh", "new jersey": "nj",
    "new mexico": "nm", "new york": "ny", "north carolina": "nc",
    "north dakota": "nd", "ohio": "oh", "oklahoma": "ok", "oregon": "or",
    "pennsylvania": "pa", "rhode island": "ri", "south carolina": "sc",
    "south dakota": "sd", "tennessee": "tn", "texas": "tx", "utah": "ut",
    "vermont": "vt", "virginia": "va", "washington": "wa",
    "west virginia": "wv", "wisconsin": "wi", "wyoming": "wy",
    "district of columbia": "dc",
}  # fmt: skip

# Fixed order used for scoring and for match reasons
MATCH_FIELDS = (
    "email",
    "phone",
    "first_name",
    "last_name",
    "address",
    "city",
    "state",
    "zip_code",
    "date_of_birth",
)

NICKNAME_SCORE = 0.9
GMAIL_VARIANT_SCORE = 0.9
EMAIL_LOCAL_PART_SCORE = 0.5
ADDRESS_UNIT_SCORE = 0.8
ZIP_PREFIX_SCORE = 0.8
# Name similarity for misspellings that are too far apart to be "likely same"
NAME_DIVERGED_CAP = 0.7


class FieldMatcher:
    """Scores similarity between two values of the same identity field.

    Email, phone and date of birth are strict (phone and birthdate get no
    partial credit). Names tolerate nicknames and small misspellings.
    Address sub-fields match exactly after normalization, with partial
    credit for unit variations and zip+4 differences.
    """

    def compare_email(self, a: str | None, b: str | None) -> float | None:
        """Compare two email addresses.

        Returns 1.0 for an exact match, 0.9 for the same Gmail mailbox
        written differently, 0.5 for the same local part at another domain.
        """
        a, b = normalize_email(a), normalize_email(b)
        if not a or not b or "@" not in a or "@" not in b:
            return None
        if a == b:
            return 1.0
        if canonical_gmail(a) == canonical_gmail(b):
            return GMAIL_VARIANT_SCORE
        if a.split("@", 1)[0] == b.split("@", 1)[0]:
            return EMAIL_LOCAL_PART_SCORE
        return 0.0

    def compare_phone(self, a: str | None, b: str | None) -> float | None:
        """Compare the last 10 digits of two phone numbers. No partial credit."""
        a, b = phone_suffix(a), phone_suffix(b)
        if not a or not b:
            return None
        return 1.0 if a == b else 0.0

    def compare_name(self, a: str | None, b: str | None) -> float | None:
        """Compare two given names or two surnames.

        Exact (case-insensitive) scores 1.0 and known nicknames 0.9.
        Misspellings within one or two edits score 0.9 / 0.8 as long as
        the edits are a minority of the name; anything further apart is
        capped below the "likely same" range.
        """
        a, b = fold_case(a), fold_case(b)
        if not a or not b:
            return None
        if a == b:
            return 1.0
        if are_nicknames(a, b):
            return NICKNAME_SCORE
        distance = Levenshtein.distance(a, b)
        longest = max(len(a), len(b))
        if distance <= 2 and distance * 2 < longest:
            return 1.0 - 0.1 * distance
        return min(NAME_DIVERGED_CAP, Levenshtein.normalized_similarity(a, b))

    def compare_address(self, a: str | None, b: str | None) -> float | None:
        """Compare street lines, tolerating unit/apartment differences."""
        a, b = normalize_street(a), normalize_street(b)
        if not a or not b:
            return None
        if a == b:
            return 1.0
        stripped_a, stripped_b = strip_unit(a), strip_unit(b)
        if stripped_a and stripped_a == stripped_b:
            return ADDRESS_UNIT_SCORE
        return 0.0

    def compare_city(self, a: str | None, b: str | None) -> float | None:
        a, b = fold_case(a), fold_case(b)
        if not a or not b:
            return None
        return 1.0 if a == b else 0.0

    def compare_state(self, a: str | None, b: str | None) -> float | None:
        """Compare states, treating full names and postal codes as equal."""
        a, b = fold_case(a), fold_case(b)
        if not a or not b:
            return None
        a, b = US_STATES.get(a, a), US_STATES.get(b, b)
        return 1.0 if a == b else 0.0

    def compare_zip(self, a: str | None, b: str | None) -> float | None:
        """Compare postal codes; a shared 5-digit prefix earns partial credit."""
        a, b = normalize_zip(a), normalize_zip(b)
        if not a or not b:
            return None
        if a == b:
            return 1.0
        if len(a) >= 5 and len(b) >= 5 and a[:5] == b[:5]:
            return ZIP_PREFIX_SCORE
        return 0.0

    def compare_date_of_birth(self, a: date | None, b: date | None) -> float | None:
        if a is None or b is None:
            return None
        return 1.0 if a == b else 0.0

    def score_fields(
        self,
        query: RecognitionInput,
        record: IdentityRecord,
    ) -> dict[str, float]:
        """Score every field present on both the input and the record.

        Args:
            query: Normalized recognition input
            record: Stored identity record

        Returns:
            Field name -> similarity, in MATCH_FIELDS order, omitting
            fields without signal
        """
        comparators: dict[str, Callable] = {
            "email": self.compare_email,
            "phone": self.compare_phone,
            "first_name": self.compare_name,
            "last_name": self.compare_name,
            "address": self.compare_address,
            "city": self.compare_city,
            "state": self.compare_state,
            "zip_code": self.compare_zip,
            "date_of_birth": self.compare_date_of_birth,
        }
        scores: dict[str, float] = {}
        for field in MATCH_FIELDS:
            score = comparators[field](getattr(query, field), getattr(record, field))
            if score is not None:
                scores[field] = score
        return scores
