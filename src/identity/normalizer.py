"""Normalization helpers for identity fields.

Applied to form input before matching and to stored records before
comparison, so both sides are compared in the same canonical form.
"""

import re

_NON_DIGITS = re.compile(r"\D")
_NON_WORD = re.compile(r"[^\w\s#]")
_WHITESPACE = re.compile(r"\s+")

# Common street suffix abbreviations (USPS style)
STREET_SUFFIXES = {
    "street": "st",
    "avenue": "ave",
    "road": "rd",
    "drive": "dr",
    "lane": "ln",
    "boulevard": "blvd",
    "court": "ct",
    "circle": "cir",
    "place": "pl",
    "terrace": "ter",
    "parkway": "pkwy",
    "highway": "hwy",
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
}

UNIT_DESIGNATORS = {"apt", "apartment", "unit", "suite", "ste", "#", "lot"}

MAX_ZIP_LENGTH = 10


def clean_text(value: str | None) -> str | None:
    """Trim a text value, mapping blank strings to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address."""
    value = clean_text(value)
    return value.lower() if value else None


def normalize_phone(value: str | None) -> str | None:
    """Reduce a phone number to its digits."""
    if value is None:
        return None
    digits = _NON_DIGITS.sub("", value)
    return digits or None


def normalize_zip(value: str | None) -> str | None:
    """Reduce a postal code to digits, truncated to 10 characters."""
    if value is None:
        return None
    digits = _NON_DIGITS.sub("", value)[:MAX_ZIP_LENGTH]
    return digits or None


def phone_suffix(value: str | None) -> str | None:
    """Last 10 digits of a phone number, or None if it is too short.

    A partially typed number carries no usable signal, and the country
    prefix is dropped so "+1 555 123 4567" equals "555-123-4567".
    """
    digits = normalize_phone(value)
    if not digits or len(digits) < 10:
        return None
    return digits[-10:]


def canonical_gmail(email: str) -> str:
    """Collapse Gmail aliases (dots, +tags, googlemail) to one mailbox."""
    local, _, domain = email.partition("@")
    if domain not in ("gmail.com", "googlemail.com"):
        return email
    local = local.split("+", 1)[0].replace(".", "")
    return f"{local}@gmail.com"


def normalize_street(value: str | None) -> str | None:
    """Lowercase, strip punctuation and abbreviate suffixes of a street line."""
    value = clean_text(value)
    if not value:
        return None
    value = _NON_WORD.sub(" ", value.lower())
    tokens = [STREET_SUFFIXES.get(tok, tok) for tok in value.split()]
    return " ".join(tokens) or None


def strip_unit(street: str) -> str:
    """Drop apartment/unit designators and their numbers from a street line."""
    tokens = street.replace("#", " # ").split()
    kept: list[str] = []
    skip_next = False
    for tok in tokens:
        if skip_next:
            skip_next = False
            continue
        if tok in UNIT_DESIGNATORS:
            skip_next = True
            continue
        kept.append(tok)
    return " ".join(kept)


def fold_case(value: str | None) -> str | None:
    """Case-insensitive comparison key with collapsed whitespace."""
    value = clean_text(value)
    if not value:
        return None
    return _WHITESPACE.sub(" ", value.lower())
