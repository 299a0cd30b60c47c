"""Privacy masking for data shown to unauthenticated submitters.

Email and phone are always redacted. Address details and date of birth
are withheld unless the caller opts out of privacy mode.
"""

import hashlib

from src.identity.normalizer import normalize_phone
from src.identity.schemas import FamilyMember, IdentityRecord, MaskedProfile


def mask_email(email: str | None) -> str | None:
    """Mask an email address, keeping the domain.

    "jonathan@example.com" -> "j****n@example.com"; local parts of three
    characters or fewer are fully starred.
    """
    if not email:
        return None
    local, sep, domain = email.partition("@")
    if not sep or not local:
        return "*" * len(email)
    if len(local) > 3:
        masked_local = local[0] + "*" * min(len(local) - 2, 4) + local[-1]
    else:
        masked_local = "*" * len(local)
    return f"{masked_local}@{domain}"


def mask_phone(phone: str | None) -> str | None:
    """Mask a phone number, keeping area code and last four digits.

    "5551234567" -> "(555) ***-4567". Non-standard lengths keep only the
    last two digits.
    """
    if not phone:
        return None
    digits = normalize_phone(phone) or ""
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"({digits[:3]}) ***-{digits[6:]}"
    if len(digits) <= 2:
        return "*" * len(digits)
    return "*" * (len(digits) - 2) + digits[-2:]


def mask_address(address: str | None) -> str | None:
    """Keep the house number and initials of the street words.

    "123 Main Street" -> "123 M*** S*****".
    """
    if not address:
        return None
    parts = []
    for token in address.split():
        if token[0].isdigit():
            parts.append(token)
        else:
            parts.append(token[0] + "*" * (len(token) - 1))
    return " ".join(parts)


def mask_zip(zip_code: str | None) -> str | None:
    if not zip_code:
        return None
    return zip_code[:3] + "*" * (len(zip_code) - 3) if len(zip_code) > 3 else "***"


def mask_profile(record: IdentityRecord, respect_privacy: bool = True) -> MaskedProfile:
    """Build the submitter-facing view of a stored profile.

    Args:
        record: Stored identity record
        respect_privacy: When False, address fields and date of birth are
            shown in full. Email and phone are masked either way.

    Returns:
        MaskedProfile safe to return to an unauthenticated caller
    """
    if respect_privacy:
        return MaskedProfile(
            profile_id=record.id,
            first_name=record.first_name,
            last_name=record.last_name,
            email=mask_email(record.email),
            phone=mask_phone(record.phone),
            address=mask_address(record.address),
            city=record.city,
            state=record.state,
            zip_code=mask_zip(record.zip_code),
        )
    return MaskedProfile(
        profile_id=record.id,
        first_name=record.first_name,
        last_name=record.last_name,
        email=mask_email(record.email),
        phone=mask_phone(record.phone),
        address=record.address,
        city=record.city,
        state=record.state,
        zip_code=record.zip_code,
        date_of_birth=record.date_of_birth,
    )


def mask_family_member(record: IdentityRecord, respect_privacy: bool = True) -> FamilyMember:
    """Build the submitter-facing view of a household member."""
    return FamilyMember(
        profile_id=record.id,
        member_id=record.member_id,
        first_name=record.first_name,
        last_name=record.last_name,
        relationship=record.relationship or "family_member",
        date_of_birth=None if respect_privacy else record.date_of_birth,
        email=mask_email(record.email),
        phone=mask_phone(record.phone),
    )


def redact_identifier(value: str, salt: str, length: int = 12) -> str:
    """Salted SHA-256 prefix of an identifier, for audit records."""
    digest = hashlib.sha256(f"{salt}:{value}".encode()).hexdigest()
    return digest[:length]
