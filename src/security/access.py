"""Tenant access validation.

Every request names its tenant explicitly; the validator decides whether
the caller may act for it. There is no default tenant. Public form
traffic and tenant administrators hold different keys: an admin key also
works on public routes, a public key never opens admin routes.
"""

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


class AccessRole(str, Enum):
    """What a route requires of its caller."""

    PUBLIC = "public"
    ADMIN = "admin"


@dataclass(frozen=True)
class CallerContext:
    """What the HTTP layer knows about a caller."""

    api_key: str | None = None
    client_key: str | None = None
    role: AccessRole = AccessRole.PUBLIC


@runtime_checkable
class AccessValidator(Protocol):
    """Decides whether a caller may act for a tenant in the requested role."""

    def has_access(self, tenant_id: str, caller: CallerContext) -> bool:
        ...


def _matches(expected: str | None, presented: str) -> bool:
    return expected is not None and hmac.compare_digest(expected.encode(), presented.encode())


class ApiKeyAccessValidator:
    """Grants access when the caller presents a key the tenant issued for the role.

    Unknown tenants are always denied.
    """

    def __init__(self, tenant_keys: dict[str, str], admin_keys: dict[str, str] | None = None):
        """Initialize validator.

        Args:
            tenant_keys: Tenant id -> public API key
            admin_keys: Tenant id -> admin API key. A tenant without one has
                no admin access at all.
        """
        self._keys = dict(tenant_keys)
        self._admin_keys = dict(admin_keys or {})

    def has_access(self, tenant_id: str, caller: CallerContext) -> bool:
        public_key = self._keys.get(tenant_id)
        admin_key = self._admin_keys.get(tenant_id)
        known = public_key is not None or admin_key is not None
        if not known or not caller.api_key:
            logger.warning(
                "tenant access denied",
                tenant_id=tenant_id,
                role=caller.role.value,
                known_tenant=known,
            )
            return False

        granted = _matches(admin_key, caller.api_key)
        if caller.role == AccessRole.PUBLIC:
            granted = granted or _matches(public_key, caller.api_key)
        if not granted:
            logger.warning(
                "tenant access denied",
                tenant_id=tenant_id,
                role=caller.role.value,
                known_tenant=True,
            )
        return granted
