"""Shared FastAPI dependencies: tenant access and rate limiting."""

from fastapi import Header, HTTPException, Request

from src.identity.engine import validate_tenant_id
from src.identity.errors import UnauthorizedError
from src.security.access import AccessRole, CallerContext
from src.security.rate_limit import RateLimiter


def client_key(request: Request) -> str:
    """Identify a client by forwarded address (or peer) and user agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        address = forwarded.split(",")[0].strip()
    else:
        address = request.client.host if request.client else "unknown"
    return f"{address}:{request.headers.get('user-agent', '')}"


def _enforce(limiter: RateLimiter | None, request: Request) -> None:
    if limiter is None:
        return
    decision = limiter.check(client_key(request))
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )


def recognition_rate_limit(request: Request) -> None:
    """Dependency applying the public recognition rate limit."""
    _enforce(getattr(request.app.state, "recognition_limiter", None), request)


def admin_rate_limit(request: Request) -> None:
    """Dependency applying the admin review rate limit."""
    _enforce(getattr(request.app.state, "admin_limiter", None), request)


def _authorize(
    request: Request,
    x_tenant_id: str | None,
    x_api_key: str | None,
    role: AccessRole,
) -> str:
    tenant_id = validate_tenant_id(x_tenant_id)
    validator = request.app.state.access_validator
    caller = CallerContext(api_key=x_api_key, client_key=client_key(request), role=role)
    if not validator.has_access(tenant_id, caller):
        msg = "Access denied for tenant"
        raise UnauthorizedError(msg)
    return tenant_id


def require_tenant(
    request: Request,
    x_tenant_id: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> str:
    """Resolve the tenant named by the caller and check access to it.

    Returns:
        The validated tenant id

    Raises:
        InvalidInputError: Missing or malformed tenant id
        UnauthorizedError: Access validator denied the caller
    """
    return _authorize(request, x_tenant_id, x_api_key, AccessRole.PUBLIC)


def require_admin_tenant(
    request: Request,
    x_tenant_id: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> str:
    """Like require_tenant, but only the tenant's admin key is accepted."""
    return _authorize(request, x_tenant_id, x_api_key, AccessRole.ADMIN)
