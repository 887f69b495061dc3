from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from leadops.context import get_correlation_id
from leadops.core.auth import AuthUser, get_current_user
from leadops.platform.security.errors import AuthenticationError, AuthorizationError
from leadops.platform.security.roles import Role, parse_role


@dataclass(slots=True)
class AuthContext:
    """Authenticated tenant member issuing a request."""

    user_id: str
    tenant_id: str
    role: Role | None = None
    correlation_id: str | None = None


def get_auth_context(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> AuthContext:
    if auth_user.is_anonymous:
        raise AuthenticationError("authentication required")
    if not auth_user.tenant_id:
        raise AuthorizationError("session is not bound to a tenant")
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return AuthContext(
        user_id=auth_user.sub,
        tenant_id=auth_user.tenant_id,
        role=parse_role(auth_user.role),
        correlation_id=correlation_id,
    )
