from __future__ import annotations

from leadops.platform.errors import DomainError


class AuthenticationError(DomainError):
    """Raised when no valid session or job secret was presented."""

    status_code = 401
    default_code = "unauthorized"


class AuthorizationError(DomainError):
    """Raised when the caller's role lacks the required capability."""

    status_code = 403
    default_code = "forbidden"
