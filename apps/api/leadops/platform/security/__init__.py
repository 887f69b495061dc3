from leadops.platform.security.context import AuthContext, get_auth_context
from leadops.platform.security.errors import AuthenticationError, AuthorizationError
from leadops.platform.security.roles import (
    Role,
    can_manage_billing,
    can_manage_team,
    can_run_automation,
    consumes_seat,
    parse_role,
)

__all__ = [
    "AuthContext",
    "get_auth_context",
    "AuthenticationError",
    "AuthorizationError",
    "Role",
    "parse_role",
    "can_manage_team",
    "can_manage_billing",
    "can_run_automation",
    "consumes_seat",
]
