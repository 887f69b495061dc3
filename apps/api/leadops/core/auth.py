from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from leadops.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    tenant_id: str | None = None
    role: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.sub == "anonymous"


ANONYMOUS = AuthUser(sub="anonymous")


def decode_session_token(token: str) -> AuthUser:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return ANONYMOUS
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        return ANONYMOUS
    tenant_id = payload.get("tenant_id")
    role = payload.get("role")
    return AuthUser(
        sub=subject,
        tenant_id=str(tenant_id) if tenant_id else None,
        role=str(role) if role else None,
    )


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    if not token:
        return ANONYMOUS
    return decode_session_token(token)
