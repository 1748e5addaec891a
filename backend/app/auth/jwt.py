"""JWT token creation and decoding.

Tokens are issued by the access-control collaborator (or `app.cli
issue-token`); this service only needs to read the caller identity.

Token claims:
  - sub:          user ID
  - role:         "admin" | "fieldagent"
  - region:       assigned weigh station / region (absent = unscoped)
  - permissions:  list of effective permission strings
  - type:         "access"
  - exp:          expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.auth.permissions import resolve_permissions
from app.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: str,
    role: str,
    region: str | None = None,
    permissions: list[str] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "role": role,
        "permissions": permissions if permissions is not None else resolve_permissions(role),
        "type": "access",
        "exp": expire,
    }
    if region:
        payload["region"] = region
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
