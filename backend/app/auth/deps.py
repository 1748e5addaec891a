"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_caller      → decode JWT, return Caller (id, role, region)
  get_access_scope        → AccessScope narrowing every ledger query
  require_permission(...) → restrict to specific granular permissions
  get_ledger_store        → LedgerStore bound to the request session + scope
"""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.jwt import decode_token
from app.auth.permissions import CallerRole, has_permission
from app.database import get_db
from app.schemas.auth import Caller
from app.services.ledger import LedgerStore
from app.services.scope import AccessScope, set_current_scope_key

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


# ── Core caller dependency ──────────────────────────────────

async def get_current_caller(token: str = Depends(oauth2_scheme)) -> Caller:
    """Decode the JWT and return the caller identity."""
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        role = CallerRole(payload.get("role"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown role in token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    caller = Caller(
        id=user_id,
        role=role,
        assigned_region=payload.get("region") or None,
        permissions=payload.get("permissions", []),
    )
    # Report cache keys are namespaced by scope
    set_current_scope_key(caller.assigned_region)
    return caller


async def get_access_scope(caller: Caller = Depends(get_current_caller)) -> AccessScope:
    return AccessScope.for_caller(caller)


async def get_ledger_store(
    db: AsyncSession = Depends(get_db),
    scope: AccessScope = Depends(get_access_scope),
) -> LedgerStore:
    return LedgerStore(db, scope)


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory — restrict to callers who hold ALL listed permissions.

    Reads permissions from the JWT claims, so this is a zero-DB-hit check.

    Usage:
        @router.post("/payments")
        async def create(caller: Caller = Depends(require_permission("payments.write"))):
            ...
    """
    async def _check(caller: Caller = Depends(get_current_caller)) -> Caller:
        missing = [p for p in perms if not has_permission(caller.permissions, p)]
        if missing:
            logger.info(
                "Permission denied for %s (%s): missing %s",
                caller.id, caller.role.value, ", ".join(missing),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return caller

    return _check
