"""Lightweight helper for recording activity log entries.

Usage:
    await log_activity(
        db, caller, action="voided", entity_type="payment",
        entity_id=payment.id, entity_code=payment.payment_ref,
        summary="Voided PAY-20261019-001: duplicate",
    )

The row is added to the current session and committed with the
enclosing transaction — no extra flush is performed.  A rolled-back
payment claim therefore leaves no audit row behind.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityLog
from app.schemas.auth import Caller


async def log_activity(
    db: AsyncSession,
    caller: Caller,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        user_id=caller.id,
        user_role=caller.role.value,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
