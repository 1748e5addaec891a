"""Access scope — region isolation for every ledger read and write.

Key components:
  - AccessScope        narrows Farmer / Delivery / Payment statements to the
                       caller's assigned region, or leaves them unrestricted
  - ensure_writable()  rejects writes outside the assigned region
  - _scope_ctx         ContextVar holding the cache namespace for the
                       current request (used by app.utils.cache)

Regions map onto the ledger as:
  farmers     → Farmer.weigh_station
  deliveries  → Delivery.region
  payments    → the paying farmer's weigh_station (via subquery)
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from dataclasses import dataclass

from sqlalchemy import Select, select

from app.middleware.exceptions import AccessDeniedError
from app.models.delivery import Delivery
from app.models.farmer import Farmer
from app.models.payment import Payment

logger = logging.getLogger(__name__)

UNSCOPED_KEY = "*"

# ── Request-scoped cache namespace ──────────────────────────

_scope_ctx: ContextVar[str | None] = ContextVar("_scope_ctx", default=None)


def set_current_scope_key(region: str | None) -> None:
    _scope_ctx.set(region or UNSCOPED_KEY)


def get_current_scope_key() -> str | None:
    """Return the current scope namespace, or None outside a request."""
    return _scope_ctx.get()


# ── Scope ───────────────────────────────────────────────────

@dataclass(frozen=True)
class AccessScope:
    """Region predicate applied uniformly to ledger statements.

    `region=None` means unrestricted (administrators).
    """
    region: str | None = None

    @classmethod
    def for_caller(cls, caller) -> "AccessScope":
        return cls(region=caller.assigned_region or None)

    @classmethod
    def unrestricted(cls) -> "AccessScope":
        return cls(region=None)

    @property
    def is_unrestricted(self) -> bool:
        return self.region is None

    # ── Reads ────────────────────────────────────────────────

    def farmers(self, stmt: Select) -> Select:
        if self.region is None:
            return stmt
        return stmt.where(Farmer.weigh_station == self.region)

    def deliveries(self, stmt: Select) -> Select:
        if self.region is None:
            return stmt
        return stmt.where(Delivery.region == self.region)

    def payments(self, stmt: Select) -> Select:
        if self.region is None:
            return stmt
        # Subquery instead of a join so callers can join Farmer themselves
        return stmt.where(Payment.farmer_id.in_(self.farmer_ids()))

    def farmer_ids(self) -> Select:
        """Subquery of farmer ids visible in this scope."""
        return self.farmers(select(Farmer.id))

    def narrow(self, region: str | None) -> "AccessScope":
        """Intersect with an explicitly requested region filter.

        Unscoped callers may narrow to any region.  Scoped callers may only
        ask for their own region; anything else is an AccessDenied, not a
        silently empty result.
        """
        if not region:
            return self
        if self.region is None:
            return AccessScope(region=region)
        if region != self.region:
            logger.info("Scope denial: %s requested from %s scope", region, self.region)
            raise AccessDeniedError(
                f"Region {region!r} is outside your assigned region {self.region!r}"
            )
        return self

    # ── Writes ───────────────────────────────────────────────

    def ensure_writable(self, region: str, entity: str = "record") -> None:
        """Reject writes outside the assigned region (never reassign)."""
        if self.region is not None and region != self.region:
            logger.info(
                "Scope denial: %s write to %s from %s scope", entity, region, self.region,
            )
            raise AccessDeniedError(
                f"Cannot write {entity} in region {region!r}: "
                f"assigned region is {self.region!r}"
            )
