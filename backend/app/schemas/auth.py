from pydantic import BaseModel

from app.auth.permissions import CallerRole


class Caller(BaseModel):
    """Authenticated caller identity, decoded from the bearer token.

    `assigned_region` is None for unscoped callers (administrators).
    """
    id: str
    role: CallerRole
    assigned_region: str | None = None
    permissions: list[str] = []

    model_config = {"frozen": True}
