"""Management CLI for CoffeeTrack operations.

Usage:
    python -m app.cli create-tables                          # Create ledger tables (sync URL)
    python -m app.cli issue-token <user_id> <role> [region]  # Mint an access token
"""

import sys

from sqlalchemy import create_engine

from app.auth.jwt import create_access_token
from app.auth.permissions import CallerRole
from app.config import settings
from app.database import Base
import app.models  # noqa: F401  (registers every table on Base.metadata)


def create_tables():
    """Create all ledger tables directly (bypasses Alembic; for demos/dev)."""
    engine = create_engine(settings.database_url_sync)
    Base.metadata.create_all(engine)
    for name in sorted(Base.metadata.tables):
        print(f"  {name}")
    print(f"\n{len(Base.metadata.tables)} table(s) ready")


def issue_token(user_id: str, role: str, region: str | None = None):
    try:
        CallerRole(role)
    except ValueError:
        print(f"Unknown role {role!r}; expected one of: "
              f"{', '.join(r.value for r in CallerRole)}")
        sys.exit(2)
    print(create_access_token(user_id, role, region=region))


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    args = sys.argv[2:]
    if cmd == "create-tables":
        create_tables()
    elif cmd == "issue-token" and len(args) in (2, 3):
        issue_token(*args)
    else:
        print("Usage: python -m app.cli [create-tables | issue-token <user_id> <role> [region]]")
        sys.exit(1)
