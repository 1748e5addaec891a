"""Pytest configuration and fixtures for CoffeeTrack tests.

Each test gets its own SQLite file database (aiosqlite), so sessions
opened from the same factory see each other's commits, like separate
requests against one Postgres database.
"""

import os

# Must be set before app modules read settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./coffeetrack-test.db")
os.environ["CACHE_ENABLED"] = "false"

import itertools
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.jwt import create_access_token
from app.auth.permissions import CallerRole, resolve_permissions
from app.database import Base, commit, get_db, rollback
from app.main import app
from app.models.delivery import Delivery
from app.models.farmer import Farmer
from app.models.payment import Payment
from app.schemas.auth import Caller
from app.services.ledger import LedgerStore
from app.services.scope import AccessScope

REGION = "Kiambu"
OTHER_REGION = "Nyeri"


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Fresh file-backed SQLite database with all ledger tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(db_session: AsyncSession) -> LedgerStore:
    """Unscoped ledger store (administrator view)."""
    return LedgerStore(db_session)


@pytest.fixture
def scoped_store(db_session: AsyncSession) -> LedgerStore:
    """Ledger store restricted to REGION (field agent view)."""
    return LedgerStore(db_session, AccessScope(region=REGION))


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with get_db bound to the per-test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await commit(session)
            except Exception:
                await rollback(session)
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Callers ──────────────────────────────────────────────────────

@pytest.fixture
def admin() -> Caller:
    return Caller(
        id="admin-1",
        role=CallerRole.ADMIN,
        assigned_region=None,
        permissions=resolve_permissions(CallerRole.ADMIN.value),
    )


@pytest.fixture
def agent() -> Caller:
    return Caller(
        id="agent-1",
        role=CallerRole.FIELD_AGENT,
        assigned_region=REGION,
        permissions=resolve_permissions(CallerRole.FIELD_AGENT.value),
    )


@pytest.fixture
def admin_headers(admin: Caller) -> dict:
    token = create_access_token(admin.id, admin.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def agent_headers(agent: Caller) -> dict:
    token = create_access_token(agent.id, agent.role.value, region=REGION)
    return {"Authorization": f"Bearer {token}"}


# ── Test Data Fixtures ───────────────────────────────────────────

class LedgerFactory:
    """Inserts ledger rows directly, bypassing the services."""

    _seq = itertools.count(1)

    def __init__(self, db: AsyncSession):
        self.db = db
        self.now = datetime.utcnow()
        self._clock = self.now - timedelta(days=400)

    def _tick(self) -> datetime:
        # Strictly increasing created_at so insertion order is deterministic
        self._clock += timedelta(seconds=1)
        return self._clock

    async def farmer(self, name: str = "Wanjiru", weigh_station: str = REGION, **kw) -> Farmer:
        n = next(self._seq)
        farmer = Farmer(
            name=name,
            cell_number=kw.pop("cell_number", f"0700{n:06d}"),
            national_id=kw.pop("national_id", f"ID{n:06d}"),
            season=kw.pop("season", "Long"),
            weigh_station=weigh_station,
            created_by=kw.pop("created_by", "admin-1"),
            **kw,
        )
        self.db.add(farmer)
        await self.db.flush()
        return farmer

    async def delivery(
        self,
        farmer: Farmer,
        kgs: float = 100.0,
        type: str = "Cherry",
        days_ago: float = 1,
        region: str | None = None,
        driver: str = "Otieno",
        **kw,
    ) -> Delivery:
        delivery = Delivery(
            farmer_id=farmer.id,
            type=type,
            kgs_delivered=kgs,
            date=kw.pop("date", self.now - timedelta(days=days_ago)),
            region=region or farmer.weigh_station,
            driver=driver,
            recorded_by="agent-1",
            created_at=kw.pop("created_at", self._tick()),
            **kw,
        )
        self.db.add(delivery)
        await self.db.flush()
        return delivery

    async def payment(
        self,
        farmer: Farmer,
        deliveries: list[Delivery] | None = None,
        status: str = "Completed",
        price: float = 50.0,
        days_ago: float = 0,
        type: str = "Cherry",
        kgs: float | None = None,
        **kw,
    ) -> Payment:
        """Payment row; linked deliveries get their payment_id set."""
        deliveries = deliveries or []
        total = kgs if kgs is not None else sum(d.kgs_delivered for d in deliveries)
        payment = Payment(
            payment_ref=f"PAY-TEST-{next(self._seq):04d}",
            farmer_id=farmer.id,
            delivery_ids=[d.id for d in deliveries],
            delivery_type=type,
            kgs_delivered=total,
            price_per_kg=price,
            amount_paid=round(total * price, 2),
            status=status,
            date=kw.pop("date", self.now - timedelta(days=days_ago)),
            recorded_by="admin-1",
            created_at=self._tick(),
            **kw,
        )
        self.db.add(payment)
        await self.db.flush()
        for d in deliveries:
            d.payment_id = payment.id
        await self.db.flush()
        return payment


@pytest.fixture
def ledger(db_session: AsyncSession) -> LedgerFactory:
    return LedgerFactory(db_session)


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "auth: Authentication / authorization tests")
    config.addinivalue_line("markers", "cache: Report cache tests")
