"""
Shared test fixtures for the Geo Attendance test suite.

Every test gets its own in-memory SQLite database (aiosqlite + StaticPool),
a frozen clock in the office timezone and a recording fake transport, wired
together through the same ``build_services`` used in production.
"""

import math
import os
import sys
from datetime import datetime, timedelta
from typing import AsyncGenerator
from zoneinfo import ZoneInfo

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from geoattend.api.v1.deps import (get_current_active_user, get_db,
                                   get_services, require_admin)
from geoattend.api.v1.endpoints.auth import limiter
from geoattend.core.clock import Clock
from geoattend.core.config import settings
from geoattend.core.exceptions import TransportError
from geoattend.db.base import Base
from geoattend.main import app
from geoattend.models.user import User
from geoattend.services.container import Services, build_services
from geoattend.services.geo import EARTH_RADIUS_METERS, Location

CAIRO = ZoneInfo("Africa/Cairo")
OFFICE = Location(settings.OFFICE_LATITUDE, settings.OFFICE_LONGITUDE)


def north_of_office(meters: float) -> Location:
    """A point *meters* due north of the office."""
    return Location(OFFICE.latitude + math.degrees(meters / EARTH_RADIUS_METERS), OFFICE.longitude)


def local(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=CAIRO)


# ── Test doubles ────────────────────────────────────────────────────
class FrozenClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, tz: ZoneInfo, now: datetime) -> None:
        super().__init__(tz)
        self._now = now

    def now(self) -> datetime:
        return self._now.astimezone(self.tz)

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta


class FakeTransport:
    """Records outbound messages; recipients in ``failing`` raise TransportError."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.answered: list[str] = []
        self.failing: set[str] = set()
        self.closed = False

    async def send_message(self, recipient_id, text, *, parse_mode=None, silent=False, reply_markup=None):
        if recipient_id in self.failing:
            raise TransportError(f"chat {recipient_id} not found")
        self.sent.append(
            {
                "recipient": recipient_id,
                "text": text,
                "parse_mode": parse_mode,
                "silent": silent,
                "reply_markup": reply_markup,
            }
        )

    async def answer_callback_query(self, callback_query_id):
        self.answered.append(callback_query_id)

    async def aclose(self):
        self.closed = True

    def texts_to(self, recipient) -> list[str]:
        return [m["text"] for m in self.sent if m["recipient"] == str(recipient)]


# ── Database ────────────────────────────────────────────────────────
@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory schema per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with session_factory() as session:
        yield session


# ── Services ────────────────────────────────────────────────────────
@pytest.fixture
def clock() -> FrozenClock:
    # Monday 3 March 2025, 08:00 in Cairo
    return FrozenClock(CAIRO, local(2025, 3, 3, 8, 0))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def app_settings():
    return settings.model_copy(
        update={
            "TIMEZONE": "Africa/Cairo",
            "WORK_START": "09:00",
            "WORK_END": "17:00",
            "ABSENCE_CUTOFF": "10:00",
            "OFFICE_RADIUS_METERS": 100.0,
            "TELEGRAM_WEBHOOK_SECRET": "",
            "TELEGRAM_ADMIN_IDS": [],
        }
    )


@pytest.fixture
def services(app_settings, session_factory, transport, clock) -> Services:
    return build_services(
        settings=app_settings,
        session_factory=session_factory,
        transport=transport,
        clock=clock,
    )


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def make_employee(store):
    counter = iter(range(1000, 100000))

    async def _make(first_name: str = "Employee", telegram_id: str | None = None, **fields):
        employee = await store.create_employee(telegram_id or str(next(counter)), first_name, **fields)
        assert employee is not None
        return employee

    return _make


@pytest.fixture
async def admin_chat(store):
    """One active chat admin receiving alerts."""
    return await store.add_admin("900", "Boss")


# ── HTTP client ─────────────────────────────────────────────────────
async def _override_get_current_active_user():
    return User(id=1, email="test@example.com", is_active=True, role="admin")


async def _override_require_admin():
    return User(id=1, email="admin@example.com", is_active=True, role="admin")


@pytest.fixture
async def async_client(services, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app and this test's services."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_current_active_user] = _override_get_current_active_user
    app.dependency_overrides[require_admin] = _override_require_admin
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
async def anonymous_client(services, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Like ``async_client`` but with the real auth dependencies in place."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_services] = lambda: services
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    limiter.enabled = True
