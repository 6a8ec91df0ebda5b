"""Shared test fixtures for FamHub."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from famhub.db.database import connect
from famhub.models.cache import CacheConfig, RefreshConfig
from famhub.services.aggregation_service import DataAggregationService
from famhub.services.cache_service import DataCacheService
from famhub.services.refresh_service import RealTimeRefreshService
from tests.fakes import FakeClock, FakeScheduler

DAY = 24 * 60 * 60

# Fixed "now" for seed data so aggregation results are stable
NOW = 1_700_000_000.0

MEMBERS = [
    ("gonzalo", "Gonzalo", "gonzalo@famhub.test"),
    ("mpaz", "Mpaz", "mpaz@famhub.test"),
    ("borja", "Borja", "borja@famhub.test"),
]

TODOS = [
    # id, title, completed, assigned_to, due_date, completed_at, created_at
    ("todo-1", "Pay school fees", 0, "gonzalo", NOW - 2 * DAY, None, NOW - 5 * DAY),
    ("todo-2", "Book dentist", 0, "mpaz", NOW + 3 * DAY, None, NOW - 4 * DAY),
    ("todo-3", "Fix bike", 1, "borja", None, NOW - 1 * DAY, NOW - 3 * DAY),
    ("todo-4", "Renew passport", 1, "gonzalo", None, NOW - 30 * DAY, NOW - 40 * DAY),
]

EVENTS = [
    # id, title, start_date, assigned_to
    ("event-1", "PTA meeting", NOW + 2 * DAY, "mpaz"),
    ("event-2", "Doctor appointment", NOW + 10 * DAY, "borja"),
    ("event-3", "Birthday party", NOW + 20 * DAY, "mpaz"),
    ("event-4", "Last week's gym class", NOW - 7 * DAY, "gonzalo"),
]

GROCERIES = [
    # id, name, category, checked, checked_at, notes, created_at
    ("grocery-1", "Milk", "Dairy", 0, None, "urgent", NOW - 1 * DAY),
    ("grocery-2", "Cheese", "Dairy", 1, NOW - 1 * DAY, None, NOW - 2 * DAY),
    ("grocery-3", "Apples", "Fruit", 0, None, None, NOW - 2 * DAY),
]

DOCUMENTS = [
    # id, file_name, created_at
    ("doc-1", "insurance.pdf", NOW - 2 * DAY),
    ("doc-2", "school-report.pdf", NOW - 20 * DAY),
    ("doc-3", "holiday.jpg", NOW - 1 * DAY),
]


# ---------------------------------------------------------------------------
# Clock / scheduler fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def cache(clock, scheduler):
    """Small cache: 1s default TTL, 5 entries, background refresh at 50% of TTL."""
    service = DataCacheService(
        CacheConfig(default_ttl=1.0, max_entries=5, refresh_threshold=0.5),
        scheduler=scheduler,
        clock=clock,
    )
    yield service
    service.dispose()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db():
    """In-memory SQLite database with schema + seed data."""
    conn = await connect(":memory:")
    await conn.executemany("INSERT INTO family_members (id, name, email) VALUES (?, ?, ?)", MEMBERS)
    await conn.executemany(
        "INSERT INTO todos (id, title, completed, assigned_to, due_date, completed_at, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        TODOS,
    )
    await conn.executemany(
        "INSERT INTO events (id, title, start_date, assigned_to) VALUES (?, ?, ?, ?)", EVENTS
    )
    await conn.executemany(
        "INSERT INTO groceries (id, name, category, checked, checked_at, notes, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        GROCERIES,
    )
    await conn.executemany("INSERT INTO documents (id, file_name, created_at) VALUES (?, ?, ?)", DOCUMENTS)
    await conn.commit()
    yield conn
    await conn.close()


@pytest.fixture
def aggregator(db) -> DataAggregationService:
    return DataAggregationService(db, clock=lambda: NOW)


# ---------------------------------------------------------------------------
# App / client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db, aggregator, clock, scheduler):
    """FastAPI app with services wired to the test DB (lifespan is not run)."""
    from famhub.main import create_app

    fastapi_app = create_app()
    cache = DataCacheService(CacheConfig(default_ttl=60), scheduler=scheduler, clock=clock)
    refresh_service = RealTimeRefreshService(
        cache,
        aggregator,
        RefreshConfig(family_data_interval=60, retry_delay=0, max_retries=1),
        scheduler=scheduler,
        clock=clock,
    )
    fastapi_app.state.db = db
    fastapi_app.state.cache = cache
    fastapi_app.state.refresh_service = refresh_service

    yield fastapi_app

    refresh_service.dispose()
    cache.dispose()


@pytest_asyncio.fixture
async def client(app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
