"""Shared pytest fixtures for rebuild tests."""

from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from index_rebuilder.database import create_session_maker
from index_rebuilder.schemas.rebuild import IndexDescriptor
from index_rebuilder.services.index_catalog import IndexCatalog
from index_rebuilder.services.record_source import RecordSource

# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

INVOICE_ROWS = [
    {"id": i, "company_id": 1 + i % 2, "number": f"INV-{i:04d}", "amount": i * 10}
    for i in range(1, 8)
]


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> IndexCatalog:
    """Small three-entity catalog in a fixed order."""
    return IndexCatalog([
        IndexDescriptor("Client", "clients_v2", "clients"),
        IndexDescriptor("Invoice", "invoices_v2", "invoices", filterable_attributes=("company_id",)),
        IndexDescriptor("Vendor", "vendors_v2", "vendors"),
    ])


@pytest.fixture
def invoice_descriptor(catalog: IndexCatalog) -> IndexDescriptor:
    return catalog.get("Invoice")


@pytest_asyncio.fixture
async def engine():
    """Create a test database engine with SQLite, seeded with invoices and jobs."""
    engine = create_async_engine(SQLALCHEMY_DATABASE_URL, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.execute(text(
            "CREATE TABLE invoices (id INTEGER PRIMARY KEY, company_id INTEGER, number TEXT, amount INTEGER)"
        ))
        await conn.execute(text("CREATE TABLE clients (id INTEGER PRIMARY KEY, name TEXT)"))
        await conn.execute(text("CREATE TABLE jobs (id INTEGER PRIMARY KEY, queue TEXT, payload TEXT)"))
        await conn.execute(
            text("INSERT INTO invoices (id, company_id, number, amount) VALUES (:id, :company_id, :number, :amount)"),
            INVOICE_ROWS,
        )

    yield engine

    await engine.dispose()


@pytest.fixture
def record_source(engine) -> RecordSource:
    return RecordSource(create_session_maker(engine))


@pytest.fixture
def insert_jobs(engine):
    """Return a helper that pushes rows onto the jobs table."""

    async def _insert(queue: str, count: int, payload: Optional[str] = None) -> None:
        async with engine.begin() as conn:
            await conn.execute(
                text("INSERT INTO jobs (queue, payload) VALUES (:queue, :payload)"),
                [{"queue": queue, "payload": payload} for _ in range(count)],
            )

    return _insert
