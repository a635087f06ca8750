from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from crm.db.session import create_engine_from_url
from crm.metrics import MetricsRegistry, register_default_metrics
from crm.work_items.locking import RowLockCoordinator
from crm.work_items.repository import WorkItemRepository
from crm.work_items.service import WorkItemService


class SteppingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'work_items.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def repository(engine: AsyncEngine) -> WorkItemRepository:
    repository = WorkItemRepository(async_sessionmaker(engine, expire_on_commit=False), engine=engine)
    await repository.ensure_schema()
    return repository


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def lock_coordinator(repository: WorkItemRepository, metrics: MetricsRegistry) -> RowLockCoordinator:
    return RowLockCoordinator(repository, timeout=1.0, metrics=metrics)


@pytest.fixture
def service(
    repository: WorkItemRepository,
    lock_coordinator: RowLockCoordinator,
    metrics: MetricsRegistry,
    clock: SteppingClock,
) -> WorkItemService:
    return WorkItemService(repository, lock_coordinator=lock_coordinator, metrics=metrics, clock=clock)
