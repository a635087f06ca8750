import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from crm.api.routes import health, work_items
from crm.core.config import Settings, get_settings
from crm.core.logging import configure_logging, init_tracer, shutdown_tracer
from crm.db.session import create_engine_from_url
from crm.metrics import metrics_registry
from crm.services.database import DatabaseHealthCheck
from crm.work_items.locking import RowLockCoordinator
from crm.work_items.repository import WorkItemRepository
from crm.work_items.service import WorkItemService

logger = logging.getLogger(__name__)


def build_work_item_service(repository: WorkItemRepository, settings: Settings) -> WorkItemService:
    coordinator = RowLockCoordinator(
        repository,
        timeout=settings.lock_timeout_seconds,
        metrics=metrics_registry,
    )
    return WorkItemService(
        repository,
        lock_coordinator=coordinator,
        metrics=metrics_registry,
        max_attempts=settings.mutation_max_attempts,
        max_page_size=settings.max_page_size,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider
    app.state.metrics_registry = metrics_registry

    db_engine = create_engine_from_url(settings.database_url, echo=settings.database_echo)
    app.state.db_engine = db_engine
    app.state.db_health = DatabaseHealthCheck(db_engine)
    app.state.work_item_service = None
    try:
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = WorkItemRepository(session_factory, engine=db_engine)
        await repository.ensure_schema()
        app.state.work_item_service = build_work_item_service(repository, settings)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Work item service unavailable: %s", exc)
    try:
        yield
    finally:
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health.router)
    app.include_router(work_items.router)
    return app


app = create_app()
