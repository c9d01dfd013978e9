from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fixflow.api.routes import metrics, ping, tickets, work_orders
from fixflow.core.config import Settings, get_settings
from fixflow.core.logging import configure_logging, init_tracer, shutdown_tracer
from fixflow.metrics import metrics_registry
from fixflow.services.repository import WorkflowRepository
from fixflow.services.workflow import WorkflowService
from fixflow.workflow.errors import WorkflowError


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def create_app(settings: Settings | None = None, service: WorkflowService | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
        logger = configure_logging(settings)
        tracer_provider = init_tracer(settings)
        app.state.logger = logger
        app.state.tracer_provider = tracer_provider

        db_engine = None
        if app.state.workflow_service is None:
            db_engine = create_async_engine(
                _to_asyncpg_dsn(settings.database_url), echo=settings.database_echo, future=True
            )
            session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
            repository = WorkflowRepository(session_factory, engine=db_engine)
            if settings.create_schema:
                await repository.ensure_schema()
            app.state.workflow_service = WorkflowService(
                repository,
                registry=app.state.metrics_registry,
                max_cost_revisions=settings.max_cost_revisions,
            )
            app.state.db_engine = db_engine
            logger.info("Workflow service ready (%s)", settings.environment)
        try:
            yield
        finally:
            if db_engine is not None:
                await db_engine.dispose()
                app.state.workflow_service = None
            shutdown_tracer(tracer_provider)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.metrics_registry = metrics_registry
    app.state.workflow_service = service
    app.add_exception_handler(WorkflowError, workflow_error_handler)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(work_orders.router)
    app.include_router(metrics.router)
    return app


app = create_app()
