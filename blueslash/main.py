"""BlueSlash - household chores, gems and peer verification."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from blueslash.adapters.llm_gem_estimator import OpenRouterGemEstimator
from blueslash.adapters.local_blob_store import LocalBlobStore
from blueslash.adapters.push_notifier import build_notifier
from blueslash.core.config import Settings, settings
from blueslash.core.context import AppContext
from blueslash.core.db_client import DocumentStore
from blueslash.core.errors import BlueSlashError
from blueslash.core.logging import configure_logfire, instrument_fastapi
from blueslash.core.scheduler import REMINDER_SWEEP_JOB_ID, job_tracker, start_scheduler, stop_scheduler
from blueslash.interface.api import domain_error_handler, router as api_router


logger = logging.getLogger(__name__)


def build_context(app_settings: Settings) -> AppContext:
    """Wire the production collaborators from settings."""
    gem_estimator = None
    if app_settings.openrouter_api_key:
        gem_estimator = OpenRouterGemEstimator(settings=app_settings)
    else:
        logger.warning("startup_validation", extra={"service": "openrouter", "status": "disabled"})

    return AppContext(
        store=DocumentStore(app_settings.sqlite_db_path),
        notifier=build_notifier(app_settings),
        gem_estimator=gem_estimator,
        blob_store=LocalBlobStore(app_settings.blob_store_dir),
        settings=app_settings,
    )


def create_app(ctx: AppContext | None = None, *, run_scheduler: bool = True) -> FastAPI:
    """Build the application; tests pass their own context and skip the scheduler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan context manager."""
        # Configure logging first so startup logs are captured
        configure_logfire(ctx.settings if ctx else settings)

        app_ctx = ctx or build_context(settings)
        await app_ctx.store.init_schema()
        logger.info("Database initialized")

        app.state.ctx = app_ctx
        app.state.scheduler = start_scheduler(app_ctx) if run_scheduler else None
        try:
            yield
        finally:
            if app.state.scheduler is not None:
                stop_scheduler(app.state.scheduler)
            await app_ctx.store.close()

    app = FastAPI(
        title="blueslash",
        description="Household chores, gems and peer verification",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Instrument FastAPI with Logfire
    instrument_fastapi(app)

    app.add_exception_handler(BlueSlashError, domain_error_handler)
    app.include_router(api_router)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Liveness plus reminder sweep status."""
        scheduler = app.state.scheduler
        sweep = job_tracker.get_job_status(REMINDER_SWEEP_JOB_ID)
        degraded = sweep.get("consecutive_failures", 0) > 0
        return JSONResponse(
            content={
                "status": "degraded" if degraded else "healthy",
                "scheduler": {"running": bool(scheduler and scheduler.running), "reminder_sweep": sweep},
            },
            status_code=200,
        )

    return app


app = create_app()
