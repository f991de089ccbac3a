"""PDUFA Tracker — FastAPI Application Entry Point.

Scrapes FDA PDUFA calendars, keeps a canonical store of upcoming decisions
and posts Discord alerts as decision dates approach.
"""

from contextlib import asynccontextmanager
from typing import Callable, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from pdufa_tracker import database
from pdufa_tracker.alerts.discord import DiscordAlertDispatcher
from pdufa_tracker.api.pdufa_routes import envelope, router as pdufa_router
from pdufa_tracker.config import settings
from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.core.errors import CycleInProgressError, PersistenceError, RequestError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.pipeline.fetcher import build_sources
from pdufa_tracker.scheduler.jobs import PDUFAScheduler
from pdufa_tracker.services.pdufa_service import PDUFAService
from pdufa_tracker.store.cache import TTLCache
from pdufa_tracker.store.repository import AlertLogRepository, PDUFAStore

logger = get_logger("main")

VERSION = "1.0.0"


def create_app(
    engine: Optional[Engine] = None,
    source_factory: Optional[Callable[[], List[BaseSource]]] = None,
    dispatcher: Optional[DiscordAlertDispatcher] = None,
    scheduler_enabled: Optional[bool] = None,
) -> FastAPI:
    """Build the application; arguments override the configured defaults."""
    bind = engine if engine is not None else database.engine
    enabled = settings.scheduler_enabled if scheduler_enabled is None else scheduler_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle."""
        logger.info("🚀 PDUFA Tracker starting up...")
        if database.test_connection(bind):
            database.init_db(bind)
        else:
            logger.error("❌ Database NOT connected — endpoints will fail")

        store = PDUFAStore(bind)
        cache = TTLCache()
        alerts = dispatcher or DiscordAlertDispatcher(AlertLogRepository(bind))
        scheduler = PDUFAScheduler(
            store, cache, alerts, source_factory=source_factory or build_sources
        )
        app.state.store = store
        app.state.cache = cache
        app.state.dispatcher = alerts
        app.state.scheduler = scheduler
        app.state.pdufa_service = PDUFAService(store, cache)

        if not alerts.configured:
            logger.warning("DISCORD_WEBHOOK_URL not set — alerts will be skipped")
        if enabled:
            scheduler.start(run_on_startup=settings.run_on_startup)
        else:
            logger.info("Scheduler disabled via config")

        yield

        await scheduler.stop()
        await alerts.close()
        logger.info("PDUFA Tracker shut down")

    app = FastAPI(
        title="PDUFA Tracker",
        description="Aggregates FDA PDUFA decision dates from public calendars and sends Discord alerts.",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(pdufa_router)

    # ── Error envelope ──

    @app.exception_handler(RequestError)
    async def request_error_handler(request: Request, exc: RequestError):
        return JSONResponse(
            status_code=exc.status_code, content=envelope(message=str(exc), success=False)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:])}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content=envelope(message=f"Invalid request: {problems}", success=False),
        )

    @app.exception_handler(CycleInProgressError)
    async def cycle_in_progress_handler(request: Request, exc: CycleInProgressError):
        return JSONResponse(status_code=409, content=envelope(message=str(exc), success=False))

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        return JSONResponse(status_code=500, content=envelope(message=str(exc), success=False))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(message=str(exc.detail), success=False),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content=envelope(message="Internal server error", success=False),
        )

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint."""
        return {
            "success": True,
            "status": "healthy",
            "service": "pdufa-tracker",
            "version": VERSION,
            "timestamp": envelope()["timestamp"],
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(
        "pdufa_tracker.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
