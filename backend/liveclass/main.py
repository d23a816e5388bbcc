"""
Live Classroom Presence & Engagement Service
FastAPI Application Entry Point

On startup:
1. Optionally creates database tables (local development and tests)
2. Starts the per-minute telemetry flush timer
3. Starts the fixed-tick engagement broadcaster
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from liveclass.config import settings
from liveclass.database import engine, init_db
from liveclass.runtime import live_coordinator
from liveclass.services.telemetry import telemetry
from liveclass.api.meetings import router as meetings_router
from liveclass.api.attendance import router as attendance_router
from liveclass.api.emotions import router as emotions_router
from liveclass.api.live import router as live_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)
logger = logging.getLogger("live-classroom")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: prepare storage and run the background timers."""
    logger.info("Starting %s...", settings.APP_NAME)

    if settings.AUTO_CREATE_TABLES:
        await init_db()
        logger.info("Database tables ensured")
    else:
        logger.info("Skipping create_all; ensure Alembic migrations are applied (alembic upgrade head)")

    background = [
        asyncio.create_task(telemetry.run(settings.TELEMETRY_INTERVAL_SECONDS)),
        asyncio.create_task(live_coordinator.run_broadcast_loop(settings.ENGAGEMENT_BROADCAST_INTERVAL_SECONDS)),
    ]
    logger.info("%s is ready", settings.APP_NAME)

    yield

    # Shutdown
    logger.info("Shutting down...")
    for task in background:
        task.cancel()
    for task in background:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    telemetry.flush()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Live meeting attendance tracking and windowed engagement analytics",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(meetings_router)
    app.include_router(attendance_router)
    app.include_router(emotions_router)
    app.include_router(live_router)

    @app.get("/", tags=["Health"])
    async def root():
        """Health check endpoint."""
        return {
            "status": "online",
            "app": settings.APP_NAME,
            "version": "1.0.0",
        }

    @app.get("/api/v1/health", tags=["Health"])
    async def health_check():
        """Detailed health check."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "telemetry": telemetry.snapshot(),
            "version": "1.0.0",
        }

    return app


app = create_app()
