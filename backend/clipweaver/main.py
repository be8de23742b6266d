from __future__ import annotations
"""ClipWeaver — FastAPI application entry point.

Mounts the job API and WebSocket relay and owns the orchestrator's
lifetime: schema setup and polling resume on startup, timer cancellation
on shutdown.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from clipweaver import __version__
from clipweaver.api.deps import clipweaver_error_handler
from clipweaver.api.router import api_router
from clipweaver.api.ws import router as ws_router
from clipweaver.config import get_settings
from clipweaver.database import close_db, get_session_factory, init_db
from clipweaver.errors import ClipWeaverError
from clipweaver.services.job_repository import JobRepository
from clipweaver.services.notifications import RedisNotificationSink
from clipweaver.services.orchestrator import Orchestrator
from clipweaver.services.provider_registry import default_registry

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Init the store and resume polling on startup; stop every timer on shutdown."""
    logger.info("%s starting up...", settings.APP_NAME)
    logger.info("Database: %s", settings.DATABASE_URL.split("@")[-1])

    os.makedirs(settings.MEDIA_VOLUME, exist_ok=True)
    await init_db()

    sink = RedisNotificationSink.from_url(settings.REDIS_URL)
    orchestrator = Orchestrator.from_settings(
        settings,
        JobRepository(get_session_factory()),
        default_registry(settings),
        sink,
    )
    app.state.orchestrator = orchestrator

    # Timers live in memory only; re-arm every job the store still marks active.
    await orchestrator.resume()

    yield

    await orchestrator.shutdown()
    await sink.aclose()
    await close_db()
    logger.info("%s shut down", settings.APP_NAME)


app = FastAPI(
    title="ClipWeaver API",
    description="Multi-provider asynchronous video generation",
    version=__version__,
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_exception_handler(ClipWeaverError, clipweaver_error_handler)

app.include_router(api_router)
app.include_router(ws_router)


@app.get("/health")
async def health():
    return {"service": settings.APP_NAME, "status": "healthy"}
