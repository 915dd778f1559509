"""Gatekeeper - sessions, two-factor and verification codes API."""
import asyncio
from contextlib import asynccontextmanager, suppress
import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url

from app.config import get_settings
from app.errors import register_error_handlers

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: Create tables and start the cleanup sweep
    from app.database import Base, engine
    from app.services.reaper import run_periodically

    # Import all models so they're registered with Base
    from app import models  # noqa: F401

    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=engine)

    sweeper = None
    if settings.reaper_interval_seconds > 0:
        sweeper = asyncio.create_task(run_periodically(settings.reaper_interval_seconds))
        logger.info(f"Session sweep every {settings.reaper_interval_seconds}s")

    yield

    # Shutdown: stop the sweep; cron or the next process picks it up
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(
    title=settings.app_name,
    description="Sessions, two-factor authentication and verification codes",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.public_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}


# Import and include routers
from app.api import auth, sessions, two_factor, users, verification  # noqa: E402

app.include_router(auth.router, prefix="/api")
app.include_router(two_factor.router, prefix="/api")
app.include_router(sessions.router, prefix="/api")
app.include_router(verification.router, prefix="/api")
app.include_router(users.router, prefix="/api")
