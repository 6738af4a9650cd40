"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from runclub.routers import auth, billing, clubs, live, profile
from runclub.supabase_client import close_data_service, get_data_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    try:
        await get_data_service()
        logger.info("Supabase client ready")
    except Exception as e:
        logger.warning("Supabase client not initialised at startup: %s", e)

    yield

    try:
        await close_data_service()
    except Exception as e:
        logger.warning("Error closing Supabase channels: %s", e)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Run Club",
        description="Running-club community API with live membership rosters.",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    for r in [auth, profile, clubs, billing, live]:
        app.include_router(r.router)

    return app
