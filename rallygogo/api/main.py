"""
RallyGoGo API Server

FastAPI server for the venue queue, court matches and ratings.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from rallygogo.api.routes import router, limiter as routes_limiter
from rallygogo.database import db
from rallygogo.services import settings_service
from rallygogo.services.queue_reset_service import get_queue_reset_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
# Note: Database setting will be checked after database initialization
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def apply_log_level_setting() -> None:
    """Apply the ``log_level`` database setting over the environment value, if set."""
    async with db.AsyncSessionLocal() as session:
        log_level_setting = await settings_service.get_setting_with_fallback(session, "log_level")
    if log_level_setting:
        log_level_name = log_level_setting.upper()
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level_name, logging.INFO))
        logger.info(f"Log level set from database: {log_level_name}")
    else:
        logger.info(f"Log level set from environment: {log_level}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up RallyGoGo API...")

    # Create tables not yet covered by migrations
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    try:
        await apply_log_level_setting()
    except Exception as e:
        logger.warning(f"Could not load log level from database, using environment: {e}")

    # Start daily queue reset worker
    try:
        get_queue_reset_service().start()
        logger.info("Queue reset worker started")
    except Exception as e:
        logger.error(f"Failed to start queue reset worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down RallyGoGo API...")

    try:
        get_queue_reset_service().stop()
        logger.info("Queue reset worker stopped")
    except Exception as e:
        logger.error(f"Error stopping queue reset worker: {e}", exc_info=True)

    try:
        await settings_service.close_redis_connection()
        logger.info("Redis connection closed")
    except Exception as e:
        logger.error(f"Error closing Redis connection: {e}", exc_info=True)


app = FastAPI(
    title="RallyGoGo API",
    description="Court queue, matchmaking and rating API for tennis and pickleball venues",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
