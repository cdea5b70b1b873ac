"""
Settings service for runtime configuration with database overrides.

Checks database settings first, then falls back to environment variables.
Uses Redis for distributed caching across instances; when Redis is
unreachable the cache is skipped and reads go to the database.
"""

import os
import logging
from typing import Optional
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession
from dotenv import load_dotenv

from rallygogo.services import data_service

load_dotenv()

logger = logging.getLogger(__name__)

# Redis configuration
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
CACHE_TTL_SECONDS = 60  # Cache settings for 60 seconds
REDIS_KEY_PREFIX = "rallygogo:settings:"

# Global Redis client (initialized on first use)
_redis_client: Optional[Redis] = None


def get_bool_env(key: str, default: bool = True) -> bool:
    """
    Parse a boolean environment variable from a string value.

    Args:
        key: Environment variable name
        default: Default value if the variable is not set

    Returns:
        bool: Parsed boolean value
    """
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


async def get_redis_client() -> Optional[Redis]:
    """
    Get or create the Redis client connection.

    Returns:
        Redis client, or None if caching is disabled or Redis is unreachable
    """
    global _redis_client

    if not get_bool_env("SETTINGS_CACHE_ENABLED", True):
        return None

    if _redis_client is not None:
        return _redis_client

    try:
        client = Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            db=REDIS_DB,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        await client.ping()
        logger.info(f"Connected to Redis at {REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}")
        _redis_client = client
        return _redis_client
    except Exception as e:
        logger.warning(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}: {e}")
        return None


async def close_redis_connection() -> None:
    """Close the Redis client if one was opened."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


async def _get_cached_setting(key: str) -> Optional[str]:
    """Get cached setting value from Redis."""
    try:
        redis_client = await get_redis_client()
        if redis_client is None:
            return None
        return await redis_client.get(f"{REDIS_KEY_PREFIX}{key}")
    except Exception as e:
        logger.warning(f"Error getting cached setting {key} from Redis: {e}")
        return None


async def _set_cached_setting(key: str, value: Optional[str]) -> None:
    """Cache a setting value in Redis with TTL (None evicts it)."""
    try:
        redis_client = await get_redis_client()
        if redis_client is None:
            return
        redis_key = f"{REDIS_KEY_PREFIX}{key}"
        if value is not None:
            await redis_client.setex(redis_key, CACHE_TTL_SECONDS, value)
        else:
            await redis_client.delete(redis_key)
    except Exception as e:
        logger.warning(f"Error setting cached setting {key} in Redis: {e}")


async def get_setting_with_fallback(
    session: Optional[AsyncSession],
    key: str,
    env_var: Optional[str] = None,
    default: Optional[str] = None,
    fallback_to_cache: bool = True,
) -> Optional[str]:
    """
    Get a setting value from the database first, then cache, env var, default.

    Args:
        session: Database session (optional)
        key: Setting key in database
        env_var: Environment variable name to fall back to
        default: Default value if nothing else is set
        fallback_to_cache: If True, consult Redis when the database has no value

    Returns:
        Setting value as string, or None
    """
    if session is not None:
        value = await data_service.get_setting(session, key)
        if value is not None:
            await _set_cached_setting(key, value)
            return value

    if fallback_to_cache and session is None:
        cached = await _get_cached_setting(key)
        if cached is not None:
            return cached

    if env_var:
        value = os.getenv(env_var)
        if value is not None:
            return value

    return default


async def update_setting(session: AsyncSession, key: str, value: str) -> None:
    """Persist a setting and refresh its cache entry."""
    await data_service.set_setting(session, key, value)
    await _set_cached_setting(key, value)


async def get_tournament_code(session: AsyncSession) -> Optional[str]:
    """
    The code required to report a tournament score.

    Never defaults to a built-in value: with nothing configured,
    tournament submissions are refused.
    """
    code = await get_setting_with_fallback(
        session, "tournament_code", env_var="TOURNAMENT_CODE", fallback_to_cache=False
    )
    return code or None
