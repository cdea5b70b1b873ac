"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from rallygogo.services.errors import (
    ValidationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    DependencyError,
)

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# ---------------------------------------------------------------------------
# Service error mapping
# ---------------------------------------------------------------------------
SERVICE_ERRORS = (ValidationError, ConflictError, PermissionDeniedError, DependencyError)


def to_http_exception(error: Exception) -> HTTPException:
    """Translate a service error into the matching HTTP error."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, DependencyError):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from rallygogo.api.routes.queue import router as queue_router  # noqa: E402
from rallygogo.api.routes.matches import router as matches_router  # noqa: E402
from rallygogo.api.routes.profiles import router as profiles_router  # noqa: E402
from rallygogo.api.routes.admin import router as admin_router  # noqa: E402

router = APIRouter()
router.include_router(queue_router)
router.include_router(matches_router)
router.include_router(profiles_router)
router.include_router(admin_router)
