"""Admin route handlers: profile maintenance, overrides, resets and settings."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.api.auth_dependencies import require_admin
from rallygogo.api.routes import SERVICE_ERRORS, to_http_exception
from rallygogo.database.db import get_db_session
from rallygogo.models.schemas import ConfirmRequest, DynamicRatingRequest, ProfileUpdate, SettingUpdate
from rallygogo.services import match_service, profile_service, queue_service, settings_service

logger = logging.getLogger(__name__)
router = APIRouter()

# Settings an admin may change at runtime
EDITABLE_SETTINGS = {"tournament_code", "log_level"}


@router.patch("/api/admin/profiles/{profile_id}")
async def update_profile(
    profile_id: int,
    payload: ProfileUpdate,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        fields = payload.model_dump(exclude_unset=True)
        profile = await profile_service.update_profile(session, profile_id, fields)
        return {"status": "success", "profile": profile}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error updating profile {profile_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating profile: {str(e)}")


@router.delete("/api/admin/profiles/{profile_id}")
async def delete_profile(
    profile_id: int,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await profile_service.delete_profile(session, profile_id)
        return {"status": "success"}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error deleting profile {profile_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error deleting profile: {str(e)}")


@router.post("/api/admin/matches/{match_id}/force-confirm")
async def force_confirm(
    match_id: int,
    payload: ConfirmRequest,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Resolve a PENDING or DISPUTED match as admin."""
    try:
        result = await match_service.admin_force_confirm(
            session, match_id, admin["id"], payload.client_request_id
        )
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error force-confirming match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error confirming match: {str(e)}")


@router.post("/api/admin/matches/{match_id}/rollback")
async def rollback_match(
    match_id: int,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a reported or finished match, reverting applied ratings."""
    try:
        result = await match_service.rollback_match(session, match_id)
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error rolling back match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error rolling back match: {str(e)}")


@router.post("/api/admin/queue/reset")
async def reset_queue(
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        result = await queue_service.reset_queue(session)
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error resetting queue: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error resetting queue: {str(e)}")


@router.post("/api/admin/guests/purge")
async def purge_guests(
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        result = await profile_service.purge_guests(session)
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error purging guests: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error purging guests: {str(e)}")


@router.post("/api/admin/season/soft-reset")
async def soft_reset_season(
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Compress all ratings halfway toward 1200."""
    try:
        result = await profile_service.soft_reset_season(session)
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error applying season reset: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error applying season reset: {str(e)}")


@router.post("/api/admin/ratings/apply")
async def apply_dynamic_rating(
    payload: DynamicRatingRequest,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Administrative rating recompute with per-player K."""
    try:
        updates = await profile_service.apply_dynamic_rating_update(
            session,
            payload.category,
            payload.winner_ids,
            payload.loser_ids,
            is_tournament=payload.is_tournament,
            match_id=payload.match_id,
        )
        return {"status": "success", "updates": updates}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error applying rating update: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error applying rating update: {str(e)}")


@router.put("/api/admin/settings/{key}")
async def update_setting(
    key: str,
    payload: SettingUpdate,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        if key not in EDITABLE_SETTINGS:
            raise HTTPException(status_code=400, detail=f"Setting {key!r} cannot be changed")
        await settings_service.update_setting(session, key, payload.value)
        if key == "log_level":
            numeric_level = getattr(logging, payload.value.upper(), None)
            if isinstance(numeric_level, int):
                logging.getLogger().setLevel(numeric_level)
        return {"status": "success", "key": key}
    except HTTPException:
        raise
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error updating setting {key}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating setting: {str(e)}")
