"""Profile, ranking and guest registration route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.api.auth_dependencies import get_current_player
from rallygogo.api.routes import SERVICE_ERRORS, to_http_exception
from rallygogo.database.db import get_db_session
from rallygogo.models.schemas import GuestRegistration, ProfileCreate
from rallygogo.services import profile_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/profiles")
async def create_profile(
    payload: ProfileCreate,
    session: AsyncSession = Depends(get_db_session),
):
    """Create a member profile (called by the signup flow)."""
    try:
        profile = await profile_service.create_profile(
            session, payload.name, gender=payload.gender, email=payload.email, ntrp=payload.ntrp
        )
        return {"status": "success", "profile": profile}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error creating profile: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating profile: {str(e)}")


@router.get("/api/profiles")
async def list_profiles(
    is_guest: Optional[bool] = None,
    sort_by: Optional[str] = None,
    limit: Optional[int] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Rankings and player listing.

    Args:
        is_guest: Filter guests (true) or members (false)
        sort_by: Rating field to sort by, e.g. elo_mixed_doubles
        limit: Maximum number of profiles
    """
    try:
        return await profile_service.list_profiles(
            session, is_guest=is_guest, sort_by=sort_by, limit=limit
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error listing profiles: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error listing profiles: {str(e)}")


@router.get("/api/profiles/{profile_id}")
async def get_profile(profile_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await profile_service.get_profile(session, profile_id)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error getting profile {profile_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error getting profile: {str(e)}")


@router.get("/api/profiles/{profile_id}/rating-history")
async def get_rating_history(profile_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await profile_service.get_rating_history(session, profile_id)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error getting rating history for {profile_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error getting rating history: {str(e)}")


@router.get("/api/profiles/{profile_id}/partner-recommendation")
async def get_partner_recommendation(
    profile_id: int, session: AsyncSession = Depends(get_db_session)
):
    """Best recent partner by win rate (null when nobody has 2+ games together)."""
    try:
        return {"recommendation": await profile_service.recommend_partner(session, profile_id)}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error recommending partner for {profile_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error recommending partner: {str(e)}")


@router.post("/api/guests")
async def register_guest(
    payload: GuestRegistration,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Register a walk-in guest and queue them right away."""
    try:
        result = await profile_service.register_guest(
            session,
            payload.name,
            payload.gender,
            payload.ntrp,
            departure_time=payload.departure_time,
        )
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error registering guest: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error registering guest: {str(e)}")
