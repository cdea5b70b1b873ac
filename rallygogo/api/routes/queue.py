"""Waiting queue route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.api.auth_dependencies import get_current_player
from rallygogo.api.routes import limiter, SERVICE_ERRORS, to_http_exception
from rallygogo.database.db import get_db_session
from rallygogo.models.schemas import JoinQueueRequest, QueueEntryResponse, UpdateDepartureRequest
from rallygogo.services import queue_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/queue", response_model=List[QueueEntryResponse])
async def get_queue(session: AsyncSession = Depends(get_db_session)):
    """Waiting queue, highest priority first."""
    try:
        return await queue_service.get_scored_queue(session)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error getting queue: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error getting queue: {str(e)}")


@router.post("/api/queue")
@limiter.limit("30/minute")
async def join_queue(
    request: Request,
    payload: JoinQueueRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Join the waiting queue. Body: { departure_time?: "HH:MM" }"""
    try:
        entry = await queue_service.join_queue(session, player["id"], payload.departure_time)
        return {"status": "success", "entry": entry}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error joining queue: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error joining queue: {str(e)}")


@router.patch("/api/queue/me")
async def update_departure_time(
    payload: UpdateDepartureRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Change the stated departure time."""
    try:
        entry = await queue_service.update_departure_time(
            session, player["id"], payload.departure_time
        )
        return {"status": "success", "entry": entry}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error updating departure time: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating departure time: {str(e)}")


@router.delete("/api/queue/me")
async def leave_queue(
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Leave the waiting queue."""
    try:
        removed = await queue_service.leave_queue(session, player["id"])
        if not removed:
            raise HTTPException(status_code=404, detail="Not in the queue")
        return {"status": "success"}
    except HTTPException:
        raise
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error leaving queue: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error leaving queue: {str(e)}")
