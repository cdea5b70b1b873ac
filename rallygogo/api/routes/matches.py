"""Court and match lifecycle route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.api.auth_dependencies import get_current_player
from rallygogo.api.routes import limiter, SERVICE_ERRORS, to_http_exception
from rallygogo.database.db import get_db_session
from rallygogo.database.models import MatchType
from rallygogo.models.schemas import (
    AutoMatchRequest,
    ConfirmRequest,
    ManualMatchRequest,
    MatchResponse,
    MvpVoteRequest,
    ReportScoreRequest,
    SwapPlayerRequest,
)
from rallygogo.services import match_service
from rallygogo.services.errors import ValidationError

logger = logging.getLogger(__name__)
router = APIRouter()


def _match_type(value: str) -> MatchType:
    try:
        return MatchType(value)
    except ValueError:
        raise ValidationError(f"Unknown match type {value!r}")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@router.get("/api/matches", response_model=List[MatchResponse])
async def list_matches(session: AsyncSession = Depends(get_db_session)):
    """All matches on courts or awaiting resolution."""
    try:
        return await match_service.list_court_matches(session)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error listing matches: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error listing matches: {str(e)}")


@router.get("/api/matches/{match_id}", response_model=MatchResponse)
async def get_match(match_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await match_service.get_match(session, match_id)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error getting match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error getting match: {str(e)}")


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


@router.post("/api/courts/{court_name}/auto-match")
async def create_auto_match(
    court_name: str,
    payload: AutoMatchRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Fill a free court from the queue."""
    try:
        match = await match_service.create_auto_match(
            session, court_name, _match_type(payload.match_type)
        )
        return {"status": "success", "match": match}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error creating auto match on {court_name}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating match: {str(e)}")


@router.post("/api/courts/{court_name}/manual-match")
async def create_manual_match(
    court_name: str,
    payload: ManualMatchRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Seat hand-picked queued players on a free court."""
    try:
        match = await match_service.create_manual_match(
            session, court_name, payload.player_ids, _match_type(payload.match_type)
        )
        return {"status": "success", "match": match}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error creating manual match on {court_name}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating match: {str(e)}")


# ---------------------------------------------------------------------------
# Court operations
# ---------------------------------------------------------------------------


@router.post("/api/matches/{match_id}/start")
async def start_match(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return {"status": "success", "match": await match_service.start_match(session, match_id)}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error starting match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error starting match: {str(e)}")


@router.post("/api/matches/{match_id}/end")
async def end_match(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return {"status": "success", "match": await match_service.end_match(session, match_id)}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error ending match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error ending match: {str(e)}")


@router.post("/api/matches/{match_id}/cancel")
async def cancel_match(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel a DRAFT match; its players go back to the queue."""
    try:
        result = await match_service.cancel_match(session, match_id)
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error canceling match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error canceling match: {str(e)}")


@router.post("/api/matches/{match_id}/swap")
async def swap_player(
    match_id: int,
    payload: SwapPlayerRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Replace one seated player with a queued one."""
    try:
        match = await match_service.swap_player(
            session, match_id, payload.slot, payload.replacement_id
        )
        return {"status": "success", "match": match}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error swapping player in match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error swapping player: {str(e)}")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@router.post("/api/matches/{match_id}/report")
@limiter.limit("20/minute")
async def report_score(
    request: Request,
    match_id: int,
    payload: ReportScoreRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Submit the final score. The court is released immediately; ratings wait
    for the other team's confirmation.
    """
    try:
        match = await match_service.report_score(
            session,
            match_id,
            player["id"],
            payload.score_team1,
            payload.score_team2,
            is_tournament=payload.is_tournament,
            tournament_code=payload.tournament_code,
        )
        return {"status": "success", "match": match}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error reporting score for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error reporting score: {str(e)}")


@router.post("/api/matches/{match_id}/confirm")
@limiter.limit("20/minute")
async def confirm_match(
    request: Request,
    match_id: int,
    payload: ConfirmRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Confirm a reported score. Safe to retry with the same client_request_id."""
    try:
        result = await match_service.confirm_match(
            session, match_id, player["id"], payload.client_request_id
        )
        return {"status": "success", **result}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error confirming match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error confirming match: {str(e)}")


@router.post("/api/matches/{match_id}/reject")
async def reject_match(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Dispute a reported score."""
    try:
        match = await match_service.reject_match(session, match_id, player["id"])
        return {"status": "success", "match": match}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error rejecting match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error rejecting match: {str(e)}")


@router.post("/api/matches/{match_id}/mvp")
async def vote_mvp(
    match_id: int,
    payload: MvpVoteRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        vote = await match_service.vote_mvp(
            session, match_id, player["id"], payload.target_id, payload.tag
        )
        return {"status": "success", "vote": vote}
    except SERVICE_ERRORS as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error voting MVP for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error voting MVP: {str(e)}")
