"""
Waiting queue operations: join, leave, edit departure time, scored
snapshots and the daily reset.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.database.models import Profile, ACTIVE_MATCH_STATUSES
from rallygogo.services import data_service
from rallygogo.services.errors import ConflictError, NotFoundError, ValidationError
from rallygogo.services.priority_service import calculate_priority_score, score_queue
from rallygogo.utils.datetime_utils import parse_hhmm, utcnow

logger = logging.getLogger(__name__)


def validate_departure_time(departure_time: Optional[str]) -> Optional[str]:
    """Normalize an optional HH:MM string to zero-padded form."""
    if departure_time is None or departure_time == "":
        return None
    parsed = parse_hhmm(departure_time)
    if parsed is None:
        raise ValidationError(f"Departure time must be HH:MM, got {departure_time!r}")
    return f"{parsed[0]:02d}:{parsed[1]:02d}"


def build_candidate(entry_dict: Dict) -> Dict:
    """Shape a joined queue row as a scorer/generator candidate."""
    return {
        "player_id": entry_dict["player_id"],
        "joined_at": entry_dict["joined_at"],
        "departure_time": entry_dict["departure_time"],
        "priority_score": entry_dict["priority_score"],
        "profile": entry_dict.get("profile") or {},
    }


async def join_queue(
    session: AsyncSession,
    player_id: int,
    departure_time: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Put a player in the waiting queue.

    Raises:
        ValidationError: malformed departure time
        NotFoundError: unknown player
        ConflictError: already queued or seated in an active match
    """
    departure = validate_departure_time(departure_time)
    profile = await data_service.get_profile(session, player_id)
    if profile is None:
        raise NotFoundError(f"Player {player_id} not found")

    if await data_service.get_queue_entry(session, player_id) is not None:
        raise ConflictError("Player is already in the queue")
    seated = await data_service.find_seated_player_ids(
        session, [player_id], statuses=ACTIVE_MATCH_STATUSES
    )
    if seated:
        raise ConflictError("Player is currently assigned to a match")

    now = now or utcnow()
    profile.departure_time = departure
    profile_dict = data_service.profile_to_dict(profile)
    score = calculate_priority_score(
        {"joined_at": now, "departure_time": departure, "profile": profile_dict}, now
    )
    inserted = await data_service.insert_queue_entries(session, [{
        "player_id": player_id,
        "joined_at": now,
        "departure_time": departure,
        "priority_score": score,
    }])
    if not inserted:
        raise ConflictError("Player is already in the queue")
    await data_service.commit_or_raise(session)
    logger.info(f"Player {player_id} joined the queue (departure {departure or '-'})")

    entry = await data_service.get_queue_entry(session, player_id)
    return data_service.queue_entry_to_dict(entry, profile)


async def leave_queue(session: AsyncSession, player_id: int) -> bool:
    """Remove a player's queue entry. Returns False if they were not queued."""
    removed = await data_service.delete_queue_entries(session, [player_id])
    await data_service.commit_or_raise(session)
    if removed:
        logger.info(f"Player {player_id} left the queue")
    return removed > 0


async def update_departure_time(
    session: AsyncSession, player_id: int, departure_time: Optional[str]
) -> Dict:
    """Change the stated departure time of a queued player."""
    departure = validate_departure_time(departure_time)
    updated = await data_service.update_queue_entry(
        session, player_id, {"departure_time": departure}
    )
    if not updated:
        raise NotFoundError("Player is not in the queue")
    await data_service.update_profile(session, player_id, {"departure_time": departure})
    await data_service.commit_or_raise(session)

    entry = await data_service.get_queue_entry(session, player_id)
    return data_service.queue_entry_to_dict(entry)


async def get_scored_queue(
    session: AsyncSession, now: Optional[datetime] = None, persist: bool = True
) -> List[Dict]:
    """
    Active queue scored and sorted by priority (highest first).

    Ties keep join order. With ``persist`` the fresh scores are written
    back for display.
    """
    now = now or utcnow()
    rows = await data_service.list_active_queue(session)
    candidates = [
        build_candidate(data_service.queue_entry_to_dict(entry, profile))
        for entry, profile in rows
    ]
    scored = score_queue(candidates, now)

    if persist and scored:
        await data_service.update_priority_scores(
            session, {c["player_id"]: c["priority_score"] for c in scored}
        )
        await data_service.commit_or_raise(session)
    return scored


async def reset_queue(session: AsyncSession, commit: bool = True) -> Dict:
    """
    Daily reset: empty the queue and roll today's game counts into history.

    With ``commit=False`` the caller owns the transaction.
    """
    removed = await data_service.delete_all_queue_entries(session)
    await session.execute(
        update(Profile)
        .where(Profile.games_played_today > 0)
        .values(
            total_games_history=Profile.total_games_history + Profile.games_played_today,
            games_played_today=0,
        )
        .execution_options(synchronize_session=False)
    )
    if commit:
        await data_service.commit_or_raise(session)
    logger.info(f"Queue reset: removed {removed} entr{'y' if removed == 1 else 'ies'}")
    return {"removed": removed}
