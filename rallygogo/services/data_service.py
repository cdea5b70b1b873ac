"""
Data service layer for database operations.

Implements the store contracts the core needs (profiles, queue, matches,
rating history, settings) plus the atomic multi-write used when a result
is confirmed. Functions flush but do not commit unless their docstring
says so; the calling service commits through ``commit_or_raise``.
"""

import json
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.database.models import (
    Profile,
    QueueEntry,
    Match,
    MatchStatus,
    RatingHistory,
    MatchEvent,
    MvpVote,
    Setting,
    OPEN_MATCH_STATUSES,
)
from rallygogo.services.errors import ConflictError, DependencyError
from rallygogo.utils.datetime_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

PROFILE_SORT_FIELDS = (
    "elo_men_doubles",
    "elo_women_doubles",
    "elo_mixed_doubles",
    "elo_singles",
    "name",
    "created_at",
)


#
# Helper functions
#

async def commit_or_raise(session: AsyncSession) -> None:
    """
    Commit the session, mapping store failures to service errors.

    IntegrityError becomes ConflictError (a concurrent writer won the race);
    any other SQLAlchemy failure becomes DependencyError. The session is
    rolled back before raising.
    """
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Commit conflict: {e.orig}")
        raise ConflictError("Concurrent update conflict, refresh and retry") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Commit failed: {e}", exc_info=True)
        raise DependencyError("Storage unavailable") from e


async def flush_or_raise(session: AsyncSession) -> None:
    """Flush pending writes with the same error mapping as ``commit_or_raise``."""
    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError("Concurrent update conflict, refresh and retry") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Flush failed: {e}", exc_info=True)
        raise DependencyError("Storage unavailable") from e


def _iso(value) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


def profile_to_dict(profile: Profile) -> Dict:
    """Serialize a Profile row."""
    return {
        "id": profile.id,
        "name": profile.name,
        "email": profile.email,
        "gender": profile.gender,
        "is_guest": bool(profile.is_guest),
        "ntrp": profile.ntrp,
        "role": profile.role,
        "elo_men_doubles": profile.elo_men_doubles,
        "elo_women_doubles": profile.elo_women_doubles,
        "elo_mixed_doubles": profile.elo_mixed_doubles,
        "elo_singles": profile.elo_singles,
        "games_played_today": profile.games_played_today,
        "total_games_history": profile.total_games_history,
        "departure_time": profile.departure_time,
        "admin_memo": profile.admin_memo,
        "created_at": _iso(profile.created_at),
    }


def queue_entry_to_dict(entry: QueueEntry, profile: Optional[Profile] = None) -> Dict:
    """Serialize a queue entry, joined with its profile when given."""
    result = {
        "id": entry.id,
        "player_id": entry.player_id,
        "joined_at": _iso(entry.joined_at),
        "departure_time": entry.departure_time,
        "priority_score": entry.priority_score,
        "is_active": bool(entry.is_active),
    }
    if profile is not None:
        result["profile"] = profile_to_dict(profile)
    return result


def match_to_dict(match: Match) -> Dict:
    """Serialize a Match row."""
    return {
        "id": match.id,
        "court_name": match.court_name,
        "status": _enum_value(match.status),
        "player_1": match.player_1,
        "player_2": match.player_2,
        "player_3": match.player_3,
        "player_4": match.player_4,
        "match_category": _enum_value(match.match_category),
        "match_type": _enum_value(match.match_type),
        "score_team1": match.score_team1,
        "score_team2": match.score_team2,
        "winner_team": _enum_value(match.winner_team),
        "reported_by": match.reported_by,
        "confirmed_by": match.confirmed_by,
        "start_time": _iso(match.start_time),
        "end_time": _iso(match.end_time),
    }


def rating_history_to_dict(entry: RatingHistory) -> Dict:
    """Serialize a rating history row."""
    return {
        "id": entry.id,
        "player_id": entry.player_id,
        "match_id": entry.match_id,
        "category": _enum_value(entry.category),
        "rating_after": entry.rating_after,
        "delta": entry.delta,
        "is_compensation": bool(entry.is_compensation),
        "created_at": _iso(entry.created_at),
    }


#
# Profile store
#

async def get_profile(session: AsyncSession, profile_id: int) -> Optional[Profile]:
    result = await session.execute(
        select(Profile).where(Profile.id == profile_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_profiles(session: AsyncSession, profile_ids: Iterable[int]) -> List[Profile]:
    """Fetch several profiles; missing ids are simply absent from the result."""
    ids = [pid for pid in profile_ids if pid is not None]
    if not ids:
        return []
    result = await session.execute(
        select(Profile).where(Profile.id.in_(ids)).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def insert_profile(session: AsyncSession, **fields) -> Profile:
    profile = Profile(**fields)
    session.add(profile)
    await flush_or_raise(session)
    return profile


async def update_profile(session: AsyncSession, profile_id: int, fields: Dict) -> Optional[Profile]:
    """Apply column updates to a profile. Returns None if it does not exist."""
    profile = await get_profile(session, profile_id)
    if profile is None:
        return None
    for key, value in fields.items():
        setattr(profile, key, value)
    await flush_or_raise(session)
    return profile


async def delete_profile(session: AsyncSession, profile_id: int) -> bool:
    result = await session.execute(delete(Profile).where(Profile.id == profile_id))
    return result.rowcount > 0


async def list_profiles(
    session: AsyncSession,
    is_guest: Optional[bool] = None,
    sort_by: Optional[str] = None,
    descending: bool = True,
    limit: Optional[int] = None,
) -> List[Profile]:
    """
    List profiles, optionally filtered by guest flag and sorted by a rating field.

    Args:
        session: Database session
        is_guest: Only guests (True), only members (False) or everyone (None)
        sort_by: One of PROFILE_SORT_FIELDS
        descending: Sort direction
        limit: Maximum number of rows
    """
    query = select(Profile)
    if is_guest is not None:
        query = query.where(Profile.is_guest == is_guest)
    if sort_by:
        if sort_by not in PROFILE_SORT_FIELDS:
            raise ValueError(f"Cannot sort profiles by {sort_by!r}")
        column = getattr(Profile, sort_by)
        query = query.order_by(column.desc() if descending else column.asc(), Profile.id)
    else:
        query = query.order_by(Profile.id)
    if limit:
        query = query.limit(limit)
    result = await session.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


#
# Queue store
#

async def list_active_queue(session: AsyncSession):
    """Active queue entries joined with their profiles, oldest first."""
    result = await session.execute(
        select(QueueEntry, Profile)
        .join(Profile, QueueEntry.player_id == Profile.id)
        .where(QueueEntry.is_active == True)  # noqa: E712
        .order_by(QueueEntry.joined_at, QueueEntry.id)
        .execution_options(populate_existing=True)
    )
    return list(result.all())


async def get_queue_entry(session: AsyncSession, player_id: int) -> Optional[QueueEntry]:
    result = await session.execute(select(QueueEntry).where(QueueEntry.player_id == player_id))
    return result.scalar_one_or_none()


async def get_queued_player_ids(session: AsyncSession, player_ids: Iterable[int]) -> set:
    ids = [pid for pid in player_ids if pid is not None]
    if not ids:
        return set()
    result = await session.execute(
        select(QueueEntry.player_id).where(QueueEntry.player_id.in_(ids))
    )
    return set(result.scalars().all())


async def insert_queue_entries(session: AsyncSession, entries: Sequence[Dict]) -> List[int]:
    """
    Queue players who are not already queued.

    Each entry is ``{"player_id", "departure_time", "priority_score"}``
    (``joined_at`` defaults to now). Returns the player ids inserted.
    """
    already = await get_queued_player_ids(session, [e["player_id"] for e in entries])
    now = utcnow()
    inserted = []
    for entry in entries:
        if entry["player_id"] in already or entry["player_id"] in inserted:
            continue
        session.add(QueueEntry(
            player_id=entry["player_id"],
            joined_at=entry.get("joined_at") or now,
            departure_time=entry.get("departure_time"),
            priority_score=entry.get("priority_score", 0),
            is_active=True,
        ))
        inserted.append(entry["player_id"])
    await flush_or_raise(session)
    return inserted


async def update_queue_entry(session: AsyncSession, player_id: int, fields: Dict) -> int:
    result = await session.execute(
        update(QueueEntry).where(QueueEntry.player_id == player_id).values(**fields)
    )
    return result.rowcount


async def update_priority_scores(session: AsyncSession, scores: Dict[int, int]) -> None:
    """Persist computed priority scores (display only) keyed by player id."""
    for player_id, score in scores.items():
        await session.execute(
            update(QueueEntry)
            .where(QueueEntry.player_id == player_id)
            .values(priority_score=score)
        )


async def delete_queue_entries(session: AsyncSession, player_ids: Iterable[int]) -> int:
    """Delete queue entries for the given players; returns rows removed."""
    ids = [pid for pid in player_ids if pid is not None]
    if not ids:
        return 0
    result = await session.execute(delete(QueueEntry).where(QueueEntry.player_id.in_(ids)))
    return result.rowcount


async def delete_all_queue_entries(session: AsyncSession) -> int:
    result = await session.execute(delete(QueueEntry))
    return result.rowcount


#
# Match store
#

async def get_match(session: AsyncSession, match_id: int) -> Optional[Match]:
    result = await session.execute(
        select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_matches_by_status(
    session: AsyncSession, statuses: Iterable[MatchStatus]
) -> List[Match]:
    result = await session.execute(
        select(Match)
        .where(Match.status.in_(list(statuses)))
        .order_by(Match.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_court_match(session: AsyncSession, court_name: str) -> Optional[Match]:
    result = await session.execute(select(Match).where(Match.court_name == court_name))
    return result.scalar_one_or_none()


async def find_seated_player_ids(
    session: AsyncSession, player_ids: Iterable[int], statuses=OPEN_MATCH_STATUSES
) -> set:
    """Players among ``player_ids`` who sit in a match with one of ``statuses``."""
    ids = [pid for pid in player_ids if pid is not None]
    if not ids:
        return set()
    result = await session.execute(
        select(Match).where(
            Match.status.in_(list(statuses)),
            or_(
                Match.player_1.in_(ids),
                Match.player_2.in_(ids),
                Match.player_3.in_(ids),
                Match.player_4.in_(ids),
            ),
        )
    )
    seated = set()
    for match in result.scalars().all():
        seated.update(pid for pid in match.player_ids if pid in ids)
    return seated


async def insert_match_if_court_free(
    session: AsyncSession, fields: Dict, dequeue_player_ids: Sequence[int]
) -> Match:
    """
    Create a match on a free court and take its players off the queue, atomically.

    The unique ``court_name`` column makes the court check race-free: a
    concurrent creator on the same court fails at flush. If any player's
    queue entry is already gone the snapshot was stale and the whole unit
    is rolled back. Commits on success.

    Raises:
        ConflictError: court occupied or a player no longer queued
    """
    existing = await get_court_match(session, fields["court_name"])
    if existing is not None:
        raise ConflictError(f"Court {fields['court_name']} already has an active match")

    match = Match(**fields)
    session.add(match)
    await flush_or_raise(session)

    removed = await delete_queue_entries(session, dequeue_player_ids)
    if removed != len(set(dequeue_player_ids)):
        await session.rollback()
        raise ConflictError("A selected player is no longer in the queue")

    await commit_or_raise(session)
    return match


async def transition_match(
    session: AsyncSession,
    match_id: int,
    from_statuses: Iterable[MatchStatus],
    values: Dict,
) -> bool:
    """
    Conditionally update a match only while it is in one of ``from_statuses``.

    Returns False when another writer moved the match first.
    """
    result = await session.execute(
        update(Match)
        .where(Match.id == match_id, Match.status.in_(list(from_statuses)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def delete_match(session: AsyncSession, match_id: int) -> bool:
    await session.execute(delete(MvpVote).where(MvpVote.match_id == match_id))
    result = await session.execute(delete(Match).where(Match.id == match_id))
    return result.rowcount > 0


#
# Rating history store
#

async def insert_rating_history(session: AsyncSession, entries: Sequence[Dict]) -> None:
    for entry in entries:
        session.add(RatingHistory(**entry))
    await flush_or_raise(session)


async def list_rating_history(session: AsyncSession, player_id: int) -> List[RatingHistory]:
    result = await session.execute(
        select(RatingHistory)
        .where(RatingHistory.player_id == player_id)
        .order_by(RatingHistory.created_at, RatingHistory.id)
    )
    return list(result.scalars().all())


async def list_match_rating_history(session: AsyncSession, match_id: int) -> List[RatingHistory]:
    result = await session.execute(
        select(RatingHistory)
        .where(RatingHistory.match_id == match_id, RatingHistory.is_compensation == False)  # noqa: E712
        .order_by(RatingHistory.id)
    )
    return list(result.scalars().all())


#
# Rating writes
#

async def apply_rating_delta(
    session: AsyncSession, player_id: int, field: str, delta: int
) -> Optional[int]:
    """
    Add ``delta`` to a profile rating column in place and return the new value.

    Incrementing in SQL keeps concurrent confirmations for different matches
    from overwriting each other.
    """
    column = getattr(Profile, field)
    result = await session.execute(
        update(Profile)
        .where(Profile.id == player_id)
        .values({field: column + delta})
        .returning(column)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def increment_games_played(session: AsyncSession, player_ids: Iterable[int]) -> None:
    ids = [pid for pid in player_ids if pid is not None]
    if not ids:
        return
    await session.execute(
        update(Profile)
        .where(Profile.id.in_(ids))
        .values(games_played_today=Profile.games_played_today + 1)
        .execution_options(synchronize_session=False)
    )


#
# Match events (idempotency ledger)
#

async def get_match_event(session: AsyncSession, client_request_id: str) -> Optional[MatchEvent]:
    result = await session.execute(
        select(MatchEvent).where(MatchEvent.client_request_id == client_request_id)
    )
    return result.scalar_one_or_none()


def event_payload(event: MatchEvent) -> Dict:
    return json.loads(event.payload) if event.payload else {}


async def apply_match_transaction(
    session: AsyncSession,
    *,
    match_id: int,
    from_statuses: Iterable[MatchStatus],
    match_values: Dict,
    rating_updates: Sequence[Dict],
    category,
    game_increment_ids: Sequence[int],
    queue_entries: Sequence[Dict],
    client_request_id: str,
    event_type: str,
    payload: Dict,
) -> Dict:
    """
    Apply a confirmation as one all-or-nothing unit keyed by ``client_request_id``.

    Writes, in one transaction: the conditional match update, per-player
    rating increments with their history rows (zero deltas skipped), the
    game-count increments, the queue re-insertions and the event row
    holding ``payload``. Commits on success.

    Replaying a request id that already committed returns the stored
    payload with ``"replayed": True`` and writes nothing.

    Raises:
        ConflictError: the match left ``from_statuses`` before this write
    """
    existing = await get_match_event(session, client_request_id)
    if existing is not None:
        return {**event_payload(existing), "replayed": True}

    moved = await transition_match(session, match_id, from_statuses, match_values)
    if not moved:
        await session.rollback()
        replay = await get_match_event(session, client_request_id)
        if replay is not None:
            return {**event_payload(replay), "replayed": True}
        raise ConflictError(f"Match {match_id} is no longer awaiting confirmation")

    applied = []
    for update_row in rating_updates:
        if update_row["delta"] == 0:
            continue
        new_rating = await apply_rating_delta(
            session, update_row["id"], update_row["field"], update_row["delta"]
        )
        if new_rating is None:
            # Profile deleted since the match was created
            continue
        session.add(RatingHistory(
            player_id=update_row["id"],
            match_id=match_id,
            category=category,
            rating_after=new_rating,
            delta=update_row["delta"],
            is_compensation=False,
        ))
        applied.append({**update_row, "rating_after": new_rating})

    await increment_games_played(session, game_increment_ids)
    requeued = await insert_queue_entries(session, queue_entries)

    result_payload = {**payload, "rating_updates": applied, "requeued_player_ids": requeued}
    session.add(MatchEvent(
        client_request_id=client_request_id,
        match_id=match_id,
        event_type=event_type,
        payload=json.dumps(result_payload),
    ))

    try:
        await session.commit()
    except IntegrityError as e:
        # Same request id committed concurrently
        await session.rollback()
        replay = await get_match_event(session, client_request_id)
        if replay is not None:
            return {**event_payload(replay), "replayed": True}
        raise ConflictError("Concurrent confirmation conflict, refresh and retry") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Confirmation transaction failed for match {match_id}: {e}", exc_info=True)
        raise DependencyError("Storage unavailable") from e

    return {**result_payload, "replayed": False}


#
# MVP votes
#

async def count_mvp_votes(session: AsyncSession, target_id: int) -> List[Dict]:
    """Vote counts per tag for one player, most frequent first."""
    result = await session.execute(
        select(MvpVote.tag, func.count(MvpVote.id))
        .where(MvpVote.target_id == target_id)
        .group_by(MvpVote.tag)
        .order_by(func.count(MvpVote.id).desc(), MvpVote.tag)
    )
    return [{"tag": tag, "count": count} for tag, count in result.all()]


#
# Settings
#

async def get_setting(session: AsyncSession, key: str) -> Optional[str]:
    """
    Get a setting value.

    Args:
        session: Database session
        key: Setting key

    Returns:
        Setting value or None if not found
    """
    result = await session.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    return setting.value if setting else None


async def set_setting(session: AsyncSession, key: str, value: str) -> None:
    """Set a setting value (insert or update) and commit."""
    result = await session.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    if setting is None:
        session.add(Setting(key=key, value=value))
    else:
        setting.value = value
    await commit_or_raise(session)


async def claim_setting(session: AsyncSession, key: str, value: str) -> bool:
    """
    Conditionally move a setting to ``value`` without committing.

    Returns False when the setting already holds ``value``. Of several
    concurrent callers claiming the same value only one gets True; a second
    first-time insert fails on the primary key and raises ConflictError.
    """
    result = await session.execute(
        update(Setting)
        .where(Setting.key == key, Setting.value != value)
        .values(value=value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return True

    existing = await session.execute(select(Setting.key).where(Setting.key == key))
    if existing.scalar_one_or_none() is not None:
        return False
    session.add(Setting(key=key, value=value))
    await flush_or_raise(session)
    return True
