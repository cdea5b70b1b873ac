"""
Match lifecycle: DRAFT -> PLAYING -> SCORING -> PENDING -> FINISHED | DISPUTED.

Every transition is a conditional write on the current status, so two
operators racing on the same match cannot both succeed. Operations either
apply fully or raise without side effects.
"""

import logging
import secrets
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.database.models import (
    Match,
    MatchStatus,
    MatchCategory,
    MatchType,
    WinnerTeam,
    MvpVote,
    PlayerRole,
    ACTIVE_MATCH_STATUSES,
    OPEN_MATCH_STATUSES,
)
from rallygogo.services import calculation_service, data_service, queue_service, settings_service
from rallygogo.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from rallygogo.services.matchmaking_service import generate_match, normalize_gender
from rallygogo.services.priority_service import calculate_priority_score
from rallygogo.utils.constants import MVP_TAGS, NEUTRAL_PRIORITY
from rallygogo.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

CONFIRM_EVENT = "CONFIRM"
FORCE_CONFIRM_EVENT = "ADMIN_FORCE_CONFIRM"


# ============================================================================
# Helpers
# ============================================================================

async def _require_match(session: AsyncSession, match_id: int) -> Match:
    match = await data_service.get_match(session, match_id)
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")
    return match


def _status(match: Match) -> MatchStatus:
    return MatchStatus(match.status)


async def _transition(
    session: AsyncSession,
    match_id: int,
    from_status: MatchStatus,
    values: Dict,
) -> Dict:
    """Move a match out of ``from_status`` or explain why it could not move."""
    match = await _require_match(session, match_id)
    if _status(match) != from_status:
        raise ConflictError(
            f"Match {match_id} is {_status(match).value}, expected {from_status.value}"
        )
    moved = await data_service.transition_match(session, match_id, [from_status], values)
    if not moved:
        await session.rollback()
        raise ConflictError(f"Match {match_id} was changed by someone else")
    await data_service.commit_or_raise(session)
    match = await data_service.get_match(session, match_id)
    return data_service.match_to_dict(match)


def classify_category(profiles: Sequence) -> MatchCategory:
    """Category from the participants' genders: all men, no men, or mixed. Two players are singles."""
    if len(profiles) == 2:
        return MatchCategory.SINGLES
    males = sum(1 for p in profiles if normalize_gender(p.gender) == "Male")
    if males == len(profiles):
        return MatchCategory.MEN_D
    if males == 0:
        return MatchCategory.WOMEN_D
    return MatchCategory.MIXED


def _is_admin(profile) -> bool:
    return profile is not None and profile.role == PlayerRole.ADMIN.value


def _team_of(match: Match, player_id: Optional[int]) -> Optional[int]:
    if player_id in match.team1_ids:
        return 1
    if player_id in match.team2_ids:
        return 2
    return None


async def _check_counterparty(session: AsyncSession, match: Match, actor_id: int) -> bool:
    """
    Allow a participant outside the reporter's team, or an admin.

    Returns True when the permission comes from the admin role.
    """
    actor_team = _team_of(match, actor_id)
    reporter_team = _team_of(match, match.reported_by)
    if actor_team is not None and actor_team != reporter_team:
        return False
    actor = await data_service.get_profile(session, actor_id)
    if _is_admin(actor):
        return True
    if actor_team is None:
        raise PermissionDeniedError("Only match participants can respond to a reported score")
    raise PermissionDeniedError("The reporting team cannot confirm or reject its own result")


async def _requeue_entries(
    session: AsyncSession,
    player_ids: Sequence[int],
    now: datetime,
    neutral: bool,
    games_bump: int = 0,
) -> List[Dict]:
    """
    Queue rows for players returning from a match.

    ``neutral`` uses the default priority; otherwise the score is computed
    as if the player had just joined (with ``games_bump`` extra games).
    """
    profiles = {p.id: p for p in await data_service.get_profiles(session, player_ids)}
    entries = []
    for player_id in player_ids:
        profile = profiles.get(player_id)
        if profile is None:
            continue
        departure = profile.departure_time
        if neutral:
            score = NEUTRAL_PRIORITY
        else:
            profile_dict = data_service.profile_to_dict(profile)
            profile_dict["games_played_today"] = (profile.games_played_today or 0) + games_bump
            score = calculate_priority_score(
                {"joined_at": now, "departure_time": departure, "profile": profile_dict}, now
            )
        entries.append({
            "player_id": player_id,
            "joined_at": now,
            "departure_time": departure,
            "priority_score": score,
        })
    return entries


# ============================================================================
# Creation
# ============================================================================

async def create_auto_match(
    session: AsyncSession,
    court_name: str,
    match_type: MatchType = MatchType.REGULAR,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Fill a court from the queue using the match generator.

    Raises:
        ValidationError: fewer than four usable candidates
        ConflictError: court busy, or the snapshot went stale (retry)
    """
    if not court_name:
        raise ValidationError("Court name is required")
    now = now or utcnow()
    queue = await queue_service.get_scored_queue(session, now, persist=False)
    proposal = generate_match(queue)
    if proposal is None:
        raise ValidationError("Not enough players in the queue to form a match")

    ids = proposal["player_ids"]
    fields = {
        "court_name": court_name,
        "status": MatchStatus.DRAFT,
        "player_1": ids[0],
        "player_2": ids[1],
        "player_3": ids[2],
        "player_4": ids[3],
        "match_category": MatchCategory(proposal["match_type"]),
        "match_type": MatchType(match_type),
    }
    match = await data_service.insert_match_if_court_free(session, fields, ids)
    logger.info(
        f"Auto match {match.id} on {court_name}: {proposal['match_type']} "
        f"{ids[:2]} vs {ids[2:]}"
    )
    return data_service.match_to_dict(match)


async def create_manual_match(
    session: AsyncSession,
    court_name: str,
    player_ids: Sequence[int],
    match_type: MatchType = MatchType.REGULAR,
) -> Dict:
    """
    Seat hand-picked queued players on a court.

    Four players form teams in the order given (1+2 vs 3+4); two players
    form a singles match.
    """
    if not court_name:
        raise ValidationError("Court name is required")
    player_ids = list(player_ids)
    if len(player_ids) not in (2, 4):
        raise ValidationError("A match needs exactly 2 or 4 players")
    if len(set(player_ids)) != len(player_ids):
        raise ValidationError("Players must be distinct")

    profiles = await data_service.get_profiles(session, player_ids)
    if len(profiles) != len(player_ids):
        raise NotFoundError("One or more players do not exist")
    category = classify_category(profiles)

    if len(player_ids) == 2:
        slots = [player_ids[0], None, player_ids[1], None]
    else:
        slots = player_ids
    fields = {
        "court_name": court_name,
        "status": MatchStatus.DRAFT,
        "player_1": slots[0],
        "player_2": slots[1],
        "player_3": slots[2],
        "player_4": slots[3],
        "match_category": category,
        "match_type": MatchType(match_type),
    }
    match = await data_service.insert_match_if_court_free(session, fields, player_ids)
    logger.info(f"Manual match {match.id} on {court_name}: {category.value} {player_ids}")
    return data_service.match_to_dict(match)


# ============================================================================
# Court operations
# ============================================================================

async def start_match(session: AsyncSession, match_id: int, now: Optional[datetime] = None) -> Dict:
    """DRAFT -> PLAYING."""
    result = await _transition(
        session, match_id, MatchStatus.DRAFT,
        {"status": MatchStatus.PLAYING, "start_time": now or utcnow()},
    )
    logger.info(f"Match {match_id} started")
    return result


async def end_match(session: AsyncSession, match_id: int) -> Dict:
    """PLAYING -> SCORING."""
    result = await _transition(
        session, match_id, MatchStatus.PLAYING, {"status": MatchStatus.SCORING}
    )
    logger.info(f"Match {match_id} ended, awaiting score")
    return result


async def cancel_match(session: AsyncSession, match_id: int, now: Optional[datetime] = None) -> Dict:
    """
    Delete a DRAFT match and put its players back in the queue with neutral priority.
    """
    match = await _require_match(session, match_id)
    if _status(match) != MatchStatus.DRAFT:
        raise ConflictError(f"Only DRAFT matches can be canceled (match is {_status(match).value})")
    player_ids = match.player_ids

    result = await session.execute(
        delete(Match).where(Match.id == match_id, Match.status == MatchStatus.DRAFT)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError(f"Match {match_id} was changed by someone else")

    entries = await _requeue_entries(session, player_ids, now or utcnow(), neutral=True)
    requeued = await data_service.insert_queue_entries(session, entries)
    await data_service.commit_or_raise(session)
    logger.info(f"Match {match_id} canceled, re-queued {requeued}")
    return {"match_id": match_id, "requeued_player_ids": requeued}


async def swap_player(
    session: AsyncSession,
    match_id: int,
    slot: int,
    replacement_id: int,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Replace the player in ``slot`` (1-4) with a queued player.

    Allowed while DRAFT or PLAYING. The replacement leaves the queue and the
    replaced player rejoins it with neutral priority, in one transaction.
    """
    if slot not in (1, 2, 3, 4):
        raise ValidationError("Slot must be between 1 and 4")
    match = await _require_match(session, match_id)
    if _status(match) not in (MatchStatus.DRAFT, MatchStatus.PLAYING):
        raise ConflictError(f"Players cannot be swapped while match is {_status(match).value}")
    column = f"player_{slot}"
    replaced_id = getattr(match, column)
    if replaced_id is None:
        raise ValidationError(f"Slot {slot} is empty")
    if replacement_id in match.player_ids:
        raise ValidationError("Replacement is already in this match")

    moved = await data_service.transition_match(
        session, match_id, [MatchStatus.DRAFT, MatchStatus.PLAYING], {column: replacement_id}
    )
    if not moved:
        await session.rollback()
        raise ConflictError(f"Match {match_id} was changed by someone else")
    removed = await data_service.delete_queue_entries(session, [replacement_id])
    if removed != 1:
        await session.rollback()
        raise ConflictError("Replacement player is no longer in the queue")
    entries = await _requeue_entries(session, [replaced_id], now or utcnow(), neutral=True)
    await data_service.insert_queue_entries(session, entries)
    await data_service.commit_or_raise(session)

    logger.info(f"Match {match_id}: slot {slot} {replaced_id} -> {replacement_id}")
    match = await data_service.get_match(session, match_id)
    return data_service.match_to_dict(match)


# ============================================================================
# Reporting and confirmation
# ============================================================================

def _validate_score(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be a whole number")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")
    return value


async def report_score(
    session: AsyncSession,
    match_id: int,
    reporter_id: int,
    score_team1,
    score_team2,
    is_tournament: bool = False,
    tournament_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    SCORING -> PENDING: store the score, derive the winner and free the court.

    Raises:
        ValidationError: missing/invalid scores or wrong tournament code
        PermissionDeniedError: reporter neither participant nor admin
        ConflictError: match not awaiting a score
    """
    if score_team1 is None or score_team2 is None:
        raise ValidationError("Both scores are required")
    score1 = _validate_score(score_team1, "Team 1 score")
    score2 = _validate_score(score_team2, "Team 2 score")

    match = await _require_match(session, match_id)
    if _status(match) != MatchStatus.SCORING:
        raise ConflictError(f"Match {match_id} is {_status(match).value}, expected SCORING")

    if reporter_id not in match.player_ids:
        reporter = await data_service.get_profile(session, reporter_id)
        if not _is_admin(reporter):
            raise PermissionDeniedError("Only match participants can report a score")

    tournament = is_tournament or MatchType(match.match_type) == MatchType.TOURNAMENT
    if tournament:
        expected_code = await settings_service.get_tournament_code(session)
        if not expected_code:
            raise ValidationError("Tournament reporting is not configured")
        if not tournament_code or not secrets.compare_digest(
            str(tournament_code).encode(), expected_code.encode()
        ):
            raise ValidationError("Invalid tournament code")

    profiles = await data_service.get_profiles(session, match.player_ids)
    category = classify_category(profiles) if profiles else MatchCategory(match.match_category)
    winner = WinnerTeam(calculation_service.calculate_winner(score1, score2))

    result = await _transition(session, match_id, MatchStatus.SCORING, {
        "status": MatchStatus.PENDING,
        "score_team1": score1,
        "score_team2": score2,
        "winner_team": winner,
        "match_category": category,
        "match_type": MatchType.TOURNAMENT if tournament else MatchType.REGULAR,
        "reported_by": reporter_id,
        "court_name": None,
        "end_time": now or utcnow(),
    })
    logger.info(f"Match {match_id} reported {score1}:{score2} by {reporter_id} ({winner.value})")
    return result


async def confirm_match(
    session: AsyncSession,
    match_id: int,
    confirmer_id: int,
    client_request_id: str,
    force: bool = False,
    now: Optional[datetime] = None,
) -> Dict:
    """
    PENDING -> FINISHED: apply ratings and return players to the queue.

    Idempotent on ``client_request_id``: a replay returns the first result
    and writes nothing. ``force`` is the admin override, which may also
    resolve a DISPUTED match.

    Raises:
        ValidationError: missing request id
        PermissionDeniedError: confirmer not eligible
        ConflictError: match not awaiting confirmation
    """
    if not client_request_id:
        raise ValidationError("A client request id is required")

    existing = await data_service.get_match_event(session, client_request_id)
    if existing is not None:
        if existing.match_id != match_id:
            raise ConflictError("Request id was already used for another match")
        return {**data_service.event_payload(existing), "replayed": True}

    match = await _require_match(session, match_id)
    if force:
        actor = await data_service.get_profile(session, confirmer_id)
        if not _is_admin(actor):
            raise PermissionDeniedError("Only admins can force a confirmation")
        allowed = [MatchStatus.PENDING, MatchStatus.DISPUTED]
    else:
        allowed = [MatchStatus.PENDING]
    if _status(match) not in allowed:
        raise ConflictError(f"Match {match_id} is {_status(match).value}, not awaiting confirmation")
    if not force:
        await _check_counterparty(session, match, confirmer_id)

    now = now or utcnow()
    category = MatchCategory(match.match_category)
    field = calculation_service.rating_field_for_category(category.value)
    profiles = {p.id: p for p in await data_service.get_profiles(session, match.player_ids)}

    def _team(ids):
        return [
            {
                "id": pid,
                "rating": calculation_service.get_rating(
                    data_service.profile_to_dict(profiles[pid]), field
                ),
                "is_guest": bool(profiles[pid].is_guest),
            }
            for pid in ids if pid in profiles
        ]

    deltas = calculation_service.calculate_match_deltas(
        _team(match.team1_ids), _team(match.team2_ids), match.score_team1, match.score_team2
    )
    rating_updates = [{**d, "field": field} for d in deltas]

    # Players already back in the queue or seated elsewhere are skipped
    seated = await data_service.find_seated_player_ids(
        session, match.player_ids, statuses=ACTIVE_MATCH_STATUSES
    )
    returning = [pid for pid in match.player_ids if pid not in seated]
    queue_entries = await _requeue_entries(session, returning, now, neutral=False, games_bump=1)

    result = await data_service.apply_match_transaction(
        session,
        match_id=match_id,
        from_statuses=allowed,
        match_values={"status": MatchStatus.FINISHED, "confirmed_by": confirmer_id},
        rating_updates=rating_updates,
        category=category,
        game_increment_ids=list(profiles.keys()),
        queue_entries=queue_entries,
        client_request_id=client_request_id,
        event_type=FORCE_CONFIRM_EVENT if force else CONFIRM_EVENT,
        payload={"match_id": match_id, "status": MatchStatus.FINISHED.value, "confirmed_by": confirmer_id},
    )
    if not result.get("replayed"):
        logger.info(
            f"Match {match_id} confirmed by {confirmer_id}"
            f"{' (admin override)' if force else ''}: "
            + ", ".join(f"{u['id']}:{u['delta']:+d}" for u in result["rating_updates"])
        )
    return result


async def admin_force_confirm(
    session: AsyncSession,
    match_id: int,
    admin_id: int,
    client_request_id: str,
    now: Optional[datetime] = None,
) -> Dict:
    """Admin resolution of a PENDING or DISPUTED match."""
    return await confirm_match(
        session, match_id, admin_id, client_request_id, force=True, now=now
    )


async def reject_match(session: AsyncSession, match_id: int, actor_id: int) -> Dict:
    """PENDING -> DISPUTED. No rating change."""
    match = await _require_match(session, match_id)
    if _status(match) != MatchStatus.PENDING:
        raise ConflictError(f"Match {match_id} is {_status(match).value}, expected PENDING")
    await _check_counterparty(session, match, actor_id)
    result = await _transition(session, match_id, MatchStatus.PENDING, {
        "status": MatchStatus.DISPUTED,
        "confirmed_by": None,
    })
    logger.warning(f"Match {match_id} disputed by {actor_id}")
    return result


# ============================================================================
# Admin rollback
# ============================================================================

async def rollback_match(session: AsyncSession, match_id: int) -> Dict:
    """
    Remove a reported or finished match.

    FINISHED matches get compensating rating changes (the exact negation of
    each recorded delta, skipped for draws) with compensation history rows.
    PENDING and DISPUTED matches had no rating effect and are simply voided.
    """
    match = await _require_match(session, match_id)
    status = _status(match)
    if status not in (MatchStatus.FINISHED, MatchStatus.PENDING, MatchStatus.DISPUTED):
        raise ConflictError(f"Match {match_id} is {status.value}; cancel it instead")

    compensations = []
    if status == MatchStatus.FINISHED and match.winner_team != WinnerTeam.DRAW:
        field = calculation_service.rating_field_for_category(match.match_category)
        for entry in await data_service.list_match_rating_history(session, match_id):
            if entry.delta == 0:
                continue
            new_rating = await data_service.apply_rating_delta(
                session, entry.player_id, field, -entry.delta
            )
            if new_rating is None:
                continue
            compensations.append({
                "player_id": entry.player_id,
                "match_id": match_id,
                "category": entry.category,
                "rating_after": new_rating,
                "delta": -entry.delta,
                "is_compensation": True,
            })
        await data_service.insert_rating_history(session, compensations)

    deleted = await data_service.delete_match(session, match_id)
    if not deleted:
        await session.rollback()
        raise NotFoundError(f"Match {match_id} not found")
    await data_service.commit_or_raise(session)

    logger.warning(
        f"Match {match_id} rolled back from {status.value}; "
        f"{len(compensations)} compensating entr{'y' if len(compensations) == 1 else 'ies'}"
    )
    return {
        "match_id": match_id,
        "previous_status": status.value,
        "compensations": [
            {k: (v.value if hasattr(v, "value") else v) for k, v in c.items()}
            for c in compensations
        ],
    }


# ============================================================================
# MVP votes and listings
# ============================================================================

async def vote_mvp(
    session: AsyncSession, match_id: int, voter_id: int, target_id: int, tag: str
) -> Dict:
    """
    Vote one MVP from the winning team.

    Voters must be participants, cannot vote for themselves and vote once
    per match. Draws have no MVP.
    """
    if tag not in MVP_TAGS:
        raise ValidationError(f"Unknown MVP tag {tag!r}")
    match = await _require_match(session, match_id)
    if _status(match) not in (MatchStatus.PENDING, MatchStatus.FINISHED, MatchStatus.DISPUTED):
        raise ConflictError("MVP voting opens once the score is reported")
    if voter_id not in match.player_ids:
        raise PermissionDeniedError("Only match participants can vote")
    if voter_id == target_id:
        raise ValidationError("Players cannot vote for themselves")

    winner = WinnerTeam(match.winner_team) if match.winner_team else None
    if winner == WinnerTeam.TEAM_1:
        winners = match.team1_ids
    elif winner == WinnerTeam.TEAM_2:
        winners = match.team2_ids
    else:
        raise ValidationError("A drawn match has no MVP")
    if target_id not in winners:
        raise ValidationError("MVP must be on the winning team")

    session.add(MvpVote(match_id=match_id, voter_id=voter_id, target_id=target_id, tag=tag))
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError("You already voted for this match") from e
    logger.info(f"MVP vote on match {match_id}: {voter_id} -> {target_id} ({tag})")
    return {"match_id": match_id, "voter_id": voter_id, "target_id": target_id, "tag": tag}


async def get_match(session: AsyncSession, match_id: int) -> Dict:
    return data_service.match_to_dict(await _require_match(session, match_id))


async def list_court_matches(session: AsyncSession) -> List[Dict]:
    """Every match that has not reached a terminal state."""
    matches = await data_service.list_matches_by_status(session, OPEN_MATCH_STATUSES)
    return [data_service.match_to_dict(m) for m in matches]
