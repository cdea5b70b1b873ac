"""
Player profile operations: registration (members and guests), rankings,
admin maintenance (guest purge, season reset) and the administrative
dynamic-K rating recompute.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.database.models import (
    Profile,
    QueueEntry,
    Match,
    MatchStatus,
    MatchCategory,
    MvpVote,
    RatingHistory,
    PlayerRole,
    WinnerTeam,
    OPEN_MATCH_STATUSES,
)
from rallygogo.services import calculation_service, data_service, queue_service
from rallygogo.services.errors import ConflictError, NotFoundError, ValidationError
from rallygogo.utils.constants import (
    INITIAL_RATING,
    GUEST_NAME_SUFFIX,
    GUEST_NTRP_BOOST,
    PARTNER_LOOKBACK_MATCHES,
    PARTNER_MIN_GAMES,
)

logger = logging.getLogger(__name__)

RATING_FIELDS = ("elo_men_doubles", "elo_women_doubles", "elo_mixed_doubles", "elo_singles")
EDITABLE_FIELDS = {
    "name", "email", "gender", "ntrp", "role", "admin_memo", "is_guest",
    "games_played_today", "total_games_history", "departure_time",
} | set(RATING_FIELDS)


def normalize_profile_gender(gender: Optional[str]) -> Optional[str]:
    """Store gender as "Male"/"Female"; empty stays unset."""
    if gender is None or not str(gender).strip():
        return None
    return "Male" if str(gender).strip().lower().startswith("m") else "Female"


def _validate_role(role: Optional[str]) -> str:
    role = role or PlayerRole.PLAYER.value
    if role not in {r.value for r in PlayerRole}:
        raise ValidationError(f"Unknown role {role!r}")
    return role


async def create_profile(
    session: AsyncSession,
    name: str,
    gender: Optional[str] = None,
    email: Optional[str] = None,
    ntrp: Optional[float] = None,
    role: Optional[str] = None,
) -> Dict:
    """Create a member profile with default ratings."""
    if not name or not name.strip():
        raise ValidationError("Name is required")
    profile = await data_service.insert_profile(
        session,
        name=name.strip(),
        email=email,
        gender=normalize_profile_gender(gender),
        ntrp=ntrp,
        role=_validate_role(role),
        is_guest=False,
        elo_men_doubles=INITIAL_RATING,
        elo_women_doubles=INITIAL_RATING,
        elo_mixed_doubles=INITIAL_RATING,
        elo_singles=INITIAL_RATING,
        games_played_today=0,
        total_games_history=0,
    )
    await data_service.commit_or_raise(session)
    logger.info(f"Profile {profile.id} created for {profile.name!r}")
    return data_service.profile_to_dict(profile)


async def get_profile(session: AsyncSession, profile_id: int) -> Dict:
    profile = await data_service.get_profile(session, profile_id)
    if profile is None:
        raise NotFoundError(f"Player {profile_id} not found")
    result = data_service.profile_to_dict(profile)
    result["mvp_badges"] = await data_service.count_mvp_votes(session, profile_id)
    return result


async def list_profiles(
    session: AsyncSession,
    is_guest: Optional[bool] = None,
    sort_by: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict]:
    """Rankings/listing: optional guest filter, sorted by a rating field descending."""
    try:
        profiles = await data_service.list_profiles(
            session, is_guest=is_guest, sort_by=sort_by, limit=limit
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return [data_service.profile_to_dict(p) for p in profiles]


async def update_profile(session: AsyncSession, profile_id: int, fields: Dict) -> Dict:
    """Admin edit of profile columns."""
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    fields = dict(fields)
    if "gender" in fields:
        fields["gender"] = normalize_profile_gender(fields["gender"])
    if "role" in fields:
        fields["role"] = _validate_role(fields["role"])
    if "departure_time" in fields:
        fields["departure_time"] = queue_service.validate_departure_time(fields["departure_time"])

    profile = await data_service.update_profile(session, profile_id, fields)
    if profile is None:
        raise NotFoundError(f"Player {profile_id} not found")
    await data_service.commit_or_raise(session)
    logger.info(f"Profile {profile_id} updated: {sorted(fields)}")
    return data_service.profile_to_dict(profile)


async def delete_profile(session: AsyncSession, profile_id: int) -> bool:
    """Admin deletion. Refused while the player sits in an unresolved match."""
    seated = await data_service.find_seated_player_ids(session, [profile_id])
    if seated:
        raise ConflictError("Player is part of an unresolved match")
    await data_service.delete_queue_entries(session, [profile_id])
    deleted = await data_service.delete_profile(session, profile_id)
    if not deleted:
        await session.rollback()
        raise NotFoundError(f"Player {profile_id} not found")
    await data_service.commit_or_raise(session)
    logger.info(f"Profile {profile_id} deleted")
    return True


# ============================================================================
# Guests
# ============================================================================

async def register_guest(
    session: AsyncSession,
    name: str,
    gender: Optional[str],
    ntrp: float,
    departure_time: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Register a walk-in guest and queue them immediately.

    The self-rated NTRP is nudged up so guests land in slightly harder
    games; the original rating is kept in the admin memo.
    """
    if not name or not name.strip():
        raise ValidationError("Name is required")
    try:
        self_rated = float(ntrp)
    except (TypeError, ValueError) as e:
        raise ValidationError("NTRP must be a number") from e
    departure = queue_service.validate_departure_time(departure_time)

    profile = await data_service.insert_profile(
        session,
        name=f"{name.strip()}{GUEST_NAME_SUFFIX}",
        gender=normalize_profile_gender(gender),
        ntrp=self_rated + GUEST_NTRP_BOOST,
        is_guest=True,
        role=PlayerRole.PLAYER.value,
        admin_memo=f"Self-rated: {self_rated:g}",
        departure_time=departure,
        elo_men_doubles=INITIAL_RATING,
        elo_women_doubles=INITIAL_RATING,
        elo_mixed_doubles=INITIAL_RATING,
        elo_singles=INITIAL_RATING,
        games_played_today=0,
        total_games_history=0,
    )
    await data_service.commit_or_raise(session)
    logger.info(f"Guest {profile.id} registered as {profile.name!r}")

    entry = await queue_service.join_queue(session, profile.id, departure, now=now)
    return {"profile": data_service.profile_to_dict(profile), "queue_entry": entry}


async def purge_guests(session: AsyncSession) -> Dict:
    """Delete guest profiles that are not part of an unresolved match."""
    result = await session.execute(select(Profile.id).where(Profile.is_guest == True))  # noqa: E712
    guest_ids = list(result.scalars().all())
    seated = await data_service.find_seated_player_ids(session, guest_ids, OPEN_MATCH_STATUSES)
    removable = [gid for gid in guest_ids if gid not in seated]

    if removable:
        await session.execute(delete(QueueEntry).where(QueueEntry.player_id.in_(removable)))
        await session.execute(delete(RatingHistory).where(RatingHistory.player_id.in_(removable)))
        await session.execute(
            delete(MvpVote).where(
                or_(MvpVote.voter_id.in_(removable), MvpVote.target_id.in_(removable))
            )
        )
        await session.execute(delete(Profile).where(Profile.id.in_(removable)))
    await data_service.commit_or_raise(session)

    logger.info(f"Purged {len(removable)} guest(s), kept {len(seated)} in active matches")
    return {"deleted": len(removable), "skipped": sorted(seated)}


# ============================================================================
# Season reset
# ============================================================================

def compress_rating(old) -> int:
    """Halve the distance to 1200 (1600 -> 1400, 1000 -> 1100)."""
    value = calculation_service.safe_number(old, 0) or INITIAL_RATING
    return calculation_service.round_half_up(INITIAL_RATING + (value - INITIAL_RATING) / 2)


async def soft_reset_season(session: AsyncSession) -> Dict:
    """Compress every category rating of every profile toward 1200."""
    result = await session.execute(select(Profile))
    profiles = list(result.scalars().all())
    for profile in profiles:
        for field in RATING_FIELDS:
            setattr(profile, field, compress_rating(getattr(profile, field)))
    await data_service.commit_or_raise(session)
    logger.warning(f"Season soft reset applied to {len(profiles)} profile(s)")
    return {"updated": len(profiles)}


# ============================================================================
# Ratings
# ============================================================================

async def apply_dynamic_rating_update(
    session: AsyncSession,
    category: str,
    winner_ids: Sequence[int],
    loser_ids: Sequence[int],
    is_tournament: bool = False,
    match_id: Optional[int] = None,
) -> List[Dict]:
    """
    Administrative recompute with per-player K.

    One transaction writes the new ratings, a history row and a game-count
    increment for every player whose delta is non-zero. Frozen players
    (coaches) are skipped entirely.
    """
    try:
        category_enum = MatchCategory(category)
    except ValueError as e:
        raise ValidationError(f"Unknown category {category!r}") from e
    winner_ids, loser_ids = list(winner_ids), list(loser_ids)
    if not winner_ids or not loser_ids:
        raise ValidationError("Both winners and losers are required")
    if set(winner_ids) & set(loser_ids):
        raise ValidationError("A player cannot be on both sides")

    profiles = {p.id: p for p in await data_service.get_profiles(session, winner_ids + loser_ids)}
    missing = [pid for pid in winner_ids + loser_ids if pid not in profiles]
    if missing:
        raise NotFoundError(f"Players not found: {missing}")

    updates = calculation_service.calculate_dynamic_deltas(
        [data_service.profile_to_dict(profiles[pid]) for pid in winner_ids],
        [data_service.profile_to_dict(profiles[pid]) for pid in loser_ids],
        category_enum.value,
        is_tournament,
    )

    applied = []
    for row in updates:
        if row["delta"] == 0:
            continue
        profile = profiles[row["id"]]
        setattr(profile, row["field"], row["rating_after"])
        profile.games_played_today = (profile.games_played_today or 0) + 1
        session.add(RatingHistory(
            player_id=row["id"],
            match_id=match_id,
            category=category_enum,
            rating_after=row["rating_after"],
            delta=row["delta"],
            is_compensation=False,
        ))
        applied.append(row)
    await data_service.commit_or_raise(session)

    logger.info(
        f"Dynamic rating update ({category_enum.value}"
        f"{', tournament' if is_tournament else ''}): "
        + ", ".join(f"{r['id']}:{r['delta']:+d}" for r in applied)
    )
    return applied


async def get_rating_history(session: AsyncSession, player_id: int) -> List[Dict]:
    if await data_service.get_profile(session, player_id) is None:
        raise NotFoundError(f"Player {player_id} not found")
    entries = await data_service.list_rating_history(session, player_id)
    return [data_service.rating_history_to_dict(e) for e in entries]


async def recommend_partner(session: AsyncSession, player_id: int) -> Optional[Dict]:
    """
    Partner with the best win rate over the player's recent finished matches.

    Only partners with at least two games together qualify; the first one
    found wins ties. Returns None when nobody qualifies.
    """
    result = await session.execute(
        select(Match)
        .where(
            Match.status == MatchStatus.FINISHED,
            or_(
                Match.player_1 == player_id,
                Match.player_2 == player_id,
                Match.player_3 == player_id,
                Match.player_4 == player_id,
            ),
        )
        .order_by(Match.end_time.desc(), Match.id.desc())
        .limit(PARTNER_LOOKBACK_MATCHES)
    )
    partner_stats: Dict[int, Dict[str, int]] = {}
    for match in result.scalars().all():
        partners = {
            match.player_1: match.player_2,
            match.player_2: match.player_1,
            match.player_3: match.player_4,
            match.player_4: match.player_3,
        }
        partner_id = partners.get(player_id)
        if partner_id is None:
            continue
        my_team = WinnerTeam.TEAM_1 if player_id in (match.player_1, match.player_2) else WinnerTeam.TEAM_2
        stats = partner_stats.setdefault(partner_id, {"wins": 0, "total": 0})
        stats["total"] += 1
        if match.winner_team == my_team:
            stats["wins"] += 1

    best_id, best_rate, best_total = None, -1.0, 0
    for partner_id, stats in partner_stats.items():
        if stats["total"] < PARTNER_MIN_GAMES:
            continue
        rate = stats["wins"] / stats["total"]
        if rate > best_rate:
            best_id, best_rate, best_total = partner_id, rate, stats["total"]

    if best_id is None:
        return None
    partner = await data_service.get_profile(session, best_id)
    return {
        "partner_id": best_id,
        "name": partner.name if partner else "Unknown",
        "win_rate": calculation_service.round_half_up(best_rate * 100),
        "games": best_total,
    }
