"""
Waiting-queue priority scoring.

Higher score = served first. Scoring never raises: a crashed scorer would
stall the whole queue, so every malformed input degrades to zero.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from rallygogo.services.calculation_service import best_rating, safe_number
from rallygogo.utils.constants import (
    INITIAL_BOOST,
    WAIT_POINTS_PER_MINUTE,
    GAME_PENALTY_FACTOR,
    GUEST_BONUS,
    VIP_GUEST_BONUS,
    VIP_GUEST_RATING,
    DEPARTURE_BONUS,
    DEPARTURE_WINDOW_MINUTES,
)
from rallygogo.utils.datetime_utils import (
    ensure_utc,
    get_venue_timezone,
    parse_hhmm,
    utcnow,
)

logger = logging.getLogger(__name__)


def _parse_joined_at(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def wait_minutes(joined_at: Any, now: datetime) -> int:
    """Whole minutes elapsed since ``joined_at``; 0 when it cannot be parsed."""
    joined = _parse_joined_at(joined_at)
    if joined is None:
        return 0
    return math.floor((now - joined).total_seconds() / 60)


def minutes_until_departure(departure_time: Any, now: datetime) -> Optional[float]:
    """
    Minutes from ``now`` until the venue-local ``HH:MM`` departure time.

    A target more than 12 hours in the past is rolled to the next day
    (someone leaving at 00:30 who queued at 23:50). Returns None if the
    value is not a clock time.
    """
    parsed = parse_hhmm(departure_time)
    if parsed is None:
        return None
    hour, minute = parsed
    tz = get_venue_timezone()
    local_now = now.astimezone(tz)
    target = tz.localize(
        datetime(local_now.year, local_now.month, local_now.day, hour, minute)
    )
    if target < local_now - timedelta(hours=12):
        next_day = (local_now + timedelta(days=1)).date()
        target = tz.localize(datetime(next_day.year, next_day.month, next_day.day, hour, minute))
    return (target - local_now).total_seconds() / 60


def calculate_priority_score(candidate: Dict, now: Optional[datetime] = None) -> int:
    """
    Score one queued player.

    Args:
        candidate: ``{"joined_at", "departure_time", "profile": {...}}``
        now: Evaluation instant (defaults to the current UTC time)

    Returns:
        Integer priority score, 0 if the inputs are unusable
    """
    try:
        now = ensure_utc(now) if now is not None else utcnow()
        profile = candidate.get("profile") or {}

        waited = wait_minutes(candidate.get("joined_at"), now)
        games_played = safe_number(profile.get("games_played_today"))

        initial_boost = INITIAL_BOOST if games_played == 0 else 0
        wait_score = waited * WAIT_POINTS_PER_MINUTE
        game_penalty = games_played ** 2 * GAME_PENALTY_FACTOR

        bonus = 0
        if profile.get("is_guest"):
            if best_rating(profile, default=0) >= VIP_GUEST_RATING:
                bonus += VIP_GUEST_BONUS
            else:
                bonus += GUEST_BONUS

        remaining = minutes_until_departure(candidate.get("departure_time"), now)
        if remaining is not None and 0 < remaining <= DEPARTURE_WINDOW_MINUTES:
            bonus += DEPARTURE_BONUS

        total = initial_boost + wait_score - game_penalty + bonus
        if math.isnan(total) or math.isinf(total):
            return 0
        return int(math.floor(total + 0.5))
    except Exception as e:
        logger.warning(f"Priority scoring failed, defaulting to 0: {e}")
        return 0


def score_queue(candidates, now: Optional[datetime] = None):
    """
    Attach ``priority_score`` to every candidate and sort descending.

    The sort is stable, so equal scores keep their incoming order
    (callers pass entries ordered by ``joined_at``).
    """
    now = ensure_utc(now) if now is not None else utcnow()
    scored = []
    for candidate in candidates:
        item = dict(candidate)
        item["priority_score"] = calculate_priority_score(candidate, now)
        scored.append(item)
    scored.sort(key=lambda c: c["priority_score"], reverse=True)
    return scored
