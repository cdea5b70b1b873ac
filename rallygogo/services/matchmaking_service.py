"""
Automatic 4-player match generation from a scored queue snapshot.

The generator is pure: it reads a snapshot and proposes a match. Creating
the match (and removing the players from the queue) is the lifecycle's
job, which fails cleanly if the snapshot went stale.
"""

import logging
from typing import Dict, List, Optional

from rallygogo.services.calculation_service import best_rating, get_rating, safe_number
from rallygogo.utils.constants import (
    VIP_GUEST_RATING,
    VIP_PARTNER_RATING,
    POOL_SIZE,
    WILDCARD_RANKS,
    OUTLIER_GAP,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Helpers
# ============================================================================

def normalize_gender(gender) -> str:
    """Anything starting with "m" is Male, everything else (unset included) Female."""
    if isinstance(gender, str) and gender.strip().lower().startswith("m"):
        return "Male"
    return "Female"


def _profile(candidate: Dict) -> Dict:
    return candidate.get("profile") or {}


def _gender(candidate: Dict) -> str:
    return normalize_gender(_profile(candidate).get("gender"))


def _best_rating(candidate: Dict) -> float:
    return best_rating(_profile(candidate))


def category_rating(candidate: Dict, category: str) -> float:
    """Rating used to rank a candidate inside a match of ``category``."""
    profile = _profile(candidate)
    if category == "MEN_D":
        return get_rating(profile, "elo_men_doubles")
    if category == "WOMEN_D":
        return get_rating(profile, "elo_women_doubles")
    return get_rating(profile, "elo_mixed_doubles")


def snake_draft(players: List[Dict], rating_key) -> Dict:
    """
    Split four players into balanced teams: rank 1 + rank 4 vs rank 2 + rank 3.

    Sorting is stable so equal ratings keep the incoming priority order.
    """
    ranked = sorted(players, key=rating_key, reverse=True)
    team1 = [ranked[0], ranked[3]]
    team2 = [ranked[1], ranked[2]]
    return {"team1": team1, "team2": team2}


def _build_proposal(players: List[Dict], match_type: str, rating_key) -> Dict:
    teams = snake_draft(players, rating_key)
    player_ids = [c["player_id"] for c in teams["team1"] + teams["team2"]]
    return {
        "team1": teams["team1"],
        "team2": teams["team2"],
        "match_type": match_type,
        "player_ids": player_ids,
    }


# ============================================================================
# Generation steps
# ============================================================================

def find_vip_match(queue: List[Dict]) -> Optional[Dict]:
    """Fast-track a guest rated 2000+ with the first three other players rated 1800+."""
    vip = next(
        (c for c in queue if _profile(c).get("is_guest") and _best_rating(c) >= VIP_GUEST_RATING),
        None,
    )
    if vip is None:
        return None

    partners = [
        c for c in queue
        if c["player_id"] != vip["player_id"] and _best_rating(c) >= VIP_PARTNER_RATING
    ][:3]
    if len(partners) < 3:
        logger.debug(f"VIP guest {vip['player_id']} waiting: only {len(partners)} partner(s) 1800+")
        return None

    logger.info(f"VIP match formed for guest {vip['player_id']}")
    return _build_proposal([vip] + partners, "VIP_MATCH", _best_rating)


def extract_pool(queue: List[Dict]) -> List[Dict]:
    """
    Top six by score, with one wildcard swapped in when the pool is single-gender.

    The wildcard is the first candidate of the missing gender among ranks
    7-10 and replaces the pool's lowest-ranked member.
    """
    pool = list(queue[:POOL_SIZE])
    male_count = sum(1 for c in pool if _gender(c) == "Male")

    if male_count == 0 or male_count >= POOL_SIZE:
        target = "Female" if male_count >= POOL_SIZE else "Male"
        start, end = WILDCARD_RANKS
        wildcard = next((c for c in queue[start:end] if _gender(c) == target), None)
        if wildcard is not None:
            pool[-1] = wildcard
    return pool


def select_four(pool: List[Dict]):
    """Pick the four players and the category from the pool."""
    men = [c for c in pool if _gender(c) == "Male"]
    women = [c for c in pool if _gender(c) == "Female"]

    if len(women) >= 4:
        return women[:4], "WOMEN_D"
    if len(men) >= 4:
        return men[:4], "MEN_D"
    if len(men) >= 2 and len(women) >= 2:
        return men[:2] + women[:2], "MIXED"
    return list(pool[:4]), "MIXED"


def apply_outlier_guard(selected: List[Dict], pool: List[Dict], category: str) -> List[Dict]:
    """
    Swap out a lone top player who is more than 400 above the second best.

    The replacement is the first unselected pool member of the same gender.
    Without one the selection is kept as is; the snake draft then does what
    balancing it can.
    """
    ranked = sorted(selected, key=lambda c: category_rating(c, category), reverse=True)
    gap = category_rating(ranked[0], category) - category_rating(ranked[1], category)
    if gap <= OUTLIER_GAP:
        return selected

    outlier = ranked[0]
    selected_ids = {c["player_id"] for c in selected}
    replacement = next(
        (
            c for c in pool
            if c["player_id"] not in selected_ids and _gender(c) == _gender(outlier)
        ),
        None,
    )
    if replacement is None:
        logger.info(
            f"Outlier {outlier['player_id']} ({gap:.0f} above next) kept: no same-gender reserve"
        )
        return selected

    logger.info(f"Outlier {outlier['player_id']} replaced by {replacement['player_id']}")
    return [c for c in selected if c is not outlier] + [replacement]


def generate_match(queue: List[Dict]) -> Optional[Dict]:
    """
    Propose a balanced match from a queue snapshot.

    Args:
        queue: Candidates sorted by ``priority_score`` descending, each
            ``{"player_id", "priority_score", "profile": {...}}``

    Returns:
        ``{"team1", "team2", "match_type", "player_ids"}`` with
        ``player_ids`` in team order, or None when fewer than four
        candidates are available.
    """
    if len(queue) < 4:
        return None

    # Stable: ties keep the snapshot's order
    ordered = sorted(queue, key=lambda c: safe_number(c.get("priority_score")), reverse=True)

    vip_match = find_vip_match(ordered)
    if vip_match is not None:
        return vip_match

    pool = extract_pool(ordered)
    selected, category = select_four(pool)
    if len(selected) < 4:
        return None
    selected = apply_outlier_guard(selected, pool, category)

    return _build_proposal(selected, category, lambda c: category_rating(c, category))
