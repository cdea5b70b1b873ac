"""
Rating calculation service.

Two named strategies share the same logistic core:

- flat K (``calculate_match_deltas``): used when a reported result is
  confirmed. K is fixed, guests move 1.5x faster.
- dynamic K (``calculate_dynamic_deltas``): used for administrative
  recomputes. K depends on each player's role, guest flag, experience and
  whether the match was a tournament.

Everything here is pure. Malformed numbers degrade to documented defaults
instead of raising.
"""

import math
from typing import Any, Dict, List, Optional
from rallygogo.utils.constants import (
    INITIAL_RATING,
    K,
    GUEST_DELTA_MULTIPLIER,
    K_COACH,
    K_GUEST,
    K_TOURNAMENT,
    K_PLACEMENT,
    K_ESTABLISHED,
    K_DEFAULT,
    PLACEMENT_GAMES,
    ESTABLISHED_GAMES,
    ESTABLISHED_RATING,
)


CATEGORY_RATING_FIELDS = {
    "MEN_D": "elo_men_doubles",
    "WOMEN_D": "elo_women_doubles",
    "MIXED": "elo_mixed_doubles",
    "VIP_MATCH": "elo_mixed_doubles",
    "SINGLES": "elo_singles",
}


# ============================================================================
# Helper Functions (ELO Calculations)
# ============================================================================

def expected_score(elo_a: float, elo_b: float) -> float:
    """
    Calculate expected score for side A against side B using the ELO formula.

    Formula: P(A beats B) = 1 / (1 + 10^((elo_B - elo_A) / 400))
    If elo_A > elo_B, result > 0.5 (A is favored)
    """
    return 1 / (1 + 10 ** ((elo_b - elo_a) / 400))


def elo_change(k: float, expected: float, actual: float) -> float:
    """Calculate the unrounded rating change."""
    return k * (actual - expected)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (-15.5 -> -15, 15.5 -> 16)."""
    return int(math.floor(value + 0.5))


def safe_number(value: Any, default: float = 0) -> float:
    """Coerce to a finite float, falling back to ``default``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def rating_field_for_category(category: Optional[str]) -> str:
    """Profile column adjusted by a match of this category (mixed by default)."""
    if category is None:
        return "elo_mixed_doubles"
    key = getattr(category, "value", category)
    return CATEGORY_RATING_FIELDS.get(key, "elo_mixed_doubles")


def get_rating(player: Dict, field: str) -> float:
    """Current rating of a player dict for ``field``; missing or zero is 1200."""
    rating = safe_number(player.get(field), 0)
    return rating if rating else INITIAL_RATING


def best_rating(player: Dict, default: float = INITIAL_RATING) -> float:
    """
    Highest doubles rating of a player (used for VIP detection).

    Missing ratings count as 0; a player with none at all gets ``default``.
    """
    best = max(
        safe_number(player.get("elo_men_doubles")),
        safe_number(player.get("elo_women_doubles")),
        safe_number(player.get("elo_mixed_doubles")),
    )
    return best or default


def calculate_winner(team1_score: int, team2_score: int) -> str:
    """
    Determine the winner label of a reported score.

    Returns:
        "TEAM_1", "TEAM_2" or "DRAW"
    """
    if team1_score > team2_score:
        return "TEAM_1"
    elif team2_score > team1_score:
        return "TEAM_2"
    else:
        return "DRAW"


def actual_score(score_a: Any, score_b: Any) -> float:
    """Result for side A: 1 for a win, 0.5 for a draw, 0 otherwise."""
    a = safe_number(score_a)
    b = safe_number(score_b)
    if a > b:
        return 1.0
    if a == b:
        return 0.5
    return 0.0


def team_rating(team: List[Dict]) -> float:
    """Arithmetic mean of the team's ``rating`` values."""
    if not team:
        return INITIAL_RATING
    total = sum(safe_number(p.get("rating"), INITIAL_RATING) for p in team)
    return total / len(team)


# ============================================================================
# Flat-K strategy (confirmation time)
# ============================================================================

def calculate_match_deltas(
    team1: List[Dict],
    team2: List[Dict],
    score1: Any,
    score2: Any,
    k: float = K,
) -> List[Dict]:
    """
    Compute per-player rating deltas for a confirmed match.

    Args:
        team1: Players of team 1, each ``{"id", "rating", "is_guest"}``
        team2: Players of team 2, same shape
        score1: Final score of team 1
        score2: Final score of team 2
        k: K-factor, 32 unless overridden

    Returns:
        List of ``{"id", "rating_before", "delta", "rating_after", "result"}``
        in team order (team 1 then team 2).
    """
    t1_rating = team_rating(team1)
    t2_rating = team_rating(team2)

    t1_actual = actual_score(score1, score2)
    t2_actual = 1 - t1_actual

    t1_expected = expected_score(t1_rating, t2_rating)
    t2_expected = expected_score(t2_rating, t1_rating)

    t1_base = elo_change(k, t1_expected, t1_actual)
    t2_base = elo_change(k, t2_expected, t2_actual)

    updates = []
    for team, base, actual in ((team1, t1_base, t1_actual), (team2, t2_base, t2_actual)):
        for player in team:
            delta = base * GUEST_DELTA_MULTIPLIER if player.get("is_guest") else base
            rounded = round_half_up(delta)
            rating_before = int(safe_number(player.get("rating"), INITIAL_RATING))
            updates.append({
                "id": player.get("id"),
                "rating_before": rating_before,
                "delta": rounded,
                "rating_after": rating_before + rounded,
                "result": "WIN" if actual == 1 else ("DRAW" if actual == 0.5 else "LOSS"),
            })
    return updates


# ============================================================================
# Dynamic-K strategy (administrative recompute)
# ============================================================================

def dynamic_k_factor(player: Dict, rating: float, is_tournament: bool) -> int:
    """
    K-factor for one player in the dynamic strategy.

    Precedence: coach (frozen), guest, tournament, placement period,
    established high-rated player, default.
    """
    if player.get("role") == "coach":
        return K_COACH
    if player.get("is_guest"):
        return K_GUEST
    if is_tournament:
        return K_TOURNAMENT
    total_games = safe_number(player.get("games_played_today")) + safe_number(
        player.get("total_games_history")
    )
    if total_games < PLACEMENT_GAMES:
        return K_PLACEMENT
    if total_games >= ESTABLISHED_GAMES and rating > ESTABLISHED_RATING:
        return K_ESTABLISHED
    return K_DEFAULT


def calculate_dynamic_deltas(
    winners: List[Dict],
    losers: List[Dict],
    category: str,
    is_tournament: bool = False,
) -> List[Dict]:
    """
    Compute deltas with per-player K for a decided match (no draws).

    Args:
        winners: Winning players as profile dicts
        losers: Losing players as profile dicts
        category: Match category selecting the rating field
        is_tournament: Whether the tournament K applies

    Returns:
        List of ``{"id", "field", "rating_before", "k", "delta", "rating_after"}``,
        winners first. Zero deltas are included; callers skip them.
    """
    field = rating_field_for_category(category)
    winners_avg = (
        sum(get_rating(p, field) for p in winners) / len(winners) if winners else INITIAL_RATING
    )
    losers_avg = (
        sum(get_rating(p, field) for p in losers) / len(losers) if losers else INITIAL_RATING
    )
    winners_expected = expected_score(winners_avg, losers_avg)

    updates = []
    for team, actual, expected in (
        (winners, 1.0, winners_expected),
        (losers, 0.0, 1.0 - winners_expected),
    ):
        for player in team:
            rating = get_rating(player, field)
            k = dynamic_k_factor(player, rating, is_tournament)
            delta = round_half_up(elo_change(k, expected, actual))
            updates.append({
                "id": player.get("id"),
                "field": field,
                "rating_before": int(rating),
                "k": k,
                "delta": delta,
                "rating_after": int(rating) + delta,
            })
    return updates
