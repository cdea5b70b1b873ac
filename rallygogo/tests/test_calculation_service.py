"""
Tests for the rating engine: flat-K confirmation deltas and the dynamic-K
administrative strategy.
"""
import math

import pytest

from rallygogo.services.calculation_service import (
    best_rating,
    calculate_dynamic_deltas,
    calculate_match_deltas,
    calculate_winner,
    dynamic_k_factor,
    expected_score,
    get_rating,
    rating_field_for_category,
    round_half_up,
    safe_number,
)


def _player(pid, rating=1200, is_guest=False):
    return {"id": pid, "rating": rating, "is_guest": is_guest}


# ============================================================================
# Helpers
# ============================================================================

def test_expected_score_symmetry():
    assert expected_score(1200, 1200) == 0.5
    favored = expected_score(1400, 1200)
    assert favored > 0.5
    assert math.isclose(favored + expected_score(1200, 1400), 1.0)


def test_round_half_up():
    assert round_half_up(15.5) == 16
    assert round_half_up(-15.5) == -15
    assert round_half_up(7.49) == 7
    assert round_half_up(-7.69) == -8


@pytest.mark.parametrize("value,expected", [
    (None, 0),
    ("abc", 0),
    (float("nan"), 0),
    (float("inf"), 0),
    ("1500", 1500),
    (1350, 1350),
])
def test_safe_number(value, expected):
    assert safe_number(value) == expected


def test_get_rating_defaults_missing_and_zero():
    assert get_rating({}, "elo_mixed_doubles") == 1200
    assert get_rating({"elo_mixed_doubles": 0}, "elo_mixed_doubles") == 1200
    assert get_rating({"elo_mixed_doubles": 1450}, "elo_mixed_doubles") == 1450


def test_best_rating_uses_highest_doubles_rating():
    player = {"elo_men_doubles": 1500, "elo_women_doubles": "bad", "elo_mixed_doubles": 2100, "elo_singles": 2500}
    assert best_rating(player) == 2100
    assert best_rating({"elo_men_doubles": 900}, default=0) == 900
    assert best_rating({}) == 1200
    assert best_rating({}, default=0) == 0


def test_rating_field_for_category():
    assert rating_field_for_category("MEN_D") == "elo_men_doubles"
    assert rating_field_for_category("WOMEN_D") == "elo_women_doubles"
    assert rating_field_for_category("MIXED") == "elo_mixed_doubles"
    assert rating_field_for_category("VIP_MATCH") == "elo_mixed_doubles"
    assert rating_field_for_category("SINGLES") == "elo_singles"
    assert rating_field_for_category(None) == "elo_mixed_doubles"


def test_calculate_winner():
    assert calculate_winner(21, 15) == "TEAM_1"
    assert calculate_winner(10, 21) == "TEAM_2"
    assert calculate_winner(6, 6) == "DRAW"


# ============================================================================
# Flat-K strategy
# ============================================================================

def test_equal_teams_win_moves_sixteen():
    updates = calculate_match_deltas(
        [_player(1), _player(2)], [_player(3), _player(4)], 21, 15
    )
    by_id = {u["id"]: u for u in updates}
    assert [u["id"] for u in updates] == [1, 2, 3, 4]
    assert by_id[1]["delta"] == 16
    assert by_id[1]["rating_after"] == 1216
    assert by_id[1]["result"] == "WIN"
    assert by_id[3]["delta"] == -16
    assert by_id[3]["result"] == "LOSS"


def test_guest_moves_one_and_a_half_times():
    updates = calculate_match_deltas(
        [_player(1, is_guest=True), _player(2)], [_player(3), _player(4, is_guest=True)], 21, 15
    )
    by_id = {u["id"]: u["delta"] for u in updates}
    assert by_id == {1: 24, 2: 16, 3: -16, 4: -24}


def test_favorite_win_moves_less_than_even_match():
    updates = calculate_match_deltas(
        [_player(1, 1400), _player(2, 1400)], [_player(3), _player(4)], 21, 19
    )
    by_id = {u["id"]: u["delta"] for u in updates}
    # 32 * (1 - 0.7597) = 7.69
    assert by_id[1] == 8
    assert by_id[3] == -8


def test_draw_between_equal_teams_is_zero():
    updates = calculate_match_deltas([_player(1), _player(2)], [_player(3), _player(4)], 6, 6)
    assert all(u["delta"] == 0 for u in updates)
    assert all(u["result"] == "DRAW" for u in updates)


def test_malformed_scores_degrade_instead_of_raising():
    updates = calculate_match_deltas(
        [_player(1, "garbage")], [_player(2, None)], None, "x"
    )
    assert len(updates) == 2
    assert all(u["rating_before"] == 1200 for u in updates)


def test_rating_after_is_before_plus_rounded_delta():
    updates = calculate_match_deltas(
        [_player(1, 1333), _player(2, 1287)], [_player(3, 1411), _player(4, 1190)], 21, 17
    )
    for u in updates:
        assert u["rating_after"] == u["rating_before"] + u["delta"]


# ============================================================================
# Dynamic-K strategy
# ============================================================================

@pytest.mark.parametrize("player,rating,is_tournament,expected", [
    ({"role": "coach", "is_guest": True}, 1200, True, 0),
    ({"is_guest": True}, 1200, True, 80),
    ({"total_games_history": 50}, 1200, True, 40),
    ({"total_games_history": 3, "games_played_today": 2}, 1200, False, 64),
    ({"total_games_history": 100}, 1900, False, 20),
    ({"total_games_history": 100}, 1800, False, 32),
    ({"total_games_history": 99}, 1900, False, 32),
    ({"total_games_history": 40}, 1500, False, 32),
])
def test_dynamic_k_factor_precedence(player, rating, is_tournament, expected):
    assert dynamic_k_factor(player, rating, is_tournament) == expected


def test_dynamic_deltas_per_player_k():
    winners = [
        {"id": 1, "elo_men_doubles": 1200, "total_games_history": 50},
        {"id": 2, "elo_men_doubles": 1200, "role": "coach"},
    ]
    losers = [
        {"id": 3, "elo_men_doubles": 1200, "total_games_history": 5},
        {"id": 4, "elo_men_doubles": 1200, "is_guest": True},
    ]
    updates = calculate_dynamic_deltas(winners, losers, "MEN_D")
    by_id = {u["id"]: u for u in updates}
    assert by_id[1]["k"] == 32 and by_id[1]["delta"] == 16
    assert by_id[2]["k"] == 0 and by_id[2]["delta"] == 0
    assert by_id[3]["k"] == 64 and by_id[3]["delta"] == -32
    assert by_id[4]["k"] == 80 and by_id[4]["delta"] == -40
    assert all(u["field"] == "elo_men_doubles" for u in updates)


def test_dynamic_deltas_tournament_uses_forty():
    winners = [{"id": 1, "elo_singles": 1200, "total_games_history": 500}]
    losers = [{"id": 2, "elo_singles": 1200, "total_games_history": 500}]
    updates = calculate_dynamic_deltas(winners, losers, "SINGLES", is_tournament=True)
    assert [u["delta"] for u in updates] == [20, -20]

