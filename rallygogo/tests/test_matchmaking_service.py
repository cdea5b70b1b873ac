"""
Tests for automatic match generation.
"""
import pytest

from rallygogo.services.matchmaking_service import (
    apply_outlier_guard,
    extract_pool,
    generate_match,
    normalize_gender,
    select_four,
    snake_draft,
)


def _c(pid, gender="Male", is_guest=False, score=None, **ratings):
    """Queue candidate; by default earlier ids have higher priority."""
    return {
        "player_id": pid,
        "priority_score": score if score is not None else 10000 - pid,
        "profile": {"id": pid, "gender": gender, "is_guest": is_guest, **ratings},
    }


def _ids(team):
    return [c["player_id"] for c in team]


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

def test_fewer_than_four_candidates_returns_none():
    assert generate_match([]) is None
    assert generate_match([_c(1), _c(2), _c(3)]) is None


@pytest.mark.parametrize("value,expected", [
    ("Male", "Male"),
    ("male", "Male"),
    ("M", "Male"),
    ("Female", "Female"),
    ("f", "Female"),
    (None, "Female"),
    ("", "Female"),
])
def test_normalize_gender(value, expected):
    assert normalize_gender(value) == expected


def test_generator_sorts_by_priority_score():
    queue = [_c(i, gender="Female", score=i) for i in range(1, 7)]
    proposal = generate_match(queue)
    assert sorted(proposal["player_ids"]) == [3, 4, 5, 6]


# ---------------------------------------------------------------------------
# VIP fast track
# ---------------------------------------------------------------------------

def test_vip_guest_fast_tracked_with_high_rated_partners():
    queue = [
        _c(1, is_guest=True, elo_mixed_doubles=2100),
        _c(2, elo_mixed_doubles=1850),
        _c(3, elo_mixed_doubles=1820),
        _c(4, elo_mixed_doubles=1790),
        _c(5, gender="Female", elo_women_doubles=1805),
        _c(6),
        _c(7),
    ]
    proposal = generate_match(queue)
    assert proposal["match_type"] == "VIP_MATCH"
    # Snake draft on best rating: 2100 + 1805 vs 1850 + 1820
    assert _ids(proposal["team1"]) == [1, 5]
    assert _ids(proposal["team2"]) == [2, 3]
    assert proposal["player_ids"] == [1, 5, 2, 3]


def test_vip_guest_waits_without_three_partners():
    queue = [
        _c(1, is_guest=True, elo_mixed_doubles=2100),
        _c(2, elo_mixed_doubles=1850),
        _c(3, elo_mixed_doubles=1820),
        _c(4, elo_mixed_doubles=1790),
        _c(5, elo_mixed_doubles=1700),
    ]
    proposal = generate_match(queue)
    assert proposal["match_type"] != "VIP_MATCH"


def test_high_rated_member_is_not_vip():
    queue = [_c(1, elo_mixed_doubles=2100)] + [_c(i, elo_mixed_doubles=1900) for i in range(2, 6)]
    assert generate_match(queue)["match_type"] == "MEN_D"


# ---------------------------------------------------------------------------
# Pool and category
# ---------------------------------------------------------------------------

def test_four_women_in_pool_form_womens_doubles():
    queue = [
        _c(1, gender="Female"),
        _c(2, gender="Male"),
        _c(3, gender="Female"),
        _c(4, gender="Female"),
        _c(5, gender="Female"),
        _c(6, gender="Female"),
    ]
    proposal = generate_match(queue)
    assert proposal["match_type"] == "WOMEN_D"
    assert sorted(proposal["player_ids"]) == [1, 3, 4, 5]


def test_four_men_form_mens_doubles():
    queue = [_c(1), _c(2), _c(3, gender="Female"), _c(4), _c(5), _c(6, gender="Female")]
    proposal = generate_match(queue)
    assert proposal["match_type"] == "MEN_D"
    assert sorted(proposal["player_ids"]) == [1, 2, 4, 5]


def test_two_and_two_form_mixed():
    queue = [
        _c(1), _c(2, gender="Female"), _c(3), _c(4, gender="Female"), _c(5), _c(6, gender="Female"),
    ]
    selected, category = select_four(queue)
    assert category == "MIXED"
    assert _ids(selected) == [1, 3, 2, 4]


def test_fallback_takes_top_four_as_mixed():
    queue = [_c(1), _c(2), _c(3), _c(4, gender="Female")]
    proposal = generate_match(queue)
    assert proposal["match_type"] == "MIXED"
    assert sorted(proposal["player_ids"]) == [1, 2, 3, 4]


def test_wildcard_of_missing_gender_replaces_last_pool_member():
    queue = [_c(i) for i in range(1, 8)] + [_c(8, gender="Female"), _c(9, gender="Female")]
    pool = extract_pool(queue)
    assert _ids(pool) == [1, 2, 3, 4, 5, 8]


def test_wildcard_only_searched_in_ranks_seven_to_ten():
    queue = [_c(i) for i in range(1, 11)] + [_c(11, gender="Female")]
    pool = extract_pool(queue)
    assert _ids(pool) == [1, 2, 3, 4, 5, 6]


def test_mixed_pool_gets_no_wildcard():
    queue = [_c(1, gender="Female")] + [_c(i) for i in range(2, 9)] + [_c(9, gender="Female")]
    assert _ids(extract_pool(queue)) == [1, 2, 3, 4, 5, 6]


# ---------------------------------------------------------------------------
# Outlier guard
# ---------------------------------------------------------------------------

def test_outlier_replaced_by_same_gender_reserve():
    queue = [
        _c(1, elo_men_doubles=2000),
        _c(2, elo_men_doubles=1400),
        _c(3, elo_men_doubles=1300),
        _c(4, elo_men_doubles=1200),
        _c(5, elo_men_doubles=1350),
    ]
    proposal = generate_match(queue)
    assert proposal["match_type"] == "MEN_D"
    assert sorted(proposal["player_ids"]) == [2, 3, 4, 5]
    assert _ids(proposal["team1"]) == [2, 4]
    assert _ids(proposal["team2"]) == [5, 3]


def test_outlier_kept_when_no_reserve_exists():
    queue = [
        _c(1, elo_men_doubles=2000),
        _c(2, elo_men_doubles=1400),
        _c(3, elo_men_doubles=1300),
        _c(4, elo_men_doubles=1200),
    ]
    proposal = generate_match(queue)
    assert sorted(proposal["player_ids"]) == [1, 2, 3, 4]
    assert _ids(proposal["team1"]) == [1, 4]


def test_outlier_reserve_must_share_gender():
    pool = [
        _c(1, gender="Female", elo_women_doubles=2000),
        _c(2, gender="Female", elo_women_doubles=1500),
        _c(3, gender="Female", elo_women_doubles=1400),
        _c(4, gender="Female", elo_women_doubles=1300),
        _c(5, gender="Male", elo_women_doubles=1200),
    ]
    selected = apply_outlier_guard(pool[:4], pool, "WOMEN_D")
    assert _ids(selected) == [1, 2, 3, 4]


def test_gap_of_exactly_four_hundred_is_not_an_outlier():
    pool = [
        _c(1, elo_men_doubles=1800),
        _c(2, elo_men_doubles=1400),
        _c(3, elo_men_doubles=1300),
        _c(4, elo_men_doubles=1200),
        _c(5, elo_men_doubles=1350),
    ]
    assert _ids(apply_outlier_guard(pool[:4], pool, "MEN_D")) == [1, 2, 3, 4]


# ---------------------------------------------------------------------------
# Team split
# ---------------------------------------------------------------------------

def test_snake_draft_pairs_first_with_fourth():
    players = [
        _c(1, elo_mixed_doubles=1300),
        _c(2, elo_mixed_doubles=1500),
        _c(3, elo_mixed_doubles=1200),
        _c(4, elo_mixed_doubles=1400),
    ]
    teams = snake_draft(players, lambda c: c["profile"]["elo_mixed_doubles"])
    assert _ids(teams["team1"]) == [2, 3]
    assert _ids(teams["team2"]) == [4, 1]


def test_generated_teams_always_follow_snake_order():
    queue = [
        _c(1, gender="Female", elo_women_doubles=1250),
        _c(2, gender="Female", elo_women_doubles=1600),
        _c(3, gender="Female", elo_women_doubles=1450),
        _c(4, gender="Female", elo_women_doubles=1300),
    ]
    proposal = generate_match(queue)
    ratings = [c["profile"]["elo_women_doubles"] for c in proposal["team1"] + proposal["team2"]]
    ranked = sorted(ratings, reverse=True)
    assert ratings == [ranked[0], ranked[3], ranked[1], ranked[2]]
