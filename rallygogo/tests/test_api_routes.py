"""
HTTP surface tests. Services are monkeypatched; these check routing,
identity, request validation and the service-error to status mapping.
"""
import pytest
from fastapi.testclient import TestClient

from rallygogo.api.auth_dependencies import get_current_player
from rallygogo.api.main import app
from rallygogo.database.db import get_db_session
from rallygogo.services import (
    data_service,
    match_service,
    profile_service,
    queue_service,
    settings_service,
)
from rallygogo.services.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


def _profile(player_id=1, role="player", **fields):
    return {
        "id": player_id,
        "name": f"Player {player_id}",
        "email": None,
        "gender": "Male",
        "is_guest": False,
        "ntrp": 3.5,
        "role": role,
        "elo_men_doubles": 1200,
        "elo_women_doubles": 1200,
        "elo_mixed_doubles": 1200,
        "elo_singles": 1200,
        "games_played_today": 0,
        "total_games_history": 0,
        "departure_time": None,
        "admin_memo": None,
        "created_at": "2026-10-16T12:00:00+00:00",
        **fields,
    }


def _match(match_id=10, status="DRAFT", **fields):
    return {
        "id": match_id,
        "court_name": "Court 1",
        "status": status,
        "player_1": 1,
        "player_2": 2,
        "player_3": 3,
        "player_4": 4,
        "match_category": "MEN_D",
        "match_type": "REGULAR",
        "score_team1": None,
        "score_team2": None,
        "winner_team": None,
        "reported_by": None,
        "confirmed_by": None,
        "start_time": None,
        "end_time": None,
        **fields,
    }


async def _no_session():
    yield None


def make_client(player=None):
    """Client acting as ``player`` (no identity override when None)."""
    app.dependency_overrides[get_db_session] = _no_session
    if player is not None:
        app.dependency_overrides[get_current_player] = lambda: player
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Health and identity
# ---------------------------------------------------------------------------

def test_health():
    client = make_client()
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_missing_identity_is_unauthorized():
    client = make_client()
    r = client.post("/api/queue", json={})
    assert r.status_code == 401


def test_unknown_identity_is_unauthorized(monkeypatch):
    async def fake_get_profile(session, profile_id):
        return None

    monkeypatch.setattr(data_service, "get_profile", fake_get_profile, raising=True)
    client = make_client()
    r = client.post("/api/queue", json={}, headers={"X-Player-Id": "42"})
    assert r.status_code == 401


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

def test_join_queue(monkeypatch):
    captured = {}

    async def fake_join_queue(session, player_id, departure_time=None, now=None):
        captured.update(player_id=player_id, departure_time=departure_time)
        return {"player_id": player_id, "departure_time": departure_time, "priority_score": 5000}

    monkeypatch.setattr(queue_service, "join_queue", fake_join_queue, raising=True)
    client = make_client(_profile(7))
    r = client.post("/api/queue", json={"departure_time": "21:50"})
    assert r.status_code == 200, r.text
    assert r.json()["entry"]["priority_score"] == 5000
    assert captured == {"player_id": 7, "departure_time": "21:50"}


@pytest.mark.parametrize("error,status_code", [
    (ConflictError("Player is already in the queue"), 409),
    (ValidationError("Departure time must be HH:MM"), 400),
    (NotFoundError("Player 7 not found"), 404),
    (DependencyError("Storage unavailable"), 503),
])
def test_join_queue_error_mapping(monkeypatch, error, status_code):
    async def fake_join_queue(session, player_id, departure_time=None, now=None):
        raise error

    monkeypatch.setattr(queue_service, "join_queue", fake_join_queue, raising=True)
    client = make_client(_profile(7))
    r = client.post("/api/queue", json={})
    assert r.status_code == status_code
    assert r.json()["detail"] == str(error)


def test_get_queue(monkeypatch):
    async def fake_get_scored_queue(session, now=None, persist=True):
        return [
            {"player_id": 2, "joined_at": None, "departure_time": None, "priority_score": 9000,
             "profile": _profile(2)},
            {"player_id": 1, "joined_at": None, "departure_time": "22:00", "priority_score": 5000,
             "profile": _profile(1)},
        ]

    monkeypatch.setattr(queue_service, "get_scored_queue", fake_get_scored_queue, raising=True)
    client = make_client()
    r = client.get("/api/queue")
    assert r.status_code == 200
    assert [e["player_id"] for e in r.json()] == [2, 1]


def test_leave_queue_when_not_queued(monkeypatch):
    async def fake_leave_queue(session, player_id):
        return False

    monkeypatch.setattr(queue_service, "leave_queue", fake_leave_queue, raising=True)
    client = make_client(_profile(3))
    r = client.delete("/api/queue/me")
    assert r.status_code == 404


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

def test_auto_match_rejects_unknown_match_type():
    client = make_client(_profile())
    r = client.post("/api/courts/Court%201/auto-match", json={"match_type": "FRIENDLY"})
    assert r.status_code == 400


def test_manual_match(monkeypatch):
    async def fake_create_manual_match(session, court_name, player_ids, match_type=None):
        return _match(court_name=court_name)

    monkeypatch.setattr(match_service, "create_manual_match", fake_create_manual_match, raising=True)
    client = make_client(_profile())
    r = client.post("/api/courts/Court%202/manual-match", json={"player_ids": [1, 2, 3, 4]})
    assert r.status_code == 200, r.text
    assert r.json()["match"]["court_name"] == "Court 2"


def test_report_score_forbidden_for_outsider(monkeypatch):
    async def fake_report_score(session, match_id, reporter_id, score1, score2, **kwargs):
        raise PermissionDeniedError("Only match participants can report a score")

    monkeypatch.setattr(match_service, "report_score", fake_report_score, raising=True)
    client = make_client(_profile(99))
    r = client.post("/api/matches/10/report", json={"score_team1": 21, "score_team2": 15})
    assert r.status_code == 403


def test_report_score_passes_tournament_code(monkeypatch):
    captured = {}

    async def fake_report_score(session, match_id, reporter_id, score1, score2, **kwargs):
        captured.update(kwargs, match_id=match_id, reporter_id=reporter_id)
        return _match(match_id, status="PENDING", court_name=None, winner_team="TEAM_1")

    monkeypatch.setattr(match_service, "report_score", fake_report_score, raising=True)
    client = make_client(_profile(1))
    r = client.post(
        "/api/matches/10/report",
        json={"score_team1": 21, "score_team2": 15, "is_tournament": True, "tournament_code": "abc"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["match"]["status"] == "PENDING"
    assert captured == {
        "is_tournament": True, "tournament_code": "abc", "match_id": 10, "reporter_id": 1,
    }


def test_confirm_requires_request_id():
    client = make_client(_profile(3))
    r = client.post("/api/matches/10/confirm", json={})
    assert r.status_code == 422


def test_confirm_returns_replay_flag(monkeypatch):
    seen = []

    async def fake_confirm_match(session, match_id, confirmer_id, client_request_id, **kwargs):
        seen.append(client_request_id)
        return {
            "match_id": match_id,
            "status": "FINISHED",
            "confirmed_by": confirmer_id,
            "rating_updates": [],
            "requeued_player_ids": [],
            "replayed": len(seen) > 1,
        }

    monkeypatch.setattr(match_service, "confirm_match", fake_confirm_match, raising=True)
    client = make_client(_profile(3))
    first = client.post("/api/matches/10/confirm", json={"client_request_id": "abc-1"})
    second = client.post("/api/matches/10/confirm", json={"client_request_id": "abc-1"})
    assert first.status_code == 200 and second.status_code == 200
    assert first.json()["replayed"] is False
    assert second.json()["replayed"] is True
    assert seen == ["abc-1", "abc-1"]


def test_confirm_conflict(monkeypatch):
    async def fake_confirm_match(session, match_id, confirmer_id, client_request_id, **kwargs):
        raise ConflictError("Match 10 is FINISHED, not awaiting confirmation")

    monkeypatch.setattr(match_service, "confirm_match", fake_confirm_match, raising=True)
    client = make_client(_profile(3))
    r = client.post("/api/matches/10/confirm", json={"client_request_id": "abc-2"})
    assert r.status_code == 409


def test_swap_slot_out_of_range():
    client = make_client(_profile())
    r = client.post("/api/matches/10/swap", json={"slot": 5, "replacement_id": 8})
    assert r.status_code == 422


def test_unexpected_error_is_500(monkeypatch):
    async def fake_list_court_matches(session):
        raise RuntimeError("boom")

    monkeypatch.setattr(match_service, "list_court_matches", fake_list_court_matches, raising=True)
    client = make_client()
    r = client.get("/api/matches")
    assert r.status_code == 500


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

def test_register_guest(monkeypatch):
    async def fake_register_guest(session, name, gender, ntrp, departure_time=None, now=None):
        return {
            "profile": _profile(20, name=f"{name} (G)", is_guest=True, ntrp=ntrp + 0.25),
            "queue_entry": {"player_id": 20, "priority_score": 8000},
        }

    monkeypatch.setattr(profile_service, "register_guest", fake_register_guest, raising=True)
    client = make_client(_profile())
    r = client.post("/api/guests", json={"name": "Kim", "gender": "Female", "ntrp": 3.0})
    assert r.status_code == 200, r.text
    assert r.json()["profile"]["name"] == "Kim (G)"


def test_partner_recommendation_none(monkeypatch):
    async def fake_recommend_partner(session, profile_id):
        return None

    monkeypatch.setattr(profile_service, "recommend_partner", fake_recommend_partner, raising=True)
    client = make_client()
    r = client.get("/api/profiles/5/partner-recommendation")
    assert r.status_code == 200
    assert r.json() == {"recommendation": None}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

def test_admin_routes_require_admin_role():
    client = make_client(_profile(role="player"))
    r = client.post("/api/admin/matches/10/rollback")
    assert r.status_code == 403


def test_admin_rollback(monkeypatch):
    async def fake_rollback_match(session, match_id):
        return {"match_id": match_id, "previous_status": "FINISHED", "compensations": []}

    monkeypatch.setattr(match_service, "rollback_match", fake_rollback_match, raising=True)
    client = make_client(_profile(role="admin"))
    r = client.post("/api/admin/matches/10/rollback")
    assert r.status_code == 200
    assert r.json()["previous_status"] == "FINISHED"


def test_admin_force_confirm_requires_request_id(monkeypatch):
    calls = []

    async def fake_admin_force_confirm(session, match_id, admin_id, client_request_id, now=None):
        calls.append((admin_id, client_request_id))
        return {"match_id": match_id, "status": "FINISHED", "replayed": len(calls) > 1}

    monkeypatch.setattr(match_service, "admin_force_confirm", fake_admin_force_confirm, raising=True)
    client = make_client(_profile(50, role="admin"))
    r = client.post("/api/admin/matches/10/force-confirm")
    assert r.status_code == 422
    assert calls == []

    # A retry with the same token reaches the service unchanged
    for _ in range(2):
        r = client.post("/api/admin/matches/10/force-confirm", json={"client_request_id": "desk-7"})
        assert r.status_code == 200, r.text
    assert calls == [(50, "desk-7"), (50, "desk-7")]
    assert r.json()["replayed"] is True


def test_admin_settings(monkeypatch):
    store = {}

    async def fake_update_setting(session, key, value):
        store[key] = value

    monkeypatch.setattr(settings_service, "update_setting", fake_update_setting, raising=True)
    client = make_client(_profile(role="admin"))

    r = client.put("/api/admin/settings/tournament_code", json={"value": "spring-open"})
    assert r.status_code == 200
    assert store == {"tournament_code": "spring-open"}

    r = client.put("/api/admin/settings/admin_pin", json={"value": "0000"})
    assert r.status_code == 400


def test_admin_dynamic_rating_update(monkeypatch):
    async def fake_apply(session, category, winner_ids, loser_ids, is_tournament=False, match_id=None):
        return [{"id": winner_ids[0], "delta": 16}, {"id": loser_ids[0], "delta": -16}]

    monkeypatch.setattr(profile_service, "apply_dynamic_rating_update", fake_apply, raising=True)
    client = make_client(_profile(role="admin"))
    r = client.post(
        "/api/admin/ratings/apply",
        json={"category": "MEN_D", "winner_ids": [1], "loser_ids": [2]},
    )
    assert r.status_code == 200, r.text
