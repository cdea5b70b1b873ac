"""
Tests for waiting queue operations.
"""
from datetime import timedelta

import pytest

from rallygogo.database.models import Match, MatchCategory, MatchStatus, MatchType
from rallygogo.services import data_service, queue_service
from rallygogo.services.errors import ConflictError, NotFoundError, ValidationError


async def _seat(db_session, player_id, status, court="Court 1"):
    match = Match(
        court_name=court,
        status=status,
        player_1=player_id,
        match_category=MatchCategory.MEN_D,
        match_type=MatchType.REGULAR,
    )
    db_session.add(match)
    await db_session.commit()
    return match


@pytest.mark.parametrize("value,expected", [
    (None, None),
    ("", None),
    ("9:05", "09:05"),
    ("23:59", "23:59"),
])
def test_validate_departure_time(value, expected):
    assert queue_service.validate_departure_time(value) == expected


@pytest.mark.parametrize("value", ["24:00", "12:60", "noon", "1230"])
def test_validate_departure_time_rejects_bad_values(value):
    with pytest.raises(ValidationError):
        queue_service.validate_departure_time(value)


@pytest.mark.asyncio
async def test_join_queue_scores_and_stores_departure(db_session, make_profile, now):
    player = await make_profile()
    entry = await queue_service.join_queue(db_session, player.id, "21:50", now=now)

    assert entry["player_id"] == player.id
    assert entry["departure_time"] == "21:50"
    # Initial boost plus the departure bonus
    assert entry["priority_score"] == 13000
    assert entry["profile"]["departure_time"] == "21:50"


@pytest.mark.asyncio
async def test_join_queue_twice_conflicts(db_session, make_profile, now):
    player = await make_profile()
    await queue_service.join_queue(db_session, player.id, now=now)
    with pytest.raises(ConflictError):
        await queue_service.join_queue(db_session, player.id, now=now)


@pytest.mark.asyncio
async def test_join_queue_unknown_player(db_session):
    with pytest.raises(NotFoundError):
        await queue_service.join_queue(db_session, 999)


@pytest.mark.asyncio
async def test_join_queue_rejects_bad_departure(db_session, make_profile):
    player = await make_profile()
    with pytest.raises(ValidationError):
        await queue_service.join_queue(db_session, player.id, "7pm")
    assert await data_service.get_queue_entry(db_session, player.id) is None


@pytest.mark.asyncio
async def test_join_queue_refused_while_playing(db_session, make_profile):
    player = await make_profile()
    await _seat(db_session, player.id, MatchStatus.PLAYING)
    with pytest.raises(ConflictError):
        await queue_service.join_queue(db_session, player.id)


@pytest.mark.asyncio
async def test_join_queue_allowed_while_result_pending(db_session, make_profile, now):
    player = await make_profile()
    await _seat(db_session, player.id, MatchStatus.PENDING, court=None)
    entry = await queue_service.join_queue(db_session, player.id, now=now)
    assert entry["player_id"] == player.id


@pytest.mark.asyncio
async def test_leave_queue(db_session, make_profile, now):
    player = await make_profile()
    await queue_service.join_queue(db_session, player.id, now=now)

    assert await queue_service.leave_queue(db_session, player.id) is True
    assert await queue_service.leave_queue(db_session, player.id) is False


@pytest.mark.asyncio
async def test_update_departure_time(db_session, make_profile, now):
    player = await make_profile()
    await queue_service.join_queue(db_session, player.id, now=now)

    entry = await queue_service.update_departure_time(db_session, player.id, "22:30")
    assert entry["departure_time"] == "22:30"
    profile = await data_service.get_profile(db_session, player.id)
    assert profile.departure_time == "22:30"


@pytest.mark.asyncio
async def test_update_departure_time_requires_queue_entry(db_session, make_profile):
    player = await make_profile()
    with pytest.raises(NotFoundError):
        await queue_service.update_departure_time(db_session, player.id, "22:30")


@pytest.mark.asyncio
async def test_get_scored_queue_orders_and_persists(db_session, make_profile, enqueue, now):
    early = (await make_profile()).id
    late = (await make_profile()).id
    tired = (await make_profile(games_played_today=2)).id
    await enqueue(late, joined_at=now - timedelta(minutes=1))
    await enqueue(early, joined_at=now - timedelta(minutes=20))
    await enqueue(tired, joined_at=now - timedelta(minutes=30))

    scored = await queue_service.get_scored_queue(db_session, now)
    assert [c["player_id"] for c in scored] == [early, late, tired]
    assert [c["priority_score"] for c in scored] == [9000, 5200, 4000]

    db_session.expire_all()
    stored = await data_service.get_queue_entry(db_session, early)
    assert stored.priority_score == 9000


@pytest.mark.asyncio
async def test_reset_queue_clears_entries_and_rolls_games(db_session, make_profile, enqueue):
    player = await make_profile(games_played_today=3, total_games_history=10)
    other = await make_profile()
    await enqueue(player.id)
    await enqueue(other.id)

    result = await queue_service.reset_queue(db_session)
    assert result == {"removed": 2}
    assert await data_service.list_active_queue(db_session) == []

    profile = await data_service.get_profile(db_session, player.id)
    assert profile.games_played_today == 0
    assert profile.total_games_history == 13
