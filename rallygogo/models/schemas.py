"""
Pydantic models for API request/response validation.
"""

from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


class ProfileCreate(BaseModel):
    """Member signup data."""

    name: str = Field(min_length=1)
    gender: Optional[str] = None
    email: Optional[str] = None
    ntrp: Optional[float] = None


class ProfileUpdate(BaseModel):
    """Admin profile edit. Only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")
    name: Optional[str] = None
    email: Optional[str] = None
    gender: Optional[str] = None
    ntrp: Optional[float] = None
    role: Optional[str] = None
    admin_memo: Optional[str] = None
    is_guest: Optional[bool] = None
    games_played_today: Optional[int] = Field(default=None, ge=0)
    total_games_history: Optional[int] = Field(default=None, ge=0)
    departure_time: Optional[str] = None
    elo_men_doubles: Optional[int] = None
    elo_women_doubles: Optional[int] = None
    elo_mixed_doubles: Optional[int] = None
    elo_singles: Optional[int] = None


class ProfileResponse(BaseModel):
    """Player profile."""

    id: int
    name: str
    email: Optional[str] = None
    gender: Optional[str] = None
    is_guest: bool
    ntrp: Optional[float] = None
    role: str
    elo_men_doubles: int
    elo_women_doubles: int
    elo_mixed_doubles: int
    elo_singles: int
    games_played_today: int
    total_games_history: int
    departure_time: Optional[str] = None
    admin_memo: Optional[str] = None
    created_at: Optional[str] = None


class GuestRegistration(BaseModel):
    """Walk-in guest data."""

    name: str = Field(min_length=1)
    gender: Optional[str] = None
    ntrp: float = 3.0
    departure_time: Optional[str] = None


class JoinQueueRequest(BaseModel):
    """Join the waiting queue."""

    departure_time: Optional[str] = None


class UpdateDepartureRequest(BaseModel):
    departure_time: Optional[str] = None


class QueueEntryResponse(BaseModel):
    """Scored queue entry."""

    player_id: int
    joined_at: Optional[str] = None
    departure_time: Optional[str] = None
    priority_score: int
    profile: Optional[ProfileResponse] = None


class MatchResponse(BaseModel):
    """Court match."""

    id: int
    court_name: Optional[str] = None
    status: str
    player_1: Optional[int] = None
    player_2: Optional[int] = None
    player_3: Optional[int] = None
    player_4: Optional[int] = None
    match_category: str
    match_type: str
    score_team1: Optional[int] = None
    score_team2: Optional[int] = None
    winner_team: Optional[str] = None
    reported_by: Optional[int] = None
    confirmed_by: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class AutoMatchRequest(BaseModel):
    match_type: str = "REGULAR"


class ManualMatchRequest(BaseModel):
    """Hand-picked players: 4 (teams 1+2 vs 3+4) or 2 for singles."""

    player_ids: List[int]
    match_type: str = "REGULAR"


class ReportScoreRequest(BaseModel):
    """Score submission."""

    score_team1: Optional[int] = None
    score_team2: Optional[int] = None
    is_tournament: bool = False
    tournament_code: Optional[str] = None


class ConfirmRequest(BaseModel):
    """Confirmation keyed by a client-generated idempotency token."""

    client_request_id: str = Field(min_length=1, max_length=128)


class SwapPlayerRequest(BaseModel):
    slot: int = Field(ge=1, le=4)
    replacement_id: int


class MvpVoteRequest(BaseModel):
    target_id: int
    tag: str


class DynamicRatingRequest(BaseModel):
    """Administrative rating recompute."""

    category: str
    winner_ids: List[int]
    loser_ids: List[int]
    is_tournament: bool = False
    match_id: Optional[int] = None


class SettingUpdate(BaseModel):
    value: str
