"""
SQLAlchemy ORM models for the RallyGoGo venue: profiles, the waiting
queue, court matches and their rating audit trail.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from rallygogo.database.db import Base
from rallygogo.utils.constants import INITIAL_RATING


class MatchStatus(str, enum.Enum):
    """Match lifecycle status."""

    DRAFT = "DRAFT"
    PLAYING = "PLAYING"
    SCORING = "SCORING"
    PENDING = "PENDING"
    FINISHED = "FINISHED"
    DISPUTED = "DISPUTED"


class MatchCategory(str, enum.Enum):
    """Which rating field a match affects."""

    MEN_D = "MEN_D"
    WOMEN_D = "WOMEN_D"
    MIXED = "MIXED"
    SINGLES = "SINGLES"
    VIP_MATCH = "VIP_MATCH"


class MatchType(str, enum.Enum):
    """Regular play or tournament play (tournament needs a code to report)."""

    REGULAR = "REGULAR"
    TOURNAMENT = "TOURNAMENT"


class WinnerTeam(str, enum.Enum):
    """Reported outcome."""

    TEAM_1 = "TEAM_1"
    TEAM_2 = "TEAM_2"
    DRAW = "DRAW"


class PlayerRole(str, enum.Enum):
    """Profile role. Coaches have frozen ratings, admins may override."""

    PLAYER = "player"
    COACH = "coach"
    ADMIN = "admin"


# Statuses in which a match still occupies players (and possibly a court)
ACTIVE_MATCH_STATUSES = (
    MatchStatus.DRAFT,
    MatchStatus.PLAYING,
    MatchStatus.SCORING,
)
OPEN_MATCH_STATUSES = ACTIVE_MATCH_STATUSES + (MatchStatus.PENDING, MatchStatus.DISPUTED)


class Profile(Base):
    """Player profiles (members and guests)."""

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True, unique=True)
    gender = Column(String, nullable=True)  # "Male" / "Female" / unset
    is_guest = Column(Boolean, default=False, nullable=False)
    ntrp = Column(Float, nullable=True)
    role = Column(String, default=PlayerRole.PLAYER.value, nullable=False)
    elo_men_doubles = Column(Integer, default=INITIAL_RATING, nullable=False)
    elo_women_doubles = Column(Integer, default=INITIAL_RATING, nullable=False)
    elo_mixed_doubles = Column(Integer, default=INITIAL_RATING, nullable=False)
    elo_singles = Column(Integer, default=INITIAL_RATING, nullable=False)
    games_played_today = Column(Integer, default=0, nullable=False)
    total_games_history = Column(Integer, default=0, nullable=False)  # games before today
    departure_time = Column(String, nullable=True)  # "HH:MM" venue-local, last stated
    admin_memo = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    queue_entry = relationship(
        "QueueEntry", back_populates="player", uselist=False, passive_deletes=True
    )
    rating_history = relationship("RatingHistory", back_populates="player", passive_deletes=True)

    __table_args__ = (
        Index("idx_profiles_is_guest", "is_guest"),
        Index("idx_profiles_name", "name"),
    )


class QueueEntry(Base):
    """One row per waiting player."""

    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    joined_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    departure_time = Column(String, nullable=True)
    priority_score = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    player = relationship("Profile", back_populates="queue_entry")

    __table_args__ = (
        Index("idx_queue_entries_active", "is_active"),
        Index("idx_queue_entries_joined_at", "joined_at"),
    )


class Match(Base):
    """Court matches from draft to confirmation."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Unique while set: a court holds at most one active match. Cleared when
    # the score is reported so the court frees up before confirmation.
    court_name = Column(String, nullable=True, unique=True)
    status = Column(Enum(MatchStatus), nullable=False, default=MatchStatus.DRAFT)
    player_1 = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    player_2 = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    player_3 = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    player_4 = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    match_category = Column(Enum(MatchCategory), nullable=False, default=MatchCategory.MIXED)
    match_type = Column(Enum(MatchType), nullable=False, default=MatchType.REGULAR)
    score_team1 = Column(Integer, nullable=True)
    score_team2 = Column(Integer, nullable=True)
    winner_team = Column(Enum(WinnerTeam), nullable=True)
    reported_by = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    confirmed_by = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def team1_ids(self):
        """Player IDs of team 1 (player_2 is empty for singles)."""
        return [pid for pid in (self.player_1, self.player_2) if pid is not None]

    @property
    def team2_ids(self):
        """Player IDs of team 2 (player_4 is empty for singles)."""
        return [pid for pid in (self.player_3, self.player_4) if pid is not None]

    @property
    def player_ids(self):
        return self.team1_ids + self.team2_ids

    __table_args__ = (
        Index("idx_matches_status", "status"),
        Index("idx_matches_p1", "player_1"),
        Index("idx_matches_p2", "player_2"),
        Index("idx_matches_p3", "player_3"),
        Index("idx_matches_p4", "player_4"),
    )


class RatingHistory(Base):
    """Append-only rating audit trail."""

    __tablename__ = "rating_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    match_id = Column(Integer, nullable=True)  # no FK: history outlives rolled-back matches
    category = Column(Enum(MatchCategory), nullable=False)
    rating_after = Column(Integer, nullable=False)
    delta = Column(Integer, nullable=False)
    is_compensation = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    player = relationship("Profile", back_populates="rating_history")

    __table_args__ = (
        Index("idx_rating_history_player", "player_id"),
        Index("idx_rating_history_match", "match_id"),
    )


class MatchEvent(Base):
    """Idempotency ledger for match transitions keyed by client request id."""

    __tablename__ = "match_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_request_id = Column(String, nullable=False, unique=True)
    match_id = Column(Integer, nullable=False)
    event_type = Column(String, nullable=False)
    payload = Column(Text, nullable=True)  # JSON result returned on replay
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_match_events_match", "match_id"),)


class MvpVote(Base):
    """MVP votes cast by match participants."""

    __tablename__ = "mvp_votes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    voter_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    target_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    tag = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("match_id", "voter_id", name="uq_mvp_votes_match_voter"),
        Index("idx_mvp_votes_target", "target_id"),
    )


class Setting(Base):
    """Application configuration."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
