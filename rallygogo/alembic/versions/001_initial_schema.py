"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-16 09:00:00.000000

Initial schema: profiles, queue entries, matches, rating history, match
events (confirmation idempotency), MVP votes and settings.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MATCH_STATUS = sa.Enum(
    'DRAFT', 'PLAYING', 'SCORING', 'PENDING', 'FINISHED', 'DISPUTED', name='matchstatus'
)
MATCH_CATEGORY = sa.Enum(
    'MEN_D', 'WOMEN_D', 'MIXED', 'SINGLES', 'VIP_MATCH', name='matchcategory'
)
MATCH_TYPE = sa.Enum('REGULAR', 'TOURNAMENT', name='matchtype')
WINNER_TEAM = sa.Enum('TEAM_1', 'TEAM_2', 'DRAW', name='winnerteam')


def player_fk(name):
    return sa.Column(
        name, sa.Integer(), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True
    )


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        'profiles',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True, unique=True),
        sa.Column('gender', sa.String(), nullable=True),
        sa.Column('is_guest', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ntrp', sa.Float(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='player'),
        sa.Column('elo_men_doubles', sa.Integer(), nullable=False, server_default='1200'),
        sa.Column('elo_women_doubles', sa.Integer(), nullable=False, server_default='1200'),
        sa.Column('elo_mixed_doubles', sa.Integer(), nullable=False, server_default='1200'),
        sa.Column('elo_singles', sa.Integer(), nullable=False, server_default='1200'),
        sa.Column('games_played_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_games_history', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('departure_time', sa.String(), nullable=True),
        sa.Column('admin_memo', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_profiles_is_guest', 'profiles', ['is_guest'])
    op.create_index('idx_profiles_name', 'profiles', ['name'])

    op.create_table(
        'queue_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'player_id', sa.Integer(),
            sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False, unique=True,
        ),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('departure_time', sa.String(), nullable=True),
        sa.Column('priority_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index('idx_queue_entries_active', 'queue_entries', ['is_active'])
    op.create_index('idx_queue_entries_joined_at', 'queue_entries', ['joined_at'])

    op.create_table(
        'matches',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('court_name', sa.String(), nullable=True, unique=True),
        sa.Column('status', MATCH_STATUS, nullable=False),
        player_fk('player_1'),
        player_fk('player_2'),
        player_fk('player_3'),
        player_fk('player_4'),
        sa.Column('match_category', MATCH_CATEGORY, nullable=False),
        sa.Column('match_type', MATCH_TYPE, nullable=False),
        sa.Column('score_team1', sa.Integer(), nullable=True),
        sa.Column('score_team2', sa.Integer(), nullable=True),
        sa.Column('winner_team', WINNER_TEAM, nullable=True),
        player_fk('reported_by'),
        player_fk('confirmed_by'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_matches_status', 'matches', ['status'])
    for slot in ('p1', 'p2', 'p3', 'p4'):
        op.create_index(f'idx_matches_{slot}', 'matches', [f'player_{slot[1]}'])

    op.create_table(
        'rating_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'player_id', sa.Integer(),
            sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('match_id', sa.Integer(), nullable=True),
        sa.Column('category', MATCH_CATEGORY, nullable=False),
        sa.Column('rating_after', sa.Integer(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('is_compensation', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_rating_history_player', 'rating_history', ['player_id'])
    op.create_index('idx_rating_history_match', 'rating_history', ['match_id'])

    op.create_table(
        'match_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('client_request_id', sa.String(), nullable=False, unique=True),
        sa.Column('match_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_match_events_match', 'match_events', ['match_id'])

    op.create_table(
        'mvp_votes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'match_id', sa.Integer(),
            sa.ForeignKey('matches.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'voter_id', sa.Integer(),
            sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'target_id', sa.Integer(),
            sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('tag', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('match_id', 'voter_id', name='uq_mvp_votes_match_voter'),
    )
    op.create_index('idx_mvp_votes_target', 'mvp_votes', ['target_id'])

    op.create_table(
        'settings',
        sa.Column('key', sa.String(), primary_key=True),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    for table in (
        'settings', 'mvp_votes', 'match_events', 'rating_history', 'matches',
        'queue_entries', 'profiles',
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum_type in (WINNER_TEAM, MATCH_TYPE, MATCH_CATEGORY, MATCH_STATUS):
        enum_type.drop(bind, checkfirst=True)
