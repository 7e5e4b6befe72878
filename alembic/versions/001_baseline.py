"""Baseline schema -- sessions, stories, votes and participants.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: str | None = None


def upgrade() -> None:
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("session_code", sa.String(6), nullable=True, unique=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("dealer", sa.String(64), nullable=True),
        sa.Column("timebox_minutes", sa.Integer(), nullable=False),
        sa.Column("total_stories", sa.Integer(), nullable=False),
        sa.Column("completed_stories", sa.Integer(), nullable=False),
        sa.Column("consensus_rate", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sessions_status", "sessions", ["status"])
    op.create_index("ix_sessions_created_at", "sessions", ["created_at"])

    op.create_table(
        "stories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(36),
            sa.ForeignKey("sessions.id"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("sequence_order", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("final_estimate", sa.String(40), nullable=True),
        sa.Column("vote_summary", sa.String(200), nullable=True),
        sa.Column("consensus_achieved", sa.Boolean(), nullable=False),
        sa.Column("voting_started", sa.DateTime(), nullable=True),
        sa.Column("completed_on", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("session_id", "sequence_order", name="uq_stories_order"),
    )
    op.create_index("ix_stories_session_id", "stories", ["session_id"])
    op.create_index("ix_stories_session_status", "stories", ["session_id", "status"])

    op.create_table(
        "votes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(36),
            sa.ForeignKey("sessions.id"),
            nullable=False,
        ),
        sa.Column(
            "story_id",
            sa.String(36),
            sa.ForeignKey("stories.id"),
            nullable=False,
        ),
        sa.Column("voter_id", sa.String(64), nullable=False),
        sa.Column("vote_value", sa.String(40), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False),
        sa.Column("created_on", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "story_id", "voter_id", "version", name="uq_votes_story_voter_version"
        ),
    )
    op.create_index("ix_votes_session_id", "votes", ["session_id"])
    op.create_index("ix_votes_story_id", "votes", ["story_id"])
    op.create_index("ix_votes_story_current", "votes", ["story_id", "is_current"])

    op.create_table(
        "participants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(36),
            sa.ForeignKey("sessions.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.Column("left_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_participants_session_id", "participants", ["session_id"])
    op.create_index(
        "ix_participants_session_user", "participants", ["session_id", "user_id"]
    )


def downgrade() -> None:
    op.drop_table("participants")
    op.drop_table("votes")
    op.drop_table("stories")
    op.drop_table("sessions")
