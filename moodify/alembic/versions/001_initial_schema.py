"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000 UTC

Creates the three analytics tables:
  - analytics_events     (one insert-only row per tracked event, JSON payload blob)
  - user_preferences     (song_play counters per user/mood/language/goal)
  - playlist_engagement  (one row per playlist_open)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    # --- analytics_events table ---
    op.create_table(
        "analytics_events",
        sa.Column("id", _ID, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False, comment="Stable per-device user id or 'anonymous'"),
        sa.Column("session_id", sa.String(length=64), nullable=True, comment="Client process-lifetime session id"),
        sa.Column("event_type", sa.String(length=64), nullable=False, comment="Open vocabulary: song_play, song_skip, playlist_open, ..."),
        sa.Column("event_data", _JSON, nullable=False, comment="Event payload, stored opaque"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_analytics_events_user_type_ts",
        "analytics_events",
        ["user_id", "event_type", "timestamp"],
    )
    op.create_index(
        "ix_analytics_events_type_ts",
        "analytics_events",
        ["event_type", "timestamp"],
    )

    # --- user_preferences table ---
    op.create_table(
        "user_preferences",
        sa.Column("id", _ID, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("mood", sa.String(length=64), nullable=True),
        sa.Column("language", sa.String(length=64), nullable=True),
        sa.Column("goal", sa.String(length=64), nullable=True),
        sa.Column("play_count", sa.Integer(), nullable=False),
        sa.Column("last_played", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "mood", "language", "goal", name="uq_user_preferences_key"),
    )
    op.create_index(op.f("ix_user_preferences_user_id"), "user_preferences", ["user_id"], unique=False)

    # --- playlist_engagement table ---
    op.create_table(
        "playlist_engagement",
        sa.Column("id", _ID, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("playlist_id", sa.String(length=128), nullable=True),
        sa.Column("playlist_name", sa.String(length=255), nullable=True),
        sa.Column("mood", sa.String(length=64), nullable=True),
        sa.Column("goal", sa.String(length=64), nullable=True),
        sa.Column("language", sa.String(length=64), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_playlist_engagement_user_id"), "playlist_engagement", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_playlist_engagement_user_id"), table_name="playlist_engagement")
    op.drop_table("playlist_engagement")
    op.drop_index(op.f("ix_user_preferences_user_id"), table_name="user_preferences")
    op.drop_table("user_preferences")
    op.drop_index("ix_analytics_events_type_ts", table_name="analytics_events")
    op.drop_index("ix_analytics_events_user_type_ts", table_name="analytics_events")
    op.drop_table("analytics_events")
