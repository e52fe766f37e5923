"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from moodify.models.analytics_event import AnalyticsEventORM
from moodify.models.playlist_engagement import PlaylistEngagementORM
from moodify.models.user_preference import UserPreferenceORM

__all__ = ["AnalyticsEventORM", "PlaylistEngagementORM", "UserPreferenceORM"]
