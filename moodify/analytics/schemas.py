"""
schemas.py — Analytics HTTP data contracts (Pydantic v2).

Defines:
  - TrackEventRequest   (POST /analytics/track body — one AnalyticsEvent)
  - BatchTrackRequest   (POST /analytics/batch body)
  - TrackResponse / BatchTrackResponse / ErrorResponse

Bodies use camelCase keys, matching what the client sends.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from moodify.events import AnalyticsEvent


class TrackEventRequest(AnalyticsEvent):
    """Single event. userId / sessionId may be missing; eventType may not."""


class BatchTrackRequest(BaseModel):
    """
    Several events in one request, e.g. a client flushing its retry queue.
    The top-level userId is informational only; each event carries its own.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    events: List[AnalyticsEvent] = Field(default_factory=list)
    user_id: Optional[str] = None


class TrackResponse(BaseModel):
    success: bool = True
    message: str = "Event tracked successfully"
    id: Optional[int] = None


class BatchTrackResponse(BaseModel):
    success: bool = True
    message: str
    count: int


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


__all__ = [
    "TrackEventRequest",
    "BatchTrackRequest",
    "TrackResponse",
    "BatchTrackResponse",
    "ErrorResponse",
]
