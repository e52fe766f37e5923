"""
delivery.py — HTTP delivery of events to the ingestion endpoint.

HttpDelivery is the one place the client talks to the server:
  send(event)        POST {api_base}/analytics/track
  send_batch(events) POST {api_base}/analytics/batch
  get_json(path)     GET  {api_base}/{path}

Any transport error or non-2xx status becomes DeliveryError. The emitter turns
that into a DeliveryResult instead of letting it reach the caller.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

import httpx

from moodify.events import AnalyticsEvent

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """An event could not be delivered (network failure or non-success status)."""


def encode_event(event: AnalyticsEvent) -> dict:
    """Wire body of one event. A payload that cannot be JSON-encoded fails like a delivery."""
    try:
        return event.to_wire()
    except (TypeError, ValueError) as exc:
        # PydanticSerializationError and UnicodeDecodeError are both ValueErrors
        raise DeliveryError(f"unencodable payload: {type(exc).__name__}: {exc}") from exc


class DeliveryStatus(str, Enum):
    SENT = "sent"
    QUEUED = "queued"
    DROPPED = "dropped"


@dataclass
class DeliveryResult:
    """
    Outcome of one emit() call.

    status:    SENT when the server acknowledged the event, QUEUED when it went to the retry queue,
               DROPPED when no valid event could be built (event is None then)
    error:     why it was queued or dropped
    queued:    False if it should have been queued but the queue write failed
    backed_up: None for non-critical events, else whether the backup write succeeded
    """
    event: Optional[AnalyticsEvent]
    status: DeliveryStatus
    error: Optional[str] = None
    queued: bool = False
    backed_up: Optional[bool] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.SENT


class HttpDelivery:
    def __init__(self, api_base: str, client: httpx.AsyncClient):
        self.api_base = api_base.rstrip("/")
        self.client = client

    def _url(self, path: str) -> str:
        return f"{self.api_base}/{path.lstrip('/')}"

    async def _post(self, path: str, body: dict) -> httpx.Response:
        try:
            response = await self.client.post(self._url(path), json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(f"{type(exc).__name__}: {exc}") from exc
        except (TypeError, ValueError) as exc:
            # httpx refuses NaN and infinity when encoding the body
            raise DeliveryError(f"unencodable payload: {exc}") from exc
        return response

    async def send(self, event: AnalyticsEvent) -> None:
        await self._post("analytics/track", encode_event(event))

    async def send_batch(self, events: Sequence[AnalyticsEvent], user_id: Optional[str] = None) -> int:
        """Returns the count the server reports as tracked."""
        response = await self._post(
            "analytics/batch",
            {"events": [encode_event(e) for e in events], "userId": user_id},
        )
        try:
            return int(response.json().get("count", len(events)))
        except (ValueError, AttributeError):
            return len(events)

    async def get_json(self, path: str, params: Optional[dict] = None) -> Any:
        try:
            response = await self.client.get(self._url(path), params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DeliveryError(f"{type(exc).__name__}: {exc}") from exc
