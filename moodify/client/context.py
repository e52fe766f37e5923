"""
context.py — Where an event comes from: device, identity, connectivity.

  DeviceContext  user agent + page + network type, and what they classify to
  Identity       get-or-create the persisted per-device user id
  Connectivity   the "is the network reachable" signal, with online transitions
"""
import logging
import platform
import re
import secrets
import string
from dataclasses import dataclass, field
from typing import Optional

from moodify.client.storage import USER_ID_KEY, KeyValueStore, StorageError
from moodify.events import ANONYMOUS_USER_ID

logger = logging.getLogger(__name__)

_TABLET_RE = re.compile(r"tablet|ipad|playbook|silk")
_MOBILE_RE = re.compile(
    r"mobile|iphone|ipod|android|blackberry|opera|mini|windows\sce|palm|smartphone|iemobile"
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def default_user_agent() -> str:
    return f"moodify-client ({platform.system()} {platform.release()}; {platform.machine()})"


def classify_device(user_agent: str) -> str:
    """desktop / mobile / tablet. Tablet markers win over mobile ones."""
    ua = user_agent.lower()
    if _TABLET_RE.search(ua):
        return "tablet"
    if _MOBILE_RE.search(ua):
        return "mobile"
    return "desktop"


def classify_platform(user_agent: str) -> str:
    """OS family from a user agent string."""
    if "Windows" in user_agent:
        return "Windows"
    # iOS and Android agents also mention "Mac OS X" / "Linux"
    if "iPhone" in user_agent or "iPad" in user_agent:
        return "iOS"
    if "Android" in user_agent:
        return "Android"
    if "Mac" in user_agent or "Darwin" in user_agent:
        return "MacOS"
    if "Linux" in user_agent:
        return "Linux"
    return "Unknown"


@dataclass
class DeviceContext:
    user_agent: str = field(default_factory=default_user_agent)
    page_url: str = ""
    network_type: str = "unknown"

    @property
    def device_type(self) -> str:
        return classify_device(self.user_agent)

    @property
    def platform(self) -> str:
        return classify_platform(self.user_agent)

    def enrichment(self) -> dict:
        return {
            "userAgent": self.user_agent,
            "url": self.page_url,
            "platform": self.platform,
            "deviceType": self.device_type,
            "networkType": self.network_type or "unknown",
        }


def generate_user_id() -> str:
    return "user_" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(12))


def generate_session_id(now_ms: int) -> str:
    return f"session_{now_ms}_" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))


class Identity:
    """The device's user id, created on first use and persisted in the store."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._user_id: Optional[str] = None

    async def get_or_create(self) -> str:
        if self._user_id:
            return self._user_id
        try:
            user_id = await self.store.get(USER_ID_KEY)
            if not isinstance(user_id, str) or not user_id:
                user_id = generate_user_id()
                await self.store.set(USER_ID_KEY, user_id)
                logger.info("Created analytics identity user_id=%s", user_id)
        except StorageError as exc:
            logger.warning("Identity store unavailable, tracking as anonymous: %s", exc)
            return ANONYMOUS_USER_ID
        self._user_id = user_id
        return user_id

    @property
    def user_id(self) -> str:
        return self._user_id or ANONYMOUS_USER_ID


class Connectivity:
    """
    Network reachability as reported by the host application.

    update() returns True exactly when the state flips from offline to online,
    which is the moment the client flushes its retry queue.
    """

    def __init__(self, online: bool = True):
        self._online = online

    @property
    def online(self) -> bool:
        return self._online

    def update(self, online: bool) -> bool:
        came_online = online and not self._online
        self._online = online
        return came_online
