"""
Moodify analytics client — embed in any process that plays or recommends music.

    from moodify.client import AnalyticsClient
"""
from moodify.client.buffer import LocalDurableBuffer
from moodify.client.context import Connectivity, DeviceContext, Identity
from moodify.client.delivery import DeliveryError, DeliveryResult, DeliveryStatus, HttpDelivery
from moodify.client.emitter import AnalyticsClient
from moodify.client.scheduler import RetryPass, RetryScheduler
from moodify.client.storage import JsonFileStore, KeyValueStore, RedisStore, StorageError

__all__ = [
    "AnalyticsClient",
    "Connectivity",
    "DeliveryError",
    "DeliveryResult",
    "DeliveryStatus",
    "DeviceContext",
    "HttpDelivery",
    "Identity",
    "JsonFileStore",
    "KeyValueStore",
    "LocalDurableBuffer",
    "RedisStore",
    "RetryPass",
    "RetryScheduler",
    "StorageError",
]
