"""
Progress notifications for interactive sessions.

Stages never talk to the transport: they return ``Notification`` events and
the orchestrator hands them to a notifier.
"""
import json
import logging
import threading
from typing import Any, Dict, NamedTuple, Optional, Protocol

import redis

from .config import NOTIFICATION_CHANNEL, REDIS_URL

logger = logging.getLogger(__name__)


class Notification(NamedTuple):
    """A user-facing progress message produced by a stage."""
    message: str
    channel: str = NOTIFICATION_CHANNEL


class Notifier(Protocol):
    def notify(self, user_id: str, channel: str, payload: Dict[str, Any]) -> None:
        ...


class RedisNotifier:
    """Publishes notifications on Redis pub/sub, fire-and-forget."""

    def __init__(self, client: Optional[redis.Redis] = None, url: str = REDIS_URL):
        self._client = client
        self._url = url
        self._lock = threading.Lock()

    def _get_client(self) -> redis.Redis:
        with self._lock:
            if self._client is None:
                logger.info(f"Connecting to Redis (notifications): {self._url}")
                self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def publish(self, user_id: str, channel: str, payload: Dict[str, Any]) -> int:
        """Publish synchronously. Returns the number of subscribers reached."""
        topic = f"contextualiser:{user_id}:{channel}"
        return self._get_client().publish(topic, json.dumps(payload))

    def notify(self, user_id: str, channel: str, payload: Dict[str, Any]) -> None:
        """Publish in a background thread; failures are logged, never raised."""
        def _send():
            try:
                self.publish(user_id, channel, payload)
            except redis.RedisError as e:
                logger.error(f"[Notify] Failed to publish to {user_id}: {e}")

        t = threading.Thread(target=_send, daemon=True)
        t.start()
