"""
Redis-based chat history for conversation sessions.
Uses synchronous Redis, the history is small and read once per question.
"""
import logging
import threading
from typing import List, Optional

import redis

from .config import HISTORY_LENGTH, REDIS_URL
from .state import ChatMessage

logger = logging.getLogger(__name__)

# Sync Redis client (thread-safe)
_redis_client: Optional[redis.Redis] = None
_lock = threading.Lock()


def get_redis_sync() -> redis.Redis:
    """Get or create sync Redis connection."""
    global _redis_client
    with _lock:
        if _redis_client is None:
            logger.info(f"Connecting to Redis (sync): {REDIS_URL}")
            _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
            _redis_client.ping()
            logger.info("Connected to Redis")
    return _redis_client


class ConversationMemory:
    """Conversation history of one session, stored as a Redis list."""

    def __init__(self, session_id: str, client: Optional[redis.Redis] = None):
        self.session_id = session_id
        self.key = f"chat:{session_id}"
        self._client = client

    @property
    def client(self) -> redis.Redis:
        return self._client or get_redis_sync()

    def add_message(self, role: str, content: str) -> None:
        self.client.rpush(self.key, f"{role}:{content}")
        # Keep only the most recent turns
        self.client.ltrim(self.key, -HISTORY_LENGTH, -1)

    def get_history(self) -> List[ChatMessage]:
        history: List[ChatMessage] = []
        for message in self.client.lrange(self.key, 0, -1):
            if ":" in message:
                role, content = message.split(":", 1)
                history.append({"role": role, "content": content})
        return history

    def clear(self) -> None:
        self.client.delete(self.key)
