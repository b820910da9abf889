"""
Lifecycle event stream (Redis Streams + pub/sub).

Optional: with no REDIS_URL, or Redis unreachable, publishing is a no-op.
The intent API reads the per-environment stream back for its /events route.
"""
import json
import logging
from datetime import datetime, timezone

import redis

logger = logging.getLogger("preview-operator.events")

STREAM_PREFIX = "preview:events"
STREAM_MAXLEN = 100


def stream_key(name: str) -> str:
    return f"{STREAM_PREFIX}:{name}"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EventPublisher:
    def __init__(self, redis_url: str = ""):
        self.redis_url = redis_url
        self._client = None

    def _get_redis(self):
        """Lazy-init Redis client. Returns None if unavailable."""
        if self._client is not None:
            return self._client
        if not self.redis_url:
            return None
        try:
            self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)
            self._client.ping()
            logger.info(f"Redis connected: {self.redis_url}")
            return self._client
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable (non-fatal): {e}")
            self._client = None
            return None

    def publish(self, name: str, event_type: str, message: str, phase: str = ""):
        """Publish event to the environment's stream and the global channel."""
        r = self._get_redis()
        if not r:
            return
        event = {
            "environment": name,
            "type": event_type,
            "message": message,
            "phase": phase,
            "timestamp": _now(),
        }
        try:
            r.xadd(stream_key(name), event, maxlen=STREAM_MAXLEN)
            r.publish(STREAM_PREFIX, json.dumps(event))
        except redis.RedisError as e:
            logger.debug(f"Redis publish failed (non-fatal): {e}")

    def discard(self, name: str):
        """Drop the stream of a deleted environment."""
        r = self._get_redis()
        if not r:
            return
        try:
            r.delete(stream_key(name))
        except redis.RedisError as e:
            logger.debug(f"Redis cleanup failed (non-fatal): {e}")
