"""
Activity events on Redis Streams (optional — graceful degradation if unavailable).

Each Dashboard gets a capped stream `dashboard:events:{namespace}/{name}`; every
event is also published on the `dashboard:events` channel for live consumers.
Publishing never fails a reconcile.
"""
import json as _json
import logging
from typing import Optional

import redis

from dashboard_operator.models import ObjectIdentity, now_iso

logger = logging.getLogger("dashboard-events")

STREAM_PREFIX = "dashboard:events:"
CHANNEL = "dashboard:events"
STREAM_MAXLEN = 100


def stream_key(identity: ObjectIdentity) -> str:
    return f"{STREAM_PREFIX}{identity}"


class EventPublisher:
    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self._redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "EventPublisher":
        """Connect to Redis; an empty or unreachable URL yields a disabled publisher."""
        if not url:
            return cls(None)
        try:
            r = redis.Redis.from_url(url, decode_responses=True)
            r.ping()
            logger.info(f"Redis connected: {url}")
            return cls(r)
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable (non-fatal): {e}")
            return cls(None)

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def publish(self, identity: ObjectIdentity, event_type: str, message: str, phase: str = ""):
        """Publish event to the Dashboard's stream and the global channel."""
        if self._redis is None:
            return
        entry = {
            "type": event_type,
            "message": message,
            "phase": phase,
            "timestamp": now_iso(),
            "dashboard": str(identity),
        }
        try:
            self._redis.xadd(stream_key(identity), entry, maxlen=STREAM_MAXLEN)
            self._redis.publish(CHANNEL, _json.dumps(entry))
        except redis.RedisError as e:
            logger.debug(f"Redis publish failed (non-fatal): {e}")

    def history(self, identity: ObjectIdentity, count: int = 50) -> list[dict]:
        """Oldest-first events recorded for a Dashboard."""
        if self._redis is None:
            return []
        try:
            entries = self._redis.xrange(stream_key(identity), count=count)
        except redis.RedisError as e:
            logger.debug(f"Redis stream read failed: {e}")
            return []
        return [
            {
                "timestamp": data.get("timestamp", ""),
                "event": data.get("type", ""),
                "message": data.get("message", ""),
                "phase": data.get("phase", ""),
            }
            for _, data in entries
        ]
