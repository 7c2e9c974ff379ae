"""
Event recording: Kubernetes events via kopf, plus an optional Redis stream.

Redis is a side channel for dashboards: when REDIS_URL is unset or the
server is unreachable, events are still posted to the cluster.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

import kopf
import redis

from mirrors.models import SecretMirror

logger = logging.getLogger("mirrors.events")

STREAM_MAXLEN = 100
CHANNEL = "mirror:events"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventRecorder:
    def __init__(self, redis_url: str = ""):
        self.redis_url = redis_url
        self._redis: Optional[redis.Redis] = None

    def _get_redis(self) -> Optional[redis.Redis]:
        """Lazy-init Redis client. Returns None if unavailable."""
        if self._redis is not None:
            return self._redis
        if not self.redis_url:
            return None
        try:
            client = redis.Redis.from_url(self.redis_url, decode_responses=True)
            client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable (non-fatal): {e}")
            return None
        logger.info(f"Redis connected: {self.redis_url}")
        self._redis = client
        return client

    def redis_status(self) -> str:
        if not self.redis_url:
            return "disabled"
        r = self._get_redis()
        if r is None:
            return "unavailable"
        try:
            r.ping()
            return "connected"
        except redis.RedisError:
            return "unavailable"

    def emit(self, mirror: SecretMirror, event_type: str, reason: str, message: str):
        kopf.event(mirror.body, type=event_type, reason=reason, message=message)
        self._publish(mirror, event_type, reason, message)

    def _publish(self, mirror: SecretMirror, event_type: str, reason: str, message: str):
        r = self._get_redis()
        if r is None:
            return
        entry = {
            "mirror": mirror.identity,
            "type": event_type,
            "reason": reason,
            "message": message,
            "phase": mirror.status.mirror_status or "",
            "timestamp": _now(),
        }
        try:
            r.xadd(f"{CHANNEL}:{mirror.identity}", entry, maxlen=STREAM_MAXLEN)
            r.publish(CHANNEL, json.dumps(entry))
        except redis.RedisError as e:
            logger.debug(f"Redis publish failed (non-fatal): {e}")

    def forget(self, mirror: SecretMirror):
        """Drop the mirror's event stream once it is gone."""
        r = self._get_redis()
        if r is None:
            return
        try:
            r.delete(f"{CHANNEL}:{mirror.identity}")
        except redis.RedisError as e:
            logger.debug(f"Redis cleanup failed (non-fatal): {e}")
