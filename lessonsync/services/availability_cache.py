"""
Short-lived Redis cache for computed availability.

Keys carry a global cache-bust counter; a booking write increments it so every
cached availability result becomes unreachable at once. Redis being down means
no caching, never an error.
"""

from datetime import date
import json
import logging
from typing import Any, Dict, Optional

import redis
from redis import Redis
from redis.exceptions import RedisError

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


class AvailabilityCache:
    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        ttl_seconds: Optional[int] = None,
        namespace: Optional[str] = None,
    ):
        self.redis: Optional[Redis] = redis_client
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.availability_cache_ttl_seconds
        self.namespace = namespace or settings.lock_namespace
        if self.redis is None:
            self._setup_redis_connection()

    def _setup_redis_connection(self) -> None:
        try:
            client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            client.ping()
        except (RedisError, ConnectionError) as e:
            logger.warning(f"Redis not available: {e}. Availability caching disabled.")
            return
        self.redis = client

    @property
    def enabled(self) -> bool:
        return self.redis is not None and self.ttl_seconds > 0

    def _bust_key(self) -> str:
        return f"{self.namespace}:avail:bust"

    def cache_bust(self) -> int:
        if self.redis is None:
            return 0
        try:
            raw = self.redis.get(self._bust_key())
        except RedisError as e:
            logger.warning(f"Failed to read availability cache bust: {e}")
            return 0
        return int(raw or 0)

    def build_key(
        self, calendar_key: str, start_date: date, end_date: date, slot_minutes: int
    ) -> str:
        return ":".join(
            (
                self.namespace,
                "avail",
                calendar_key,
                start_date.isoformat(),
                end_date.isoformat(),
                str(slot_minutes),
                str(self.cache_bust()),
            )
        )

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        assert self.redis is not None
        try:
            raw = self.redis.get(key)
        except RedisError as e:
            prometheus_metrics.record_availability_cache("error")
            logger.warning(f"Availability cache read failed for {key}: {e}")
            return None
        if raw is None:
            prometheus_metrics.record_availability_cache("miss")
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            prometheus_metrics.record_availability_cache("error")
            logger.warning("Discarding corrupt availability cache entry %s", key)
            return None
        prometheus_metrics.record_availability_cache("hit")
        return payload if isinstance(payload, dict) else None

    def set(self, key: str, payload: Dict[str, Any]) -> None:
        if not self.enabled:
            return
        assert self.redis is not None
        try:
            self.redis.setex(key, self.ttl_seconds, json.dumps(payload, default=str))
        except RedisError as e:
            logger.warning(f"Availability cache write failed for {key}: {e}")

    def bump_cache_bust(self) -> None:
        """Invalidate every cached availability result."""
        if self.redis is None:
            return
        try:
            self.redis.incr(self._bust_key())
        except RedisError as e:
            logger.warning(f"Failed to bump availability cache bust: {e}")
