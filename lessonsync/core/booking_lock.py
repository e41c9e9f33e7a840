"""
Per-instructor advisory lock around the booking check-then-write sequence.

Redis ``SET NX EX`` under a namespaced key. When Redis is unreachable the lock
fails open: bookings still go through and the conflict re-check remains the
only guard.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def _lock_key(instructor_id: str) -> str:
    return f"instructor:{instructor_id}:booking_mutex"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("booking_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def acquire_instructor_lock(instructor_id: str, ttl_s: Optional[int] = None) -> bool:
    ttl = ttl_s if ttl_s is not None else settings.booking_lock_ttl_seconds
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")
        logger.warning(
            "booking_lock_redis_unavailable",
            extra={"instructor_id": instructor_id},
        )
        return True
    try:
        acquired = bool(
            client.set(_namespaced_key(_lock_key(instructor_id)), str(time.time()), nx=True, ex=ttl)
        )
    except Exception as exc:
        prometheus_metrics.record_booking_lock("acquire", "error")
        logger.warning(
            "booking_lock_acquire_failed",
            extra={
                "instructor_id": instructor_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return True
    prometheus_metrics.record_booking_lock("acquire", "success" if acquired else "blocked")
    return acquired


def release_instructor_lock(instructor_id: str) -> None:
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("release", "redis_unavailable")
        return
    try:
        deleted = client.delete(_namespaced_key(_lock_key(instructor_id)))
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "booking_lock_release_failed",
            extra={
                "instructor_id": instructor_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return
    prometheus_metrics.record_booking_lock("release", "success" if deleted else "not_found")


@contextmanager
def instructor_booking_lock(instructor_id: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Yield whether the lock was obtained; release it on exit when held."""
    acquired = acquire_instructor_lock(instructor_id, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_instructor_lock(instructor_id)
