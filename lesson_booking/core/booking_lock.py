from __future__ import annotations

from contextlib import ExitStack, contextmanager
import logging
import threading
import time
from typing import Dict, Iterable, Iterator, Optional

from redis import Redis

from lesson_booking.core.config import Settings
from lesson_booking.core.exceptions import BookingConflictException
from lesson_booking.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_LOCAL_LOCKS: Dict[str, threading.Lock] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

_SYNC_REDIS: Dict[str, Redis] = {}
_SYNC_REDIS_LOCK = threading.Lock()


def teacher_key(teacher_id: str) -> str:
    return f"teacher:{teacher_id}"


def student_key(student_id: str) -> str:
    return f"student:{student_id}"


def _namespaced_key(namespace: str, key: str) -> str:
    return f"{namespace}:lock:{key}"


def _local_lock(key: str) -> threading.Lock:
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[key] = lock
        return lock


def _get_sync_redis(url: str) -> Optional[Redis]:
    client = _SYNC_REDIS.get(url)
    if client is not None:
        return client
    with _SYNC_REDIS_LOCK:
        client = _SYNC_REDIS.get(url)
        if client is not None:
            return client
        try:
            client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
            client.ping()
        except Exception as exc:
            logger.warning("schedule_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS[url] = client
        return client


@contextmanager
def _hold_local(key: str, wait_seconds: float) -> Iterator[None]:
    lock = _local_lock(key)
    if not lock.acquire(timeout=wait_seconds if wait_seconds > 0 else -1):
        prometheus_metrics.record_schedule_lock("local", "blocked")
        raise BookingConflictException(
            "This schedule is being modified by another request, please retry",
            details={"lock_key": key},
        )
    prometheus_metrics.record_schedule_lock("local", "success")
    try:
        yield
    finally:
        lock.release()


@contextmanager
def _hold_redis(client: Redis, settings: Settings, key: str) -> Iterator[None]:
    redis_key = _namespaced_key(settings.lock_namespace, key)
    deadline = time.monotonic() + settings.lock_wait_seconds
    acquired = False
    degraded = False
    while True:
        try:
            acquired = bool(
                client.set(redis_key, str(time.time()), nx=True, ex=settings.lock_ttl_seconds)
            )
        except Exception as exc:
            prometheus_metrics.record_schedule_lock("redis", "error")
            logger.warning(
                "schedule_lock_redis_acquire_failed",
                extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            degraded = True
            break
        if acquired or time.monotonic() >= deadline:
            break
        time.sleep(0.05)

    if degraded:
        # Redis trouble degrades to local locks + database constraints.
        yield
        return

    if not acquired:
        prometheus_metrics.record_schedule_lock("redis", "blocked")
        raise BookingConflictException(
            "This schedule is being modified by another request, please retry",
            details={"lock_key": key},
        )

    prometheus_metrics.record_schedule_lock("redis", "success")
    try:
        yield
    finally:
        try:
            client.delete(redis_key)
        except Exception as exc:
            prometheus_metrics.record_schedule_lock("redis", "release_error")
            logger.warning(
                "schedule_lock_redis_release_failed",
                extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
            )


@contextmanager
def schedule_lock(keys: Iterable[str], settings: Settings) -> Iterator[None]:
    """
    Serialize writers touching the same teacher calendar or student ledger.

    Keys are taken in sorted order so two writers sharing several keys can't
    deadlock. Scope must stay limited to the local transaction.
    """
    ordered = sorted(set(keys))
    client: Optional[Redis] = None
    if settings.distributed_locks_enabled and settings.redis_url:
        client = _get_sync_redis(settings.redis_url)
        if client is None:
            prometheus_metrics.record_schedule_lock("redis", "redis_unavailable")

    with ExitStack() as stack:
        for key in ordered:
            stack.enter_context(_hold_local(key, settings.lock_wait_seconds))
            if client is not None:
                stack.enter_context(_hold_redis(client, settings, key))
        yield
