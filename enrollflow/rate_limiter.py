"""
Failed-attempt lockout for one-time code verification.

Counters live in process memory and are mirrored to Redis when REDIS_URL is
configured, so every API instance sees the same lockout. Redis errors fall
back to the in-memory counters.
"""

import logging
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, status

from . import config

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

# Format: {key: {'count': int, 'reset_time': int}}
memory_cache: dict[str, dict] = {}
cache_lock = Lock()

KEY_PREFIX = "mfa_failures"


def get_redis_client() -> Optional[redis.Redis]:
    """Get or create the Redis client; None when REDIS_URL is not configured"""
    global redis_client

    if redis_client is None and config.REDIS_URL:
        logger.info("🔄 Initializing Redis connection for lockout counters...")
        redis_client = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )

    return redis_client


def _key(identifier: str) -> str:
    return f"{KEY_PREFIX}:{identifier}"


def _memory_entry(key: str, window_seconds: int, now: int) -> dict:
    entry = memory_cache.get(key)
    if entry is None or now >= entry["reset_time"]:
        entry = {"count": 0, "reset_time": now + window_seconds}
        memory_cache[key] = entry
    return entry


def get_failure_count(identifier: str, window_seconds: Optional[int] = None) -> int:
    """Failures recorded for identifier in the current window"""
    window_seconds = window_seconds or config.MFA_LOCKOUT_WINDOW_SECONDS
    key = _key(identifier)

    client = get_redis_client()
    if client is not None:
        try:
            value = client.get(key)
            return int(value) if value else 0
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis unavailable, using memory counters: {e}")

    with cache_lock:
        return _memory_entry(key, window_seconds, int(time.time()))["count"]


def register_failure(identifier: str, window_seconds: Optional[int] = None) -> int:
    """Record a failed attempt and return the updated count"""
    window_seconds = window_seconds or config.MFA_LOCKOUT_WINDOW_SECONDS
    key = _key(identifier)

    client = get_redis_client()
    if client is not None:
        try:
            pipe = client.pipeline()
            pipe.incr(key)
            # NX keeps the window anchored at the first failure
            pipe.expire(key, window_seconds, nx=True)
            count, _ = pipe.execute()
            return int(count)
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis unavailable, using memory counters: {e}")

    with cache_lock:
        entry = _memory_entry(key, window_seconds, int(time.time()))
        entry["count"] += 1
        return entry["count"]


def clear_failures(identifier: str) -> None:
    key = _key(identifier)

    client = get_redis_client()
    if client is not None:
        try:
            client.delete(key)
        except redis.RedisError as e:
            logger.warning(f"⚠️ Failed to clear Redis counter {key}: {e}")

    with cache_lock:
        memory_cache.pop(key, None)


def enforce_not_locked_out(
    identifier: str,
    max_attempts: Optional[int] = None,
    window_seconds: Optional[int] = None,
) -> None:
    """Raise 429 once identifier has max_attempts failures in the window"""
    max_attempts = max_attempts or config.MFA_MAX_FAILED_ATTEMPTS
    if get_failure_count(identifier, window_seconds) >= max_attempts:
        logger.warning(f"🚫 Too many failed verification attempts for {identifier}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Please try again later.",
        )
