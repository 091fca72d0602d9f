"""Sliding-window throttling for login and password-recovery attempts.

Attempts are counted per email address (hashed, never stored raw) and per
flow, so a burst against one account's login does not lock out its recovery.
A successful login clears that account's login window.
"""

from __future__ import annotations

import hashlib
import logging
import time
from threading import Lock
from typing import Final

import redis
from redis import Redis
from redis.exceptions import ResponseError

from ..domain.account import normalize_email
from ..domain.errors import TooManyAttempts

logger = logging.getLogger(__name__)


def throttle_key(scope: str, email: str) -> str:
    """Build a throttle key without putting the raw email address into storage."""
    digest = hashlib.sha256(normalize_email(email).encode("utf-8")).hexdigest()[:16]
    return f"{scope}:{digest}"


class LoginThrottle:
    """Per-email attempt budget shared by the auth endpoints.

    Backends implement :meth:`allow` and :meth:`reset` over an opaque key.
    """

    def guard(self, scope: str, email: str) -> str:
        """Spend one attempt for ``email`` in ``scope``; raise ``TooManyAttempts`` once the budget is gone."""
        key = throttle_key(scope, email)
        if not self.allow(key):
            logger.warning("attempts throttled scope=%s", scope)
            raise TooManyAttempts()
        return key

    def succeeded(self, key: str) -> None:
        """Forget the attempts recorded under ``key`` after a successful login."""
        self.reset(key)

    def allow(self, key: str) -> bool:
        raise NotImplementedError

    def reset(self, key: str) -> None:
        raise NotImplementedError


class MemoryLoginThrottle(LoginThrottle):
    """In-process window; each replica keeps its own counts."""

    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self._max_attempts = max_attempts
        self._window = float(window_seconds)
        self._attempts: dict[str, list[float]] = {}
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        now = time.monotonic()
        with self._lock:
            recent = [stamp for stamp in self._attempts.get(key, ()) if now - stamp <= self._window]
            allowed = len(recent) < self._max_attempts
            if allowed:
                recent.append(now)
            if recent:
                self._attempts[key] = recent
            else:
                self._attempts.pop(key, None)
            return allowed

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)


class RedisLoginThrottle(LoginThrottle):
    """Window shared by every replica, kept in a Redis sorted set per key."""

    # returns the attempts left after this one, or -1 when the budget is spent
    _SCRIPT: Final[str] = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - window_ms)
    local used = redis.call('ZCARD', key)
    if used >= limit then
        return -1
    end
    local member = now_ms .. '-' .. redis.call('INCR', key .. ':seq')
    redis.call('ZADD', key, now_ms, member)
    redis.call('PEXPIRE', key, window_ms)
    redis.call('PEXPIRE', key .. ':seq', window_ms)
    return limit - used - 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_attempts: int,
        window_seconds: int,
        key_prefix: str = "login-throttle",
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._SCRIPT)

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def allow(self, key: str) -> bool:
        redis_key = self._redis_key(key)
        now_ms = int(time.time() * 1000)
        try:
            remaining = int(self._script(keys=[redis_key], args=[self._window_ms, self._max_attempts, now_ms]))
        except ResponseError as exc:
            if not _scripting_unavailable(exc):
                raise
            remaining = self._spend_without_scripting(redis_key, now_ms)
        return remaining >= 0

    def reset(self, key: str) -> None:
        redis_key = self._redis_key(key)
        self._client.delete(redis_key, f"{redis_key}:seq")

    def _spend_without_scripting(self, redis_key: str, now_ms: int) -> int:
        """Plain-command version of the script for servers without EVAL."""
        self._client.zremrangebyscore(redis_key, "-inf", now_ms - self._window_ms)
        used = self._client.zcard(redis_key)
        if used >= self._max_attempts:
            return -1
        seq = self._client.incr(f"{redis_key}:seq")
        pipe = self._client.pipeline()
        pipe.zadd(redis_key, {f"{now_ms}-{seq}": now_ms})
        pipe.pexpire(redis_key, self._window_ms)
        pipe.pexpire(f"{redis_key}:seq", self._window_ms)
        pipe.execute()
        return self._max_attempts - used - 1


def _scripting_unavailable(exc: ResponseError) -> bool:
    # servers quote the command name differently: `evalsha`, 'evalsha' or bare
    message = str(exc).lower()
    return "unknown command" in message and "eval" in message


def build_login_throttle(settings) -> LoginThrottle:
    """Instantiate the configured backend, falling back to memory when Redis is unreachable."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            client.ping()
        except redis.RedisError as exc:
            logger.warning("redis login throttle unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("login throttle configured for redis backend")
            return RedisLoginThrottle(
                client,
                max_attempts=settings.login_rate_limit_requests,
                window_seconds=settings.login_rate_limit_window_seconds,
            )

    logger.info("login throttle using in-memory backend")
    return MemoryLoginThrottle(
        max_attempts=settings.login_rate_limit_requests,
        window_seconds=settings.login_rate_limit_window_seconds,
    )
