"""Persistent cache backends (the second cache tier).

Every backend method swallows its own transport errors: a persistent tier
that is down degrades the cache to in-process only, it never fails a call.
"""

from __future__ import annotations

import abc
import logging
import threading
import time

import redis
from redis.exceptions import RedisError

from omnistudio_resolver.config import ResolverConfig

logger = logging.getLogger(__name__)


class PersistentBackend(abc.ABC):
    """Key-value store with per-key expiry."""

    name = "abstract"

    @abc.abstractmethod
    def get(self, key: str) -> bytes | None:
        ...

    @abc.abstractmethod
    def set(self, key: str, value: bytes, ttl: int) -> bool:
        ...

    @abc.abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abc.abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns the count removed."""

    @abc.abstractmethod
    def available(self) -> bool:
        ...


class RedisBackend(PersistentBackend):
    """Backend over redis-py; the client is created on first use."""

    name = "redis"

    def __init__(
        self,
        url: str | None = None,
        host: str = "localhost",
        port: int = 6379,
        password: str | None = None,
        db: int = 0,
        client: redis.Redis | None = None,
    ):
        self.url = url
        self.host = host
        self.port = port
        self.password = password
        self.db = db
        self._client = client
        self._lock = threading.Lock()

    def _get_client(self) -> redis.Redis:
        with self._lock:
            if self._client is None:
                try:
                    if self.url:
                        self._client = redis.Redis.from_url(self.url)
                    else:
                        self._client = redis.Redis(
                            host=self.host, port=self.port, password=self.password, db=self.db,
                        )
                except ValueError as e:
                    logger.warning("Invalid Redis configuration: %s", e)
                    raise RedisError(f"Invalid Redis configuration: {e}") from e
            return self._client

    def get(self, key: str) -> bytes | None:
        try:
            value = self._get_client().get(key)
        except RedisError as e:
            logger.warning("Redis get failed for %s: %s", key, e)
            return None
        if isinstance(value, str):
            value = value.encode("utf-8")
        return value

    def set(self, key: str, value: bytes, ttl: int) -> bool:
        try:
            return bool(self._get_client().set(key, value, ex=ttl))
        except RedisError as e:
            logger.warning("Redis set failed for %s: %s", key, e)
            return False

    def delete(self, key: str) -> bool:
        try:
            return bool(self._get_client().delete(key))
        except RedisError as e:
            logger.warning("Redis delete failed for %s: %s", key, e)
            return False

    def delete_prefix(self, prefix: str) -> int:
        try:
            client = self._get_client()
            keys = list(client.scan_iter(match=f"{prefix}*"))
            return int(client.delete(*keys)) if keys else 0
        except RedisError as e:
            logger.warning("Redis delete by prefix %s failed: %s", prefix, e)
            return 0

    def available(self) -> bool:
        try:
            return bool(self._get_client().ping())
        except RedisError as e:
            logger.debug("Redis not available: %s", e)
            return False


class InMemoryBackend(PersistentBackend):
    """TTL dict standing in for a shared store in local runs and tests."""

    name = "memory"

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl: int) -> bool:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._data if k.startswith(prefix)]
            for key in keys:
                del self._data[key]
        return len(keys)

    def available(self) -> bool:
        return True


class NullBackend(PersistentBackend):
    """No persistent tier at all."""

    name = "none"

    def get(self, key: str) -> bytes | None:
        return None

    def set(self, key: str, value: bytes, ttl: int) -> bool:
        return False

    def delete(self, key: str) -> bool:
        return False

    def delete_prefix(self, prefix: str) -> int:
        return 0

    def available(self) -> bool:
        return False


def build_backend(config: ResolverConfig) -> PersistentBackend:
    """Redis when a URL is configured, otherwise no persistent tier."""
    if config.redis_url:
        logger.info("Persistent cache: redis")
        return RedisBackend(url=config.redis_url)
    logger.info("Persistent cache disabled (no REDIS_URL)")
    return NullBackend()
