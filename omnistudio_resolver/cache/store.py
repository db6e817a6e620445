"""Two-tier snapshot cache with per-tenant single-flight reloads."""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Callable

from omnistudio_resolver.cache.backends import NullBackend, PersistentBackend
from omnistudio_resolver.config import DEFAULT_CACHE_TTL
from omnistudio_resolver.models import CacheSnapshot

logger = logging.getLogger(__name__)

KEY_PREFIX = "component_data:"

SnapshotLoader = Callable[[], CacheSnapshot]


class SnapshotCache:
    """In-process map in front of an optional persistent backend.

    Snapshots are published by swapping the map entry; a snapshot object
    handed out by :meth:`get` is never mutated by the cache afterwards.
    """

    def __init__(
        self,
        backend: PersistentBackend | None = None,
        ttl_seconds: int = DEFAULT_CACHE_TTL,
        key_prefix: str = KEY_PREFIX,
        persistent_enabled: bool = True,
    ):
        self.backend = backend or NullBackend()
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self._persistent_enabled = persistent_enabled
        self._local: dict[str, CacheSnapshot] = {}
        self._lock = threading.Lock()
        self._flights: dict[str, Future] = {}

    def _key(self, tenant: str) -> str:
        return f"{self.key_prefix}{tenant}"

    # ── Lookup ──────────────────────────────────────────────

    def get_local(self, tenant: str) -> CacheSnapshot | None:
        with self._lock:
            return self._local.get(tenant)

    def get(self, tenant: str) -> CacheSnapshot | None:
        """In-process tier, then the persistent tier, else ``None``."""
        snapshot = self.get_local(tenant)
        if snapshot is not None:
            return snapshot
        return self.restore(tenant)

    def restore(self, tenant: str) -> CacheSnapshot | None:
        """Read the persistent tier only, copying a hit into the in-process map."""
        if not self.persistent_enabled:
            return None

        payload = self.backend.get(self._key(tenant))
        if payload is None:
            return None
        try:
            snapshot = CacheSnapshot.from_dict(json.loads(payload))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding undecodable cache entry for %s: %s", tenant, e)
            return None

        snapshot.source = "persistent"
        with self._lock:
            # A reload may have published while we were reading
            snapshot = self._local.setdefault(tenant, snapshot)
        logger.info("Restored %s from persistent cache (%d components)", tenant, snapshot.total_components)
        return snapshot

    # ── Publication ─────────────────────────────────────────

    def set(self, tenant: str, snapshot: CacheSnapshot, ttl: int | None = None) -> bool:
        """Publish ``snapshot``; returns whether the persistent write succeeded."""
        with self._lock:
            self._local[tenant] = snapshot

        if not self.persistent_enabled or not self.backend.available():
            return False

        data: dict[str, Any] = snapshot.to_dict()
        data["cached_at"] = datetime.now(timezone.utc).isoformat()
        try:
            payload = json.dumps(data).encode("utf-8")
        except (TypeError, ValueError) as e:
            logger.warning("Cannot serialise snapshot for %s: %s", tenant, e)
            return False

        stored = self.backend.set(self._key(tenant), payload, ttl or self.ttl_seconds)
        if stored:
            logger.info("Wrote %s to persistent cache (%d bytes)", tenant, len(payload))
        else:
            logger.warning("Persistent cache write failed for %s", tenant)
        return stored

    def clear(self, tenant: str) -> None:
        with self._lock:
            self._local.pop(tenant, None)
        if self.persistent_enabled:
            self.backend.delete(self._key(tenant))

    def clear_all(self) -> int:
        """Drop every tenant; returns how many in-process entries were removed."""
        with self._lock:
            count = len(self._local)
            self._local.clear()
        if self.persistent_enabled:
            self.backend.delete_prefix(self.key_prefix)
        return count

    # ── Reload ──────────────────────────────────────────────

    def reload(self, tenant: str, loader: SnapshotLoader) -> CacheSnapshot:
        """Run ``loader`` at most once at a time per tenant and publish its result.

        Callers arriving while a reload is running wait for it and get the
        same snapshot (or the same exception).
        """
        with self._lock:
            flight = self._flights.get(tenant)
            leader = flight is None
            if leader:
                flight = Future()
                self._flights[tenant] = flight

        if not leader:
            logger.info("Reload of %s already in flight; waiting", tenant)
            return flight.result()

        try:
            snapshot = loader()
            self.set(tenant, snapshot)
            flight.set_result(snapshot)
            return snapshot
        except BaseException as e:
            flight.set_exception(e)
            raise
        finally:
            with self._lock:
                self._flights.pop(tenant, None)

    # ── Persistent tier ─────────────────────────────────────

    @property
    def persistent_enabled(self) -> bool:
        return self._persistent_enabled

    def set_persistent_enabled(self, enabled: bool) -> None:
        self._persistent_enabled = bool(enabled)
        logger.info("Persistent cache %s", "enabled" if enabled else "disabled")

    def available(self) -> bool:
        return self.persistent_enabled and self.backend.available()

    def status(self) -> dict[str, Any]:
        with self._lock:
            tenants = sorted(self._local)
        return {
            "enabled": self.persistent_enabled,
            "available": self.available(),
            "backend": self.backend.name,
            "ttl_seconds": self.ttl_seconds,
            "tenants": tenants,
        }
