"""Tests for the two-tier snapshot cache and its backends."""

import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from omnistudio_resolver.cache import (
    KEY_PREFIX,
    InMemoryBackend,
    NullBackend,
    RedisBackend,
    SnapshotCache,
)
from omnistudio_resolver.errors import ReloadError
from omnistudio_resolver.models import (
    BlockKind,
    CacheSnapshot,
    Component,
    ComponentType,
    Step,
)


# ── Helpers ───────────────────────────────────────────────────

def _snapshot(tenant="org1", *names):
    components = [
        Component(
            id=f"id-{n}",
            name=n,
            component_type=ComponentType.INTEGRATION_PROCEDURE,
            unique_id=n,
            steps=[Step(name="Call", block_kind=BlockKind.IP_REFERENCE, referenced_ip="Other")],
        )
        for n in (names or ("Alpha",))
    ]
    return CacheSnapshot(tenant=tenant, integration_procedures=components, loaded_at="2024-01-01T00:00:00")


def _redis_backend(client=None):
    return RedisBackend(client=client or MagicMock())


# ── SnapshotCache ─────────────────────────────────────────────

class TestSnapshotCache:
    def test_miss(self):
        assert SnapshotCache().get("org1") is None

    def test_set_and_get_in_process(self):
        cache = SnapshotCache()
        snapshot = _snapshot()
        cache.set("org1", snapshot)
        assert cache.get("org1") is snapshot

    def test_publish_swaps_entry(self):
        cache = SnapshotCache()
        old, new = _snapshot(), _snapshot("org1", "Beta")
        cache.set("org1", old)
        held = cache.get("org1")
        cache.set("org1", new)
        assert held is old
        assert held.integration_procedures[0].name == "Alpha"
        assert cache.get("org1") is new

    def test_write_through_and_restore(self):
        backend = InMemoryBackend()
        SnapshotCache(backend).set("org1", _snapshot())

        fresh = SnapshotCache(backend)
        restored = fresh.get("org1")
        assert restored is not None
        assert restored.source == "persistent"
        assert restored.cached_at is not None
        assert restored.integration_procedures == _snapshot().integration_procedures
        assert fresh.get_local("org1") is restored

    def test_persistent_key_and_ttl(self):
        backend = MagicMock()
        backend.available.return_value = True
        backend.set.return_value = True
        assert SnapshotCache(backend).set("org1", _snapshot()) is True

        key, payload, ttl = backend.set.call_args[0]
        assert key == f"{KEY_PREFIX}org1" == "component_data:org1"
        assert ttl == 172800
        assert json.loads(payload)["tenant"] == "org1"

    def test_explicit_ttl(self):
        backend = MagicMock()
        backend.available.return_value = True
        SnapshotCache(backend).set("org1", _snapshot(), ttl=60)
        assert backend.set.call_args[0][2] == 60

    def test_unavailable_backend_is_not_written(self):
        backend = MagicMock()
        backend.available.return_value = False
        cache = SnapshotCache(backend)
        assert cache.set("org1", _snapshot()) is False
        backend.set.assert_not_called()
        assert cache.get("org1") is not None

    def test_undecodable_payload_is_a_miss(self):
        backend = InMemoryBackend()
        backend.set(f"{KEY_PREFIX}org1", b"not json", 60)
        assert SnapshotCache(backend).get("org1") is None

    def test_clear(self):
        backend = InMemoryBackend()
        cache = SnapshotCache(backend)
        cache.set("org1", _snapshot())
        cache.clear("org1")
        assert cache.get("org1") is None
        assert backend.get(f"{KEY_PREFIX}org1") is None

    def test_clear_all(self):
        backend = InMemoryBackend()
        backend.set("unrelated", b"keep", 60)
        cache = SnapshotCache(backend)
        cache.set("org1", _snapshot("org1"))
        cache.set("org2", _snapshot("org2"))
        assert cache.clear_all() == 2
        assert cache.get("org1") is None
        assert cache.get("org2") is None
        assert backend.get("unrelated") == b"keep"

    def test_persistent_toggle(self):
        backend = InMemoryBackend()
        SnapshotCache(backend).set("org1", _snapshot())

        cache = SnapshotCache(backend)
        cache.set_persistent_enabled(False)
        assert cache.get("org1") is None
        assert cache.available() is False
        cache.set_persistent_enabled(True)
        assert cache.get("org1") is not None

    def test_status(self):
        cache = SnapshotCache(InMemoryBackend())
        cache.set("org1", _snapshot())
        status = cache.status()
        assert status["enabled"] is True
        assert status["available"] is True
        assert status["backend"] == "memory"
        assert status["tenants"] == ["org1"]


class TestSingleFlightReload:
    def test_concurrent_reloads_run_loader_once(self):
        cache = SnapshotCache()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def loader():
            calls.append(1)
            started.set()
            release.wait(5)
            return _snapshot()

        results = []

        def worker():
            results.append(cache.reload("org1", loader))

        leader = threading.Thread(target=worker)
        leader.start()
        assert started.wait(5)
        followers = [threading.Thread(target=worker) for _ in range(4)]
        for t in followers:
            t.start()
        time.sleep(0.2)
        release.set()
        for t in [leader, *followers]:
            t.join(5)

        assert len(calls) == 1
        assert len(results) == 5
        assert all(r is results[0] for r in results)
        assert cache.get("org1") is results[0]

    def test_failure_reaches_waiters_and_releases(self):
        cache = SnapshotCache()
        started = threading.Event()
        release = threading.Event()
        errors = []

        def failing_loader():
            started.set()
            release.wait(5)
            raise ReloadError("listing failed")

        def worker():
            try:
                cache.reload("org1", failing_loader)
            except ReloadError as e:
                errors.append(e)

        leader = threading.Thread(target=worker)
        leader.start()
        assert started.wait(5)
        follower = threading.Thread(target=worker)
        follower.start()
        time.sleep(0.2)
        release.set()
        leader.join(5)
        follower.join(5)

        assert len(errors) == 2
        assert cache.get("org1") is None
        # The flight slot is free again
        assert cache.reload("org1", lambda: _snapshot()).tenant == "org1"

    def test_reload_publishes_despite_persistent_failure(self):
        client = MagicMock()
        client.ping.return_value = True
        client.set.side_effect = RedisConnectionError("down")
        cache = SnapshotCache(_redis_backend(client))
        snapshot = cache.reload("org1", lambda: _snapshot())
        assert cache.get_local("org1") is snapshot


# ── Backends ──────────────────────────────────────────────────

class TestRedisBackend:
    def test_get(self):
        client = MagicMock()
        client.get.return_value = b"payload"
        assert _redis_backend(client).get("k") == b"payload"
        client.get.assert_called_once_with("k")

    def test_get_decodes_text_responses(self):
        client = MagicMock()
        client.get.return_value = "payload"
        assert _redis_backend(client).get("k") == b"payload"

    def test_set_uses_expiry(self):
        client = MagicMock()
        client.set.return_value = True
        assert _redis_backend(client).set("k", b"v", 120) is True
        client.set.assert_called_once_with("k", b"v", ex=120)

    def test_errors_are_absorbed(self):
        client = MagicMock()
        client.get.side_effect = RedisConnectionError("down")
        client.set.side_effect = RedisConnectionError("down")
        client.delete.side_effect = RedisConnectionError("down")
        client.ping.side_effect = RedisConnectionError("down")
        backend = _redis_backend(client)
        assert backend.get("k") is None
        assert backend.set("k", b"v", 1) is False
        assert backend.delete("k") is False
        assert backend.available() is False

    def test_delete_prefix(self):
        client = MagicMock()
        client.scan_iter.return_value = iter([b"component_data:a", b"component_data:b"])
        client.delete.return_value = 2
        assert _redis_backend(client).delete_prefix("component_data:") == 2
        client.scan_iter.assert_called_once_with(match="component_data:*")

    def test_delete_prefix_no_keys(self):
        client = MagicMock()
        client.scan_iter.return_value = iter([])
        assert _redis_backend(client).delete_prefix("component_data:") == 0
        client.delete.assert_not_called()

    def test_client_created_lazily_from_url(self):
        with patch("omnistudio_resolver.cache.backends.redis.Redis.from_url") as from_url:
            from_url.return_value.ping.return_value = True
            backend = RedisBackend(url="redis://cache:6379/0")
            from_url.assert_not_called()
            assert backend.available() is True
            assert backend.available() is True
            from_url.assert_called_once_with("redis://cache:6379/0")

    def test_malformed_url_degrades_to_in_process(self):
        backend = RedisBackend(url="localhost:6379")
        assert backend.available() is False
        assert backend.set("k", b"v", 1) is False
        assert backend.get("k") is None

        cache = SnapshotCache(backend)
        cache.set("org1", _snapshot())
        assert cache.get_local("org1").tenant == "org1"


class TestInMemoryBackend:
    def test_expiry(self):
        now = [100.0]
        backend = InMemoryBackend(clock=lambda: now[0])
        backend.set("k", b"v", 10)
        assert backend.get("k") == b"v"
        now[0] = 111.0
        assert backend.get("k") is None

    def test_delete(self):
        backend = InMemoryBackend()
        backend.set("k", b"v", 10)
        assert backend.delete("k") is True
        assert backend.delete("k") is False


class TestNullBackend:
    def test_never_available(self):
        backend = NullBackend()
        assert backend.available() is False
        assert backend.set("k", b"v", 1) is False
        assert backend.get("k") is None
        assert backend.delete_prefix("x") == 0
