"""Two-tier snapshot cache."""

from omnistudio_resolver.cache.backends import (
    InMemoryBackend,
    NullBackend,
    PersistentBackend,
    RedisBackend,
    build_backend,
)
from omnistudio_resolver.cache.store import KEY_PREFIX, SnapshotCache

__all__ = [
    "InMemoryBackend",
    "KEY_PREFIX",
    "NullBackend",
    "PersistentBackend",
    "RedisBackend",
    "SnapshotCache",
    "build_backend",
]
