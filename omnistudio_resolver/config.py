"""Resolver configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CACHE_TTL = 2 * 24 * 60 * 60  # two days
DEFAULT_GRAPH_DEPTH = 4
DEFAULT_EXPANSION_DEPTH = 10


@dataclass
class ResolverConfig:
    graph_max_depth: int = DEFAULT_GRAPH_DEPTH
    expansion_depth_limit: int = DEFAULT_EXPANSION_DEPTH
    fetch_timeout: float | None = None
    max_workers: int | None = None
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL
    redis_url: str = ""
    persistent_cache_enabled: bool = True
    source_dir: Path | None = None

    def __post_init__(self):
        if self.fetch_timeout is None:
            self.fetch_timeout = float(os.getenv("OMNISTUDIO_FETCH_TIMEOUT", "30"))
        if self.max_workers is None:
            self.max_workers = int(os.getenv("OMNISTUDIO_MAX_WORKERS", "4"))
        if not self.redis_url:
            self.redis_url = os.getenv("REDIS_URL", "")
        if self.source_dir is None and os.getenv("OMNISTUDIO_SOURCE_DIR"):
            self.source_dir = Path(os.environ["OMNISTUDIO_SOURCE_DIR"])
        elif self.source_dir is not None:
            self.source_dir = Path(self.source_dir)
