"""Hierarchy service: the operations exposed to the HTTP API and the CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from omnistudio_resolver.cache import SnapshotCache, build_backend
from omnistudio_resolver.config import ResolverConfig
from omnistudio_resolver.errors import MetadataSourceError
from omnistudio_resolver.graph import count_expanded_children
from omnistudio_resolver.models import (
    BlockKind,
    CacheSnapshot,
    Component,
    ComponentType,
    LoadSummary,
    Step,
)
from omnistudio_resolver.parser import parse_record
from omnistudio_resolver.pipeline import ProgressCallback, run_reload
from omnistudio_resolver.sources import JsonDirectorySource, MetadataSource

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str], MetadataSource]

SEARCH_LIMIT = 1000

DETAIL_TYPES = (ComponentType.INTEGRATION_PROCEDURE, ComponentType.OMNISCRIPT)


@dataclass
class CachedLookup:
    component: Component | None
    found: bool
    requires_reload: bool = False
    expanded_children: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "requires_reload": self.requires_reload,
            "expanded_children": self.expanded_children,
            "component": self.component.to_dict() if self.component else None,
        }


@dataclass
class InstanceDetails:
    """One component fetched and parsed on demand, without expansion."""
    component: Component

    @property
    def conditional_blocks_count(self) -> int:
        return sum(1 for s in self.component.steps if s.block_kind is BlockKind.CONDITIONAL)

    def to_dict(self) -> dict[str, Any]:
        component = self.component
        return {
            "name": component.name,
            "id": component.id,
            "component_type": component.component_type.value,
            "content_error": component.content_error,
            "summary": {
                "type": component.type,
                "sub_type": component.sub_type,
                "version": component.version,
                "procedure_key": component.procedure_key,
                "procedure_type": component.component_type.label,
                "children_count": len(component.steps),
                "steps": [s.to_dict() for s in component.steps],
                "has_conditional_blocks": self.conditional_blocks_count > 0,
                "conditional_blocks_count": self.conditional_blocks_count,
            },
        }


def _search_entry(component: Component) -> dict[str, Any]:
    entry = {
        "id": component.id,
        "name": component.name,
        "unique_id": component.unique_id,
        "type": component.type,
        "sub_type": component.sub_type,
        "version": component.version,
        "component_type": component.component_type.value,
    }
    if component.component_type is ComponentType.INTEGRATION_PROCEDURE:
        entry["procedure_key"] = component.procedure_key
    return entry


class HierarchyService:
    """Tenant-scoped loading, lookup and cache management."""

    def __init__(
        self,
        config: ResolverConfig | None = None,
        cache: SnapshotCache | None = None,
        source_factory: SourceFactory | None = None,
    ):
        self.config = config or ResolverConfig()
        self.cache = cache or SnapshotCache(
            build_backend(self.config),
            ttl_seconds=self.config.cache_ttl_seconds,
            persistent_enabled=self.config.persistent_cache_enabled,
        )
        self.source_factory = source_factory or self._directory_source

    def _directory_source(self, tenant: str) -> MetadataSource:
        if self.config.source_dir is None:
            raise MetadataSourceError("No source directory configured (OMNISTUDIO_SOURCE_DIR)")
        return JsonDirectorySource(self.config.source_dir / tenant)

    # ── Loading ─────────────────────────────────────────────

    def load_all(
        self, tenant: str, force: bool = False, progress: ProgressCallback | None = None,
    ) -> LoadSummary:
        """Reload every component of ``tenant``.

        Unless ``force`` is set, a snapshot still held by the persistent tier
        is restored instead of running the pipeline.
        """
        if not force:
            snapshot = self.cache.restore(tenant)
            if snapshot is not None:
                return LoadSummary.from_snapshot(snapshot, from_cache=True)

        def loader() -> CacheSnapshot:
            source = self.source_factory(tenant)
            return run_reload(
                source, self.config, tenant,
                snapshot=self.cache.get_local(tenant),
                progress=progress,
            )

        snapshot = self.cache.reload(tenant, loader)
        return LoadSummary.from_snapshot(snapshot)

    def force_reload(self, tenant: str) -> LoadSummary:
        self.cache.clear(tenant)
        return self.load_all(tenant, force=True)

    def get_snapshot(self, tenant: str) -> CacheSnapshot | None:
        return self.cache.get(tenant)

    # ── Lookup ──────────────────────────────────────────────

    def get_cached(self, tenant: str, component_type: ComponentType, name: str) -> CachedLookup:
        """Find one expanded component in the tenant's snapshot.

        Integration procedures match by name or procedure key; every type
        matches case-insensitively.
        """
        snapshot = self.cache.get(tenant)
        if snapshot is None:
            return CachedLookup(component=None, found=False, requires_reload=True)

        wanted = name.lower()
        for component in snapshot.components(component_type):
            keys = [component.name]
            if component_type is ComponentType.INTEGRATION_PROCEDURE and component.procedure_key:
                keys.append(component.procedure_key)
            if any(k.lower() == wanted for k in keys):
                return CachedLookup(
                    component=component,
                    found=True,
                    expanded_children=count_expanded_children(component),
                )

        logger.info("%s '%s' not in cached data for %s", component_type.label, name, tenant)
        return CachedLookup(component=None, found=False)

    def get_child_hierarchy(self, tenant: str, name: str) -> tuple[list[Step], bool]:
        """Fetch and parse one integration procedure on demand, without expanding it."""
        source = self.source_factory(tenant)
        record = source.fetch_component_definition(ComponentType.INTEGRATION_PROCEDURE, name)
        if record is None:
            return [], False
        component = parse_record(record, ComponentType.INTEGRATION_PROCEDURE)
        return component.steps, True

    def get_instance_details(
        self, tenant: str, component_type: ComponentType, name: str,
    ) -> InstanceDetails | None:
        """Fetch and parse one integration procedure or OmniScript on demand.

        Works without a loaded snapshot; raises ``ValueError`` for component
        types that carry no step definition.
        """
        if component_type not in DETAIL_TYPES:
            raise ValueError(f"Unsupported component type: {component_type.value}")
        source = self.source_factory(tenant)
        record = source.fetch_component_definition(component_type, name)
        if record is None:
            logger.info("%s '%s' not found for %s", component_type.label, name, tenant)
            return None
        return InstanceDetails(component=parse_record(record, component_type))

    def search_components(
        self,
        tenant: str,
        component_type: ComponentType,
        term: str = "",
        limit: int = SEARCH_LIMIT,
    ) -> list[dict[str, Any]] | None:
        """Substring search over the cached snapshot; ``None`` when nothing is cached."""
        snapshot = self.cache.get(tenant)
        if snapshot is None:
            return None

        term = term.lower()
        matches: list[dict[str, Any]] = []
        seen: set[str | None] = set()
        for component in snapshot.components(component_type):
            haystack = [component.name]
            if component_type is ComponentType.INTEGRATION_PROCEDURE and component.procedure_key:
                haystack.append(component.procedure_key)
            if term and not any(term in h.lower() for h in haystack):
                continue

            if component_type is ComponentType.INTEGRATION_PROCEDURE:
                dedup_key = component.procedure_key
            elif component_type is ComponentType.OMNISCRIPT:
                dedup_key = component.name
            else:
                dedup_key = None
            if dedup_key is not None:
                if dedup_key in seen:
                    logger.debug("Skipping duplicate %s '%s'", component_type.label, dedup_key)
                    continue
                seen.add(dedup_key)

            matches.append(_search_entry(component))
            if len(matches) >= limit:
                break
        return matches

    def global_summary(self, tenant: str) -> dict[str, Any] | None:
        snapshot = self.cache.get(tenant)
        if snapshot is None:
            return None

        def describe(component: Component) -> dict[str, Any]:
            return {
                "id": component.id,
                "name": component.name,
                "unique_id": component.unique_id,
                "type": component.type,
                "sub_type": component.sub_type,
                "version": component.version,
                "steps_count": len(component.steps),
                "child_components": len(component.child_components),
                "referenced_by": len(component.referenced_by),
                "content_error": component.content_error,
            }

        return {
            "tenant": tenant,
            "loaded_at": snapshot.loaded_at,
            "source": snapshot.source,
            "total_components": snapshot.total_components,
            "counts": {
                "integration_procedures": len(snapshot.integration_procedures),
                "omniscripts": len(snapshot.omniscripts),
                "data_mappers": len(snapshot.data_mappers),
            },
            "hierarchy_relationships": sum(len(c.child_components) for c in snapshot.components()),
            "timing": snapshot.timing.to_dict(),
            "stats": snapshot.stats.to_dict(),
            "components": {
                "integration_procedures": [describe(c) for c in snapshot.integration_procedures],
                "omniscripts": [describe(c) for c in snapshot.omniscripts],
                "data_mappers": [describe(c) for c in snapshot.data_mappers],
            },
        }

    # ── Cache management ────────────────────────────────────

    def clear_cache(self, tenant: str) -> None:
        logger.info("Clearing cache for %s", tenant)
        self.cache.clear(tenant)

    def clear_all_caches(self) -> int:
        count = self.cache.clear_all()
        logger.info("Cleared %d cached tenants", count)
        return count

    def set_persistent_enabled(self, enabled: bool) -> dict[str, Any]:
        self.cache.set_persistent_enabled(enabled)
        return self.cache.status()

    def cache_status(self) -> dict[str, Any]:
        return self.cache.status()
