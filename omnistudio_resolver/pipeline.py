"""Reload pipeline: list -> parse -> link -> expand -> snapshot."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from omnistudio_resolver.config import ResolverConfig
from omnistudio_resolver.errors import ReloadError
from omnistudio_resolver.graph import RecursiveExpander, ReferenceGraphBuilder
from omnistudio_resolver.models import CacheSnapshot, Component, ComponentType, Timing
from omnistudio_resolver.parser import parse_record
from omnistudio_resolver.sources import MetadataSource

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]

# Data mappers first: they are leaves and never reference anything
_LOAD_ORDER = (
    ComponentType.DATA_MAPPER,
    ComponentType.INTEGRATION_PROCEDURE,
    ComponentType.OMNISCRIPT,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_components(
    source: MetadataSource,
    component_type: ComponentType,
    progress: ProgressCallback | None = None,
) -> list[Component]:
    """List and parse every component of one type.

    A listing failure is the one fatal condition of a reload and raises
    :class:`ReloadError`; a malformed record only sets ``content_error``.
    """
    label = component_type.label
    if progress:
        progress(f"Listing {label}s", 0, 1)
    try:
        records = source.list_components(component_type)
    except Exception as e:
        raise ReloadError(f"Listing {label}s failed: {e}") from e

    components: list[Component] = []
    for i, record in enumerate(records):
        if progress:
            progress(f"Parsing {label}s", i, len(records))
        components.append(parse_record(record, component_type))
    if progress:
        progress(f"Parsing {label}s", len(records), len(records))

    logger.info("Loaded %d %ss", len(components), label)
    return components


def make_fetch(source: MetadataSource):
    """Fetch hook for the expander: one integration procedure by name or key."""

    def fetch(reference: str) -> Component | None:
        record = source.fetch_component_definition(ComponentType.INTEGRATION_PROCEDURE, reference)
        if record is None:
            return None
        return parse_record(record, ComponentType.INTEGRATION_PROCEDURE)

    return fetch


def run_reload(
    source: MetadataSource,
    config: ResolverConfig | None = None,
    tenant: str = "default",
    snapshot: CacheSnapshot | None = None,
    progress: ProgressCallback | None = None,
) -> CacheSnapshot:
    """Build a fresh snapshot for ``tenant`` from ``source``.

    ``snapshot`` is the tenant's currently published snapshot, if any; the
    expander consults it, including the components it had fetched, before
    fetching components the listing missed. Components resolved that way are
    published again on the new snapshot's ``fetched`` list.
    """
    config = config or ResolverConfig()
    start_time = _now()
    started = time.monotonic()
    logger.info("Reloading components for %s", tenant)

    loaded = {ct: load_components(source, ct, progress) for ct in _LOAD_ORDER}
    all_components = [c for ct in _LOAD_ORDER for c in loaded[ct]]

    if progress:
        progress("Linking references", 0, 1)
    ReferenceGraphBuilder(config.graph_max_depth).build(all_components)
    if progress:
        progress("Linking references", 1, 1)

    expander = RecursiveExpander(
        fetch=make_fetch(source),
        depth_limit=config.expansion_depth_limit,
        fetch_timeout=config.fetch_timeout,
        max_workers=config.max_workers,
        catalog=all_components,
        snapshot=snapshot,
    )
    roots = loaded[ComponentType.INTEGRATION_PROCEDURE] + loaded[ComponentType.OMNISCRIPT]
    if progress:
        progress("Expanding", 0, len(roots))
    expanded = expander.expand_all(roots)
    if progress:
        progress("Expanding", len(roots), len(roots))

    n_ips = len(loaded[ComponentType.INTEGRATION_PROCEDURE])
    duration_ms = int((time.monotonic() - started) * 1000)
    result = CacheSnapshot(
        tenant=tenant,
        integration_procedures=expanded[:n_ips],
        omniscripts=expanded[n_ips:],
        data_mappers=loaded[ComponentType.DATA_MAPPER],
        fetched=expander.fetched_components(),
        loaded_at=_now(),
        timing=Timing(start_time=start_time, end_time=_now(), duration_ms=duration_ms),
        stats=expander.stats,
    )
    logger.info(
        "Reload of %s complete: %d components in %d ms",
        tenant, result.total_components, duration_ms,
    )
    return result
