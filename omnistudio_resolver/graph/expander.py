"""Recursive expander: attach the fully expanded structure of every
referenced component to the step that references it.

Each reference is resolved in a fixed order: the shared memo of finished
expansions, the lineage of the walk in progress (a cycle), components
already known to this run (the reload catalog, then the published
snapshot with the components it had fetched), and finally the ``fetch``
hook. Every component resolved from outside the catalog is reported by
:meth:`RecursiveExpander.fetched_components` so the next snapshot can
publish it.

A finished expansion is memoised under ``(unique_id, remaining budget)``
only when it did not cut a cycle against an ancestor outside itself, and is
reused only when none of its members is on the caller's lineage. Expansion
therefore depends on the target alone, so every step referencing the same
component sees the same structure whatever order roots were expanded in.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from omnistudio_resolver.config import DEFAULT_EXPANSION_DEPTH
from omnistudio_resolver.models import (
    CacheSnapshot,
    ChildSummary,
    Component,
    ExpansionStats,
    ExpansionStatus,
    Step,
)

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Optional[Component]]


@dataclass
class _MemoEntry:
    component: Component
    members: frozenset[str]


def count_expanded_children(component: Component) -> int:
    """Number of attached child structures, counted through every level."""
    count = 0
    for step in component.iter_steps():
        if step.child_structure is not None:
            count += 1 + count_expanded_children(step.child_structure)
    return count


class RecursiveExpander:
    """Expand root components concurrently over one shared memo."""

    def __init__(
        self,
        fetch: FetchFn | None = None,
        depth_limit: int = DEFAULT_EXPANSION_DEPTH,
        fetch_timeout: float | None = None,
        max_workers: int = 4,
        catalog: Iterable[Component] = (),
        snapshot: CacheSnapshot | None = None,
    ):
        self.fetch = fetch
        self.depth_limit = depth_limit
        self.fetch_timeout = fetch_timeout
        self.max_workers = max(1, max_workers)
        self.stats = ExpansionStats()

        self._lock = threading.Lock()
        self._known: dict[str, Component] = {}
        self._memo: dict[tuple[str, int], _MemoEntry] = {}
        self._fetched: dict[str, Future] = {}
        self._fetch_errors: dict[str, str] = {}
        self._fetch_pool: ThreadPoolExecutor | None = None
        self._external_ids: set[str] = set()
        self._adopted: dict[str, Component] = {}

        catalog_ids = set()
        for component in catalog:
            self._register(component)
            catalog_ids.add(component.unique_id)
        if snapshot is not None:
            for component in [*snapshot.components(), *snapshot.fetched]:
                if component.unique_id not in catalog_ids:
                    self._external_ids.add(component.unique_id)
                self._register(component)

    def expand_all(self, roots: Iterable[Component]) -> list[Component]:
        """Return deep, expanded copies of ``roots`` in input order."""
        roots = list(roots)
        with self._lock:
            for root in roots:
                self._register(root)

        try:
            if self.max_workers == 1 or len(roots) <= 1:
                results = [self._expand_root(root) for root in roots]
            else:
                with ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="expand",
                ) as pool:
                    results = list(pool.map(self._expand_root, roots))
        finally:
            self._shutdown_fetch_pool()

        logger.info(
            "Expanded %d components (fetches=%d, memo hits=%d, cycles=%d, depth-limited=%d)",
            len(results), self.stats.fetches, self.stats.memo_hits,
            self.stats.cycles, self.stats.depth_limited,
        )
        return results

    # -- expansion --

    def _expand_root(self, root: Component) -> Component:
        entry = self._memo_lookup(root.unique_id, self.depth_limit, ())
        if entry is not None:
            return entry.component.copy()
        expanded, members, escapes = self._expand(root, self.depth_limit, ())
        if not escapes:
            self._memo_store(root.unique_id, self.depth_limit, expanded, members)
        return expanded

    def _expand(
        self, base: Component, budget: int, lineage: tuple[str, ...],
    ) -> tuple[Component, frozenset[str], set[str]]:
        component = base.copy()
        lineage = lineage + (component.unique_id,)
        members = {component.unique_id}
        escapes: set[str] = set()

        for step in component.iter_steps():
            if step.referenced_ip:
                self._expand_reference(component, step, budget, lineage, members, escapes)

        component.fully_expanded = True
        escapes.discard(component.unique_id)
        return component, frozenset(members), escapes

    def _expand_reference(
        self,
        owner: Component,
        step: Step,
        budget: int,
        lineage: tuple[str, ...],
        members: set[str],
        escapes: set[str],
    ) -> None:
        step.child_structure = None
        step.has_expanded_structure = False
        key = step.referenced_ip

        if budget <= 0:
            step.expansion_status = ExpansionStatus.DEPTH_LIMIT
            self._count("depth_limited")
            logger.warning(
                "Depth limit %d reached at step '%s' of %s; '%s' left unexpanded",
                self.depth_limit, step.name, owner.name, key,
            )
            return

        base = self._known_component(key)
        if base is not None:
            if base.unique_id in self._external_ids:
                self._adopt(base)
            entry = self._memo_lookup(base.unique_id, budget - 1, lineage)
            if entry is not None:
                self._attach(step, base, entry.component.copy())
                members.update(entry.members)
                return
        else:
            try:
                base = self._fetch(key)
            except Exception as e:
                step.expansion_status = ExpansionStatus.FETCH_FAILED
                self._count("fetch_failures")
                logger.warning("Fetch of '%s' for step '%s' failed: %s", key, step.name, e)
                return
            if base is None:
                step.expansion_status = ExpansionStatus.UNRESOLVED
                self._count("unresolved")
                logger.warning(
                    "Unresolved reference '%s' in step '%s' of %s", key, step.name, owner.name,
                )
                return
            self._adopt(base)

        if base.unique_id in lineage:
            step.expansion_status = ExpansionStatus.CYCLE
            escapes.add(base.unique_id)
            self._count("cycles")
            logger.debug("Cycle at step '%s': %s is already being expanded", step.name, base.name)
            return

        child, child_members, child_escapes = self._expand(base, budget - 1, lineage)
        if not child_escapes:
            self._memo_store(base.unique_id, budget - 1, child, child_members)
        self._attach(step, base, child)
        members.update(child_members)
        escapes.update(child_escapes)

    @staticmethod
    def _attach(step: Step, base: Component, structure: Component) -> None:
        if step.child_component is None:
            step.child_component = ChildSummary(
                id=base.id,
                name=base.name,
                component_type=base.component_type,
                unique_id=base.unique_id,
                steps_count=len(base.steps),
            )
        step.child_structure = structure
        step.has_expanded_structure = True
        step.expansion_status = ExpansionStatus.EXPANDED

    # -- shared state --

    def _register(self, component: Component) -> None:
        self._known.setdefault(component.unique_id, component)
        self._known.setdefault(component.name, component)
        if component.procedure_key:
            self._known.setdefault(component.procedure_key, component)

    def _adopt(self, component: Component) -> None:
        with self._lock:
            self._adopted.setdefault(component.unique_id, component)

    def fetched_components(self) -> list[Component]:
        """Components resolved from outside the catalog, ordered by unique id."""
        with self._lock:
            return [self._adopted[uid].copy() for uid in sorted(self._adopted)]

    def _known_component(self, key: str) -> Component | None:
        with self._lock:
            return self._known.get(key)

    def _memo_lookup(
        self, unique_id: str, budget: int, lineage: tuple[str, ...],
    ) -> _MemoEntry | None:
        with self._lock:
            entry = self._memo.get((unique_id, budget))
            if entry is None or entry.members.intersection(lineage):
                return None
            self.stats.memo_hits += 1
            return entry

    def _memo_store(
        self, unique_id: str, budget: int, component: Component, members: frozenset[str],
    ) -> None:
        with self._lock:
            self._memo.setdefault((unique_id, budget), _MemoEntry(component.copy(), members))

    def _count(self, counter: str) -> None:
        with self._lock:
            setattr(self.stats, counter, getattr(self.stats, counter) + 1)

    # -- fetching --

    def _fetch(self, key: str) -> Component | None:
        """Fetch one unknown component; each key is requested at most once per run."""
        if self.fetch is None:
            return None

        with self._lock:
            error = self._fetch_errors.get(key)
            if error is not None:
                raise LookupError(error)
            future = self._fetched.get(key)
            if future is None:
                if self._fetch_pool is None:
                    self._fetch_pool = ThreadPoolExecutor(
                        max_workers=self.max_workers, thread_name_prefix="fetch",
                    )
                future = self._fetch_pool.submit(self.fetch, key)
                self._fetched[key] = future
                self.stats.fetches += 1

        try:
            component = future.result(timeout=self.fetch_timeout)
        except Exception as e:
            message = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            with self._lock:
                message = self._fetch_errors.setdefault(key, message)
            raise LookupError(message) from e

        if component is not None:
            with self._lock:
                self._register(component)
                self._known.setdefault(key, component)
                component = self._known[key]
        return component

    def _shutdown_fetch_pool(self) -> None:
        with self._lock:
            pool, self._fetch_pool = self._fetch_pool, None
        if pool is not None:
            pool.shutdown(wait=False)
