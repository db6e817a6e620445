"""Reference graph builder: links components through their reference steps,
records parent/child relations in place and detects cycles."""

from __future__ import annotations

import logging
from typing import Iterable

from omnistudio_resolver.config import DEFAULT_GRAPH_DEPTH
from omnistudio_resolver.graph.models import ReferenceGraph
from omnistudio_resolver.models import (
    ChildSummary,
    Component,
    ComponentRef,
    ReferenceEntry,
    Step,
)

logger = logging.getLogger(__name__)


def render_path(graph: ReferenceGraph, path: list[str]) -> str:
    """``IP-Parent => IP-Child`` style rendering of a unique-id path."""
    parts = []
    for unique_id in path:
        component = graph.components.get(unique_id)
        if component is None:
            parts.append(unique_id)
        else:
            parts.append(component.component_type.prefix + component.name)
    return " => ".join(parts)


class ReferenceGraphBuilder:
    """Build the reference graph of one tenant's components."""

    def __init__(self, max_depth: int = DEFAULT_GRAPH_DEPTH):
        self.max_depth = max_depth

    def build(self, components: Iterable[Component]) -> ReferenceGraph:
        components = list(components)
        graph = ReferenceGraph()

        # Step 1: indices, first occurrence wins
        for component in components:
            if component.unique_id in graph.components:
                logger.warning(
                    "Duplicate unique id '%s' (%s); keeping the first occurrence",
                    component.unique_id, component.name,
                )
            else:
                graph.components[component.unique_id] = component
            graph.name_index.setdefault(component.name, component.unique_id)

        # Step 2: walk every component's step tree
        for component in components:
            if component.steps:
                self._walk(graph, component, component, component.steps, 0, [])

        logger.info(
            "Reference graph: %d components, %d edges, %d cycles, %d unresolved",
            len(graph.components), len(graph.edges), len(graph.cycles), len(graph.unresolved),
        )
        return graph

    def detect_cycles(self, graph: ReferenceGraph) -> list[list[str]]:
        """Detect all cycles over the recorded edges using DFS."""
        cycles: list[list[str]] = []
        visited: set[str] = set()
        rec_stack: set[str] = set()
        path: list[str] = []

        def dfs(node_id: str) -> None:
            visited.add(node_id)
            rec_stack.add(node_id)
            path.append(node_id)

            for neighbor in graph.forward.get(node_id, []):
                if neighbor not in visited:
                    dfs(neighbor)
                elif neighbor in rec_stack:
                    idx = path.index(neighbor)
                    cycles.append(path[idx:] + [neighbor])

            path.pop()
            rec_stack.discard(node_id)

        for node_id in graph.components:
            if node_id not in visited:
                dfs(node_id)

        return cycles

    def _walk(
        self,
        graph: ReferenceGraph,
        root: Component,
        owner: Component,
        steps: list[Step],
        level: int,
        path: list[str],
    ) -> None:
        if level > self.max_depth:
            logger.warning("Max hierarchy depth reached for %s", root.name)
            if root.unique_id not in graph.depth_limited:
                graph.depth_limited.append(root.unique_id)
            return

        full_path = path + [owner.unique_id]
        for step in steps:
            if step.referenced_ip:
                self._link(graph, root, owner, step, level, full_path)
            # Cycles and unresolved targets never stop the rest of the step
            if step.sub_steps:
                self._walk(graph, root, owner, step.sub_steps, level, path)
            if step.block_steps:
                self._walk(graph, root, owner, step.block_steps, level, path)

    def _link(
        self,
        graph: ReferenceGraph,
        root: Component,
        owner: Component,
        step: Step,
        level: int,
        full_path: list[str],
    ) -> None:
        target = graph.resolve(step.referenced_ip)
        if target is None:
            graph.unresolved.append((owner.unique_id, step.name, step.referenced_ip))
            logger.warning(
                "Unresolved reference '%s' in step '%s' of %s",
                step.referenced_ip, step.name, owner.name,
            )
            return

        step.child_component = ChildSummary(
            id=target.id,
            name=target.name,
            component_type=target.component_type,
            unique_id=target.unique_id,
            steps_count=len(target.steps),
        )

        closes_cycle = target.unique_id in full_path or (
            not graph.has_edge(owner.unique_id, target.unique_id)
            and graph.reachable(target.unique_id, owner.unique_id)
        )
        if closes_cycle:
            graph.cycles.append(full_path + [target.unique_id])
            logger.warning(
                "Skipping circular reference: '%s' from step '%s' (path %s)",
                target.name, step.name, render_path(graph, full_path),
            )
            return

        graph.add_edge(owner.unique_id, target.unique_id, step.name)
        path_string = render_path(graph, full_path)
        logger.debug(
            "Step '%s' references %s with %d steps (path %s)",
            step.name, target.name, len(target.steps), path_string,
        )

        if not any(c.unique_id == target.unique_id for c in root.child_components):
            root.child_components.append(ComponentRef(
                unique_id=target.unique_id,
                name=target.name,
                component_type=target.component_type,
                referenced_in_step=step.name,
                level=level + 1,
                path=list(full_path),
                path_string=path_string,
            ))

        if not any(
            r.parent_unique_id == owner.unique_id and r.step_name == step.name
            for r in target.referenced_by
        ):
            target.referenced_by.append(ReferenceEntry(
                parent_unique_id=owner.unique_id,
                parent_name=owner.name,
                parent_component_type=owner.component_type,
                step_name=step.name,
                level=level + 1,
                path=list(full_path),
                path_string=path_string,
            ))

        if target.steps:
            self._walk(graph, root, target, target.steps, level + 1, full_path)
