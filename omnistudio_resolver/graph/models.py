"""Data models for the component reference graph."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from omnistudio_resolver.models import Component


@dataclass
class GraphEdge:
    source_id: str
    target_id: str
    step_name: str = ""


@dataclass
class ReferenceGraph:
    components: dict[str, Component] = field(default_factory=dict)  # unique_id -> component
    name_index: dict[str, str] = field(default_factory=dict)  # name -> unique_id
    edges: list[GraphEdge] = field(default_factory=list)
    forward: dict[str, list[str]] = field(default_factory=dict)  # source -> [targets]
    reverse: dict[str, list[str]] = field(default_factory=dict)  # target -> [sources]
    cycles: list[list[str]] = field(default_factory=list)
    unresolved: list[tuple[str, str, str]] = field(default_factory=list)  # (owner, step, reference)
    depth_limited: list[str] = field(default_factory=list)

    def resolve(self, key: str) -> Component | None:
        """Look a reference up by unique id first, then by name."""
        if key in self.components:
            return self.components[key]
        unique_id = self.name_index.get(key)
        return self.components.get(unique_id) if unique_id else None

    def has_edge(self, source_id: str, target_id: str) -> bool:
        return target_id in self.forward.get(source_id, [])

    def add_edge(self, source_id: str, target_id: str, step_name: str = "") -> bool:
        if self.has_edge(source_id, target_id):
            return False
        self.edges.append(GraphEdge(source_id, target_id, step_name))
        self.forward.setdefault(source_id, []).append(target_id)
        self.reverse.setdefault(target_id, []).append(source_id)
        return True

    def reachable(self, source_id: str, target_id: str) -> bool:
        """True when ``target_id`` can be reached from ``source_id`` over recorded edges."""
        if source_id == target_id:
            return True
        visited = {source_id}
        queue = deque([source_id])
        while queue:
            current = queue.popleft()
            for neighbor in self.forward.get(current, []):
                if neighbor == target_id:
                    return True
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)
        return False
