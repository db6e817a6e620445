"""Data models for the Omnistudio hierarchy resolver."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class ComponentType(enum.Enum):
    INTEGRATION_PROCEDURE = "integration-procedure"
    OMNISCRIPT = "omniscript"
    DATA_MAPPER = "data-mapper"

    @property
    def prefix(self) -> str:
        """Display prefix used when rendering reference paths."""
        return _PREFIXES[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_PREFIXES = {
    ComponentType.INTEGRATION_PROCEDURE: "IP-",
    ComponentType.OMNISCRIPT: "OS-",
    ComponentType.DATA_MAPPER: "",
}

_LABELS = {
    ComponentType.INTEGRATION_PROCEDURE: "Integration Procedure",
    ComponentType.OMNISCRIPT: "OmniScript",
    ComponentType.DATA_MAPPER: "Data Mapper",
}


class BlockKind(enum.Enum):
    NONE = "none"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    CACHE = "cache"
    BLOCK = "block"
    IP_REFERENCE = "ip-reference"


class ExpansionStatus(enum.Enum):
    PENDING = "pending"
    EXPANDED = "expanded"
    CYCLE = "cycle"
    DEPTH_LIMIT = "depth-limit"
    UNRESOLVED = "unresolved"
    FETCH_FAILED = "fetch-failed"


@dataclass
class ChildSummary:
    """Resolved target of a reference step, stamped by the graph builder."""
    id: str | None
    name: str
    component_type: ComponentType
    unique_id: str
    steps_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "component_type": self.component_type.value,
            "unique_id": self.unique_id,
            "steps_count": self.steps_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChildSummary:
        return cls(
            id=data.get("id"),
            name=data["name"],
            component_type=ComponentType(data["component_type"]),
            unique_id=data["unique_id"],
            steps_count=data.get("steps_count", 0),
        )


@dataclass
class ComponentRef:
    """Outgoing edge recorded on the calling component."""
    unique_id: str
    name: str
    component_type: ComponentType
    referenced_in_step: str
    level: int
    path: list[str] = field(default_factory=list)
    path_string: str = ""

    def copy(self) -> ComponentRef:
        return ComponentRef(
            unique_id=self.unique_id,
            name=self.name,
            component_type=self.component_type,
            referenced_in_step=self.referenced_in_step,
            level=self.level,
            path=list(self.path),
            path_string=self.path_string,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "unique_id": self.unique_id,
            "name": self.name,
            "component_type": self.component_type.value,
            "referenced_in_step": self.referenced_in_step,
            "level": self.level,
            "path": list(self.path),
            "path_string": self.path_string,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComponentRef:
        return cls(
            unique_id=data["unique_id"],
            name=data["name"],
            component_type=ComponentType(data["component_type"]),
            referenced_in_step=data.get("referenced_in_step", ""),
            level=data.get("level", 1),
            path=list(data.get("path", [])),
            path_string=data.get("path_string", ""),
        )


@dataclass
class ReferenceEntry:
    """Incoming edge recorded on the called component."""
    parent_unique_id: str
    parent_name: str
    parent_component_type: ComponentType
    step_name: str
    level: int
    path: list[str] = field(default_factory=list)
    path_string: str = ""

    def copy(self) -> ReferenceEntry:
        return ReferenceEntry(
            parent_unique_id=self.parent_unique_id,
            parent_name=self.parent_name,
            parent_component_type=self.parent_component_type,
            step_name=self.step_name,
            level=self.level,
            path=list(self.path),
            path_string=self.path_string,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "parent_unique_id": self.parent_unique_id,
            "parent_name": self.parent_name,
            "parent_component_type": self.parent_component_type.value,
            "step_name": self.step_name,
            "level": self.level,
            "path": list(self.path),
            "path_string": self.path_string,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReferenceEntry:
        return cls(
            parent_unique_id=data["parent_unique_id"],
            parent_name=data["parent_name"],
            parent_component_type=ComponentType(data["parent_component_type"]),
            step_name=data.get("step_name", ""),
            level=data.get("level", 1),
            path=list(data.get("path", [])),
            path_string=data.get("path_string", ""),
        )


# Optional scalar fields shared by to_dict/from_dict on Step.
_STEP_TEXT_FIELDS = (
    "referenced_ip",
    "execution_condition",
    "show_condition",
    "block_condition",
    "block_iterator",
    "block_cache_key",
    "label",
    "description",
    "bundle",
    "integration_procedure_key",
    "remote_class",
    "remote_method",
    "extra_properties",
)


@dataclass
class Step:
    """One node of a component's definition tree."""
    name: str = "Unnamed Step"
    type: str = ""
    block_kind: BlockKind = BlockKind.NONE
    sub_steps: list[Step] = field(default_factory=list)
    block_steps: list[Step] = field(default_factory=list)
    level: int = 0
    has_children: bool = False
    empty_body: bool = False

    # Cross-component reference
    referenced_ip: str | None = None
    has_ip_reference: bool = False
    child_component: ChildSummary | None = None
    child_structure: Component | None = None
    has_expanded_structure: bool = False
    expansion_status: ExpansionStatus | None = None

    # Surfaced, never evaluated
    execution_condition: str | None = None
    show_condition: str | None = None
    block_condition: str | None = None
    block_iterator: str | None = None
    block_cache_key: str | None = None

    label: str | None = None
    description: str | None = None
    bundle: str | None = None
    integration_procedure_key: str | None = None
    remote_class: str | None = None
    remote_method: str | None = None
    extra_properties: str | None = None  # raw JSON of unrecognised keys

    def iter_children(self):
        yield from self.sub_steps
        yield from self.block_steps

    def copy(self) -> Step:
        """Structural deep copy; no node is shared with the original."""
        return Step(
            name=self.name,
            type=self.type,
            block_kind=self.block_kind,
            sub_steps=[s.copy() for s in self.sub_steps],
            block_steps=[s.copy() for s in self.block_steps],
            level=self.level,
            has_children=self.has_children,
            empty_body=self.empty_body,
            referenced_ip=self.referenced_ip,
            has_ip_reference=self.has_ip_reference,
            child_component=(
                ChildSummary(**vars(self.child_component)) if self.child_component else None
            ),
            child_structure=self.child_structure.copy() if self.child_structure else None,
            has_expanded_structure=self.has_expanded_structure,
            expansion_status=self.expansion_status,
            execution_condition=self.execution_condition,
            show_condition=self.show_condition,
            block_condition=self.block_condition,
            block_iterator=self.block_iterator,
            block_cache_key=self.block_cache_key,
            label=self.label,
            description=self.description,
            bundle=self.bundle,
            integration_procedure_key=self.integration_procedure_key,
            remote_class=self.remote_class,
            remote_method=self.remote_method,
            extra_properties=self.extra_properties,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "block_kind": self.block_kind.value,
            "level": self.level,
            "has_children": self.has_children,
            "empty_body": self.empty_body,
            "has_ip_reference": self.has_ip_reference,
            "has_expanded_structure": self.has_expanded_structure,
            "expansion_status": self.expansion_status.value if self.expansion_status else None,
            "sub_steps": [s.to_dict() for s in self.sub_steps],
            "block_steps": [s.to_dict() for s in self.block_steps],
            "child_component": self.child_component.to_dict() if self.child_component else None,
            "child_structure": self.child_structure.to_dict() if self.child_structure else None,
        }
        for name in _STEP_TEXT_FIELDS:
            data[name] = getattr(self, name)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Step:
        status = data.get("expansion_status")
        child_component = data.get("child_component")
        child_structure = data.get("child_structure")
        step = cls(
            name=data.get("name", "Unnamed Step"),
            type=data.get("type", ""),
            block_kind=BlockKind(data.get("block_kind", "none")),
            sub_steps=[cls.from_dict(s) for s in data.get("sub_steps", [])],
            block_steps=[cls.from_dict(s) for s in data.get("block_steps", [])],
            level=data.get("level", 0),
            has_children=data.get("has_children", False),
            empty_body=data.get("empty_body", False),
            has_ip_reference=data.get("has_ip_reference", False),
            child_component=ChildSummary.from_dict(child_component) if child_component else None,
            child_structure=Component.from_dict(child_structure) if child_structure else None,
            has_expanded_structure=data.get("has_expanded_structure", False),
            expansion_status=ExpansionStatus(status) if status else None,
        )
        for name in _STEP_TEXT_FIELDS:
            setattr(step, name, data.get(name))
        return step


@dataclass
class Component:
    """One automation asset: integration procedure, OmniScript or data mapper."""
    id: str | None
    name: str
    component_type: ComponentType
    unique_id: str
    type: str | None = None
    sub_type: str | None = None
    version: str | None = None
    procedure_key: str | None = None
    description: str | None = None
    is_active: bool = True
    steps: list[Step] = field(default_factory=list)
    child_components: list[ComponentRef] = field(default_factory=list)
    referenced_by: list[ReferenceEntry] = field(default_factory=list)
    content_error: str | None = None
    fully_expanded: bool = False

    def iter_steps(self):
        """Depth-first walk over every step, including nested sub/block steps."""
        stack = list(reversed(self.steps))
        while stack:
            step = stack.pop()
            yield step
            stack.extend(reversed(list(step.iter_children())))

    def copy(self) -> Component:
        """Structural deep copy; steps, refs and nested structures are rebuilt."""
        return Component(
            id=self.id,
            name=self.name,
            component_type=self.component_type,
            unique_id=self.unique_id,
            type=self.type,
            sub_type=self.sub_type,
            version=self.version,
            procedure_key=self.procedure_key,
            description=self.description,
            is_active=self.is_active,
            steps=[s.copy() for s in self.steps],
            child_components=[c.copy() for c in self.child_components],
            referenced_by=[r.copy() for r in self.referenced_by],
            content_error=self.content_error,
            fully_expanded=self.fully_expanded,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "component_type": self.component_type.value,
            "unique_id": self.unique_id,
            "type": self.type,
            "sub_type": self.sub_type,
            "version": self.version,
            "procedure_key": self.procedure_key,
            "description": self.description,
            "is_active": self.is_active,
            "steps": [s.to_dict() for s in self.steps],
            "child_components": [c.to_dict() for c in self.child_components],
            "referenced_by": [r.to_dict() for r in self.referenced_by],
            "content_error": self.content_error,
            "fully_expanded": self.fully_expanded,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Component:
        return cls(
            id=data.get("id"),
            name=data["name"],
            component_type=ComponentType(data["component_type"]),
            unique_id=data["unique_id"],
            type=data.get("type"),
            sub_type=data.get("sub_type"),
            version=data.get("version"),
            procedure_key=data.get("procedure_key"),
            description=data.get("description"),
            is_active=data.get("is_active", True),
            steps=[Step.from_dict(s) for s in data.get("steps", [])],
            child_components=[ComponentRef.from_dict(c) for c in data.get("child_components", [])],
            referenced_by=[ReferenceEntry.from_dict(r) for r in data.get("referenced_by", [])],
            content_error=data.get("content_error"),
            fully_expanded=data.get("fully_expanded", False),
        )


# A component whose reference steps carry child structures.
ExpandedComponent = Component


@dataclass
class Timing:
    start_time: str = ""
    end_time: str = ""
    duration_ms: int = 0

    @property
    def duration_seconds(self) -> float:
        return round(self.duration_ms / 1000, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Timing:
        return cls(
            start_time=data.get("start_time", ""),
            end_time=data.get("end_time", ""),
            duration_ms=data.get("duration_ms", 0),
        )


@dataclass
class ExpansionStats:
    """Diagnostic counters collected by the expander."""
    fetches: int = 0
    fetch_failures: int = 0
    memo_hits: int = 0
    cycles: int = 0
    depth_limited: int = 0
    unresolved: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(vars(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExpansionStats:
        return cls(**{k: int(v) for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class CacheSnapshot:
    """Fully resolved component data for one tenant."""
    tenant: str
    integration_procedures: list[Component] = field(default_factory=list)
    omniscripts: list[Component] = field(default_factory=list)
    data_mappers: list[Component] = field(default_factory=list)
    # Unlisted components obtained through the fetch hook, kept unexpanded
    fetched: list[Component] = field(default_factory=list)
    loaded_at: str = ""
    timing: Timing = field(default_factory=Timing)
    stats: ExpansionStats = field(default_factory=ExpansionStats)
    org_name: str | None = None
    cached_at: str | None = None
    source: str = "pipeline"  # pipeline | persistent

    @property
    def total_components(self) -> int:
        return len(self.integration_procedures) + len(self.omniscripts) + len(self.data_mappers)

    def components(self, component_type: ComponentType | None = None) -> list[Component]:
        if component_type is ComponentType.INTEGRATION_PROCEDURE:
            return self.integration_procedures
        if component_type is ComponentType.OMNISCRIPT:
            return self.omniscripts
        if component_type is ComponentType.DATA_MAPPER:
            return self.data_mappers
        return [*self.integration_procedures, *self.omniscripts, *self.data_mappers]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant": self.tenant,
            "integration_procedures": [c.to_dict() for c in self.integration_procedures],
            "omniscripts": [c.to_dict() for c in self.omniscripts],
            "data_mappers": [c.to_dict() for c in self.data_mappers],
            "fetched": [c.to_dict() for c in self.fetched],
            "loaded_at": self.loaded_at,
            "timing": self.timing.to_dict(),
            "stats": self.stats.to_dict(),
            "org_name": self.org_name,
            "cached_at": self.cached_at,
            "source": self.source,
            "total_components": self.total_components,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheSnapshot:
        return cls(
            tenant=data["tenant"],
            integration_procedures=[Component.from_dict(c) for c in data.get("integration_procedures", [])],
            omniscripts=[Component.from_dict(c) for c in data.get("omniscripts", [])],
            data_mappers=[Component.from_dict(c) for c in data.get("data_mappers", [])],
            fetched=[Component.from_dict(c) for c in data.get("fetched", [])],
            loaded_at=data.get("loaded_at", ""),
            timing=Timing.from_dict(data.get("timing", {})),
            stats=ExpansionStats.from_dict(data.get("stats", {})),
            org_name=data.get("org_name"),
            cached_at=data.get("cached_at"),
            source=data.get("source", "pipeline"),
        )


@dataclass
class LoadSummary:
    """Result of a LoadAll call."""
    tenant: str
    integration_procedures: int
    omniscripts: int
    data_mappers: int
    total_components: int
    hierarchical_references: int
    content_errors: int
    timing: Timing
    stats: ExpansionStats
    from_cache: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: CacheSnapshot, from_cache: bool = False) -> LoadSummary:
        components = snapshot.components()
        return cls(
            tenant=snapshot.tenant,
            integration_procedures=len(snapshot.integration_procedures),
            omniscripts=len(snapshot.omniscripts),
            data_mappers=len(snapshot.data_mappers),
            total_components=snapshot.total_components,
            hierarchical_references=sum(len(c.referenced_by) for c in components),
            content_errors=sum(1 for c in components if c.content_error),
            timing=snapshot.timing,
            stats=snapshot.stats,
            from_cache=from_cache,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant": self.tenant,
            "integration_procedures": self.integration_procedures,
            "omniscripts": self.omniscripts,
            "data_mappers": self.data_mappers,
            "total_components": self.total_components,
            "hierarchical_references": self.hierarchical_references,
            "content_errors": self.content_errors,
            "timing": self.timing.to_dict(),
            "stats": self.stats.to_dict(),
            "from_cache": self.from_cache,
        }
