"""Metadata sources: where raw component records come from.

The vendor platform is an external collaborator. A source only has to list
the records of one component type and fetch a single record by name; both
return :class:`RawRecord` values whose ``content`` is the untouched
definition JSON text.
"""

from __future__ import annotations

import abc
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from omnistudio_resolver.errors import MetadataSourceError
from omnistudio_resolver.models import ComponentType

logger = logging.getLogger(__name__)

# Normalised vendor field name -> RawRecord attribute
_FIELD_ALIASES = {
    "id": "id",
    "name": "name",
    "type": "type",
    "subtype": "sub_type",
    "version": "version",
    "procedurekey": "procedure_key",
    "description": "description",
    "isactive": "is_active",
    "content": "content",
}


def _normalize_field(key: str) -> str:
    """``vlocity_cmt__SubType__c`` -> ``subtype``; ``SubType`` -> ``subtype``."""
    for suffix in ("__c", "__r"):
        if key.endswith(suffix):
            key = key[: -len(suffix)]
            break
    if "__" in key:
        key = key.rsplit("__", 1)[1]
    return key.replace("_", "").lower()


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _sequence(definition: Mapping[str, Any]) -> float:
    for key, value in definition.items():
        if _normalize_field(key) == "sequence":
            try:
                return float(value)
            except (TypeError, ValueError):
                return 0.0
    return 0.0


def _definition_content(value: Any) -> str | None:
    """Pick the first (lowest sequence) definition's content from a relation."""
    if isinstance(value, Mapping):
        value = value.get("records")
    if not isinstance(value, list):
        return None
    definitions = [d for d in value if isinstance(d, Mapping)]
    for definition in sorted(definitions, key=_sequence):
        for key, content in definition.items():
            if _normalize_field(key) == "content" and content is not None:
                return _text(content)
    return None


@dataclass
class RawRecord:
    """One component record as returned by the remote platform."""
    name: str
    id: str | None = None
    type: str | None = None
    sub_type: str | None = None
    version: str | None = None
    procedure_key: str | None = None
    description: str | None = None
    is_active: bool = True
    content: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RawRecord:
        """Build a record from plain or namespaced vendor keys."""
        values: dict[str, Any] = {}
        content = None
        for key, value in data.items():
            if key == "attributes":
                continue
            normalized = _normalize_field(key)
            attr = _FIELD_ALIASES.get(normalized)
            if attr == "content":
                content = _text(value)
            elif attr and attr not in values:
                values[attr] = value
            elif normalized.endswith("definitions") and content is None:
                content = _definition_content(value)

        name = _text(values.get("name"))
        if not name:
            raise ValueError(f"Record has no name: {sorted(data)[:8]}")

        is_active = values.get("is_active", True)
        return cls(
            name=name,
            id=_text(values.get("id")),
            type=_text(values.get("type")) or None,
            sub_type=_text(values.get("sub_type")) or None,
            version=_text(values.get("version")),
            procedure_key=_text(values.get("procedure_key")) or None,
            description=_text(values.get("description")),
            is_active=bool(is_active) if is_active is not None else True,
            content=content,
        )

    def matches(self, key: str) -> bool:
        return key in (self.name, self.procedure_key)


def _version_key(record: RawRecord) -> float:
    try:
        return float(record.version or 0)
    except ValueError:
        return 0.0


def latest_version(records: Iterable[RawRecord], key: str) -> RawRecord | None:
    """Highest-version record whose name or procedure key equals ``key``."""
    matches = [r for r in records if r.matches(key)]
    if not matches:
        return None
    return max(matches, key=_version_key)


class MetadataSource(abc.ABC):
    """Abstract access to the remote metadata platform."""

    @abc.abstractmethod
    def list_components(self, component_type: ComponentType) -> list[RawRecord]:
        """Return every active record of ``component_type``."""

    @abc.abstractmethod
    def fetch_component_definition(
        self, component_type: ComponentType, name: str,
    ) -> RawRecord | None:
        """Return one record by name (or procedure key), or ``None``."""


class InMemorySource(MetadataSource):
    """Source backed by records held in memory; counts every call."""

    def __init__(self, records: Mapping[ComponentType, Iterable[RawRecord]] | None = None):
        self._records: dict[ComponentType, list[RawRecord]] = {
            ct: list((records or {}).get(ct, [])) for ct in ComponentType
        }
        self._lock = threading.Lock()
        self.list_calls = 0
        self.fetch_calls = 0

    def add(self, component_type: ComponentType, record: RawRecord) -> None:
        with self._lock:
            self._records[component_type].append(record)

    def list_components(self, component_type: ComponentType) -> list[RawRecord]:
        with self._lock:
            self.list_calls += 1
            return list(self._records[component_type])

    def fetch_component_definition(
        self, component_type: ComponentType, name: str,
    ) -> RawRecord | None:
        with self._lock:
            self.fetch_calls += 1
            return latest_version(self._records[component_type], name)


class JsonDirectorySource(MetadataSource):
    """Source reading platform exports from ``<root>/<component-type>.json``.

    Each file holds a JSON list of records, or an object with a ``records``
    list (the platform's query response shape). A missing file means the org
    has no components of that type.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, component_type: ComponentType) -> Path:
        return self.root / f"{component_type.value}.json"

    def list_components(self, component_type: ComponentType) -> list[RawRecord]:
        if not self.root.is_dir():
            raise MetadataSourceError(f"Source directory not found: {self.root}")

        path = self._path(component_type)
        if not path.exists():
            logger.debug("No %s export at %s", component_type.value, path)
            return []

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise MetadataSourceError(f"Cannot read {path}: {e}") from e

        if isinstance(data, Mapping):
            data = data.get("records", [])
        if not isinstance(data, list):
            raise MetadataSourceError(f"{path} must contain a list of records")

        records: list[RawRecord] = []
        for entry in data:
            if not isinstance(entry, Mapping):
                continue
            try:
                records.append(RawRecord.from_mapping(entry))
            except ValueError as e:
                logger.warning("Skipping record in %s: %s", path.name, e)
        return [r for r in records if r.is_active]

    def fetch_component_definition(
        self, component_type: ComponentType, name: str,
    ) -> RawRecord | None:
        return latest_version(self.list_components(component_type), name)
