"""Normalise a node's vendor property bag (``propSetMap``) into fixed fields.

Vendor definitions expose dozens of optional, inconsistently named keys. The
known ones are read once here, with type checks; everything else is kept only
as raw JSON text for diagnostics.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

# Field -> vendor keys, first present non-empty value wins
_ALIASES: dict[str, tuple[str, ...]] = {
    "label": ("label",),
    "description": ("description",),
    "bundle": ("bundle",),
    "integration_procedure_key": ("integrationProcedureKey",),
    "execution_condition": ("executionConditionalFormula",),
    "condition": ("condition", "loopCondition"),
    "iterator": ("iterator", "loopList"),
    "cache_key": ("cacheKey",),
    "remote_class": ("remoteClass",),
    "remote_method": ("remoteMethod",),
}

_LOOP_MARKERS = ("loopCondition", "iterator")
_CACHE_MARKERS = ("cacheKey", "cacheTimeout")
_CONDITION_MARKERS = ("condition", "executionConditionalFormula")

_KNOWN_KEYS = frozenset(
    {key for keys in _ALIASES.values() for key in keys}
    | set(_LOOP_MARKERS) | set(_CACHE_MARKERS) | set(_CONDITION_MARKERS) | {"show"}
)

# Values the vendor UI writes for an unset reference
_EMPTY_VALUES = frozenset({"", "undefined", "null"})


def _string(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return None if value in _EMPTY_VALUES else value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _present(props: Mapping[str, Any], keys: tuple[str, ...]) -> bool:
    for key in keys:
        value = props.get(key)
        if value not in (None, False, "", [], {}):
            return True
    return False


def format_condition(condition: Any) -> str | None:
    """Render a vendor ``show`` condition as readable text."""
    if condition is None:
        return None
    if isinstance(condition, str):
        return condition or None
    group = condition.get("group") if isinstance(condition, Mapping) else None
    if isinstance(group, Mapping) and isinstance(group.get("rules"), list):
        operator = group.get("operator") or "AND"
        parts = []
        for rule in group["rules"]:
            if not isinstance(rule, Mapping):
                continue
            parts.append(f"{rule.get('field')} {rule.get('condition')} '{rule.get('data')}'")
        return f" {operator} ".join(parts) or None
    try:
        return json.dumps(condition, sort_keys=True)
    except (TypeError, ValueError):
        return "Complex condition"


@dataclass(frozen=True)
class StepProperties:
    label: str | None = None
    description: str | None = None
    bundle: str | None = None
    integration_procedure_key: str | None = None
    execution_condition: str | None = None
    show_condition: str | None = None
    condition: str | None = None
    iterator: str | None = None
    cache_key: str | None = None
    remote_class: str | None = None
    remote_method: str | None = None
    has_loop_marker: bool = False
    has_cache_marker: bool = False
    has_condition_marker: bool = False
    extra: str | None = None

    @classmethod
    def from_node(cls, node: Mapping[str, Any]) -> StepProperties:
        props = node.get("propSetMap")
        if not isinstance(props, Mapping):
            return cls()

        values: dict[str, str | None] = {}
        for field_name, keys in _ALIASES.items():
            values[field_name] = None
            for key in keys:
                value = _string(props.get(key))
                if value is not None:
                    values[field_name] = value
                    break

        unknown = {k: v for k, v in props.items() if k not in _KNOWN_KEYS}
        extra = None
        if unknown:
            extra = json.dumps(unknown, sort_keys=True, default=str)

        return cls(
            show_condition=format_condition(props.get("show")),
            has_loop_marker=_present(props, _LOOP_MARKERS),
            has_cache_marker=_present(props, _CACHE_MARKERS),
            has_condition_marker=_present(props, _CONDITION_MARKERS),
            extra=extra,
            **values,
        )
