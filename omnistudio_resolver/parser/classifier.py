"""Block classifier: assign a control-flow kind to one definition node.

Rules are checked in a fixed priority order and the first match wins.
Structural checks run before keyword matching so that ordinary container
blocks holding several element groups are not mistaken for conditionals.
"""

from __future__ import annotations

from typing import Any, Mapping

from omnistudio_resolver.models import BlockKind, ComponentType
from omnistudio_resolver.parser.properties import StepProperties

_LOOP_TYPE_WORDS = ("loop", "for", "while")
_LOOP_NAME_WORDS = ("loop", "foreach", "for each")
_CACHE_WORDS = ("cache",)


def node_children(node: Mapping[str, Any]) -> list[Any]:
    children = node.get("children")
    return children if isinstance(children, list) else []


def element_array(child: Any) -> list[Any] | None:
    """The nested ``eleArray`` list of an element group, if it has one."""
    if isinstance(child, Mapping) and isinstance(child.get("eleArray"), list):
        return child["eleArray"]
    return None


def is_procedure_step(node: Mapping[str, Any], component_type: ComponentType) -> bool:
    """OmniScript ``Step`` wrappers group UI elements; they are never blocks."""
    return component_type is ComponentType.OMNISCRIPT and node.get("type") == "Step"


def _text(node: Mapping[str, Any], key: str) -> str:
    value = node.get(key)
    return value.lower() if isinstance(value, str) else ""


def classify(
    node: Mapping[str, Any],
    component_type: ComponentType,
    props: StepProperties | None = None,
) -> BlockKind:
    type_ = _text(node, "type")
    name = _text(node, "name")
    if not type_ and not name:
        return BlockKind.NONE

    children = node_children(node)

    # 1. Structural: first element group carries a non-empty eleArray
    if children and element_array(children[0]):
        container_group = type_ == "block" and len(children) > 1
        if not is_procedure_step(node, component_type) and not container_group:
            return BlockKind.CONDITIONAL

    # 2-3. Conditional keywords
    if "if" in name or "conditional" in type_:
        return BlockKind.CONDITIONAL

    # 4. Generic grouping block
    if type_ == "block" and children:
        return BlockKind.BLOCK

    # 5-6. Loop / cache keywords
    if any(w in type_ for w in _LOOP_TYPE_WORDS) or any(w in name for w in _LOOP_NAME_WORDS):
        return BlockKind.LOOP
    if any(w in type_ or w in name for w in _CACHE_WORDS):
        return BlockKind.CACHE

    # 7. Property markers
    if props is None:
        props = StepProperties.from_node(node)
    if props.has_loop_marker:
        return BlockKind.LOOP
    if props.has_cache_marker:
        return BlockKind.CACHE
    if props.has_condition_marker and not children:
        return BlockKind.CONDITIONAL

    return BlockKind.NONE
