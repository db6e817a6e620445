"""Step parser: raw definition JSON -> normalised :class:`Step` tree."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from omnistudio_resolver.errors import ParseError
from omnistudio_resolver.models import BlockKind, ComponentType, Step
from omnistudio_resolver.parser.classifier import (
    classify,
    element_array,
    is_procedure_step,
    node_children,
)
from omnistudio_resolver.parser.properties import StepProperties

logger = logging.getLogger(__name__)


def decode_definition(raw: str | bytes, container_name: str = "Unknown") -> dict[str, Any]:
    """Decode a definition blob; the root must be a JSON object."""
    try:
        root = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid definition JSON: {e}", container_name) from e
    if not isinstance(root, dict):
        raise ParseError(
            f"Definition root must be an object, got {type(root).__name__}",
            container_name,
        )
    return root


def parse_definition(
    raw: str | bytes,
    component_type: ComponentType,
    container_name: str = "Unknown",
) -> list[Step]:
    """Parse one component definition into its ordered top-level steps.

    Raises :class:`ParseError` if the blob is not a JSON object. A root
    without a ``children`` list simply has no steps.
    """
    root = decode_definition(raw, container_name)
    children = node_children(root)
    if not children:
        logger.debug("No children in definition of %s", container_name)
        return []
    return StepParser(component_type, container_name).parse_nodes(children)


def _flatten_groups(children: list[Any]) -> list[Any]:
    """Concatenate the eleArray of every element group, in order."""
    flattened: list[Any] = []
    for group in children:
        items = element_array(group)
        if items:
            flattened.extend(items)
    return flattened


class StepParser:
    """Walks the vendor node tree of one component."""

    def __init__(self, component_type: ComponentType, container_name: str = "Unknown"):
        self.component_type = component_type
        self.container_name = container_name

    def parse_nodes(self, nodes: list[Any], level: int = 0) -> list[Step]:
        return [self.parse_node(n, level) for n in nodes if isinstance(n, Mapping)]

    def parse_node(self, node: Mapping[str, Any], level: int = 0) -> Step:
        props = StepProperties.from_node(node)
        kind = classify(node, self.component_type, props)
        children = node_children(node)
        name = node.get("name")
        type_ = node.get("type")

        step = Step(
            name=name if isinstance(name, str) and name else "Unnamed Step",
            type=type_ if isinstance(type_, str) else "",
            block_kind=kind,
            level=level,
            has_children=bool(children),
            execution_condition=props.execution_condition,
            show_condition=props.show_condition,
            label=props.label,
            description=props.description,
            bundle=props.bundle,
            integration_procedure_key=props.integration_procedure_key,
            extra_properties=props.extra,
        )

        if props.integration_procedure_key:
            step.referenced_ip = props.integration_procedure_key
            if kind is BlockKind.NONE:
                step.block_kind = BlockKind.IP_REFERENCE
                step.has_children = True
            else:
                step.has_ip_reference = True

        if (
            self.component_type is ComponentType.INTEGRATION_PROCEDURE
            and "remote" in step.type.lower()
        ):
            step.remote_class = props.remote_class
            step.remote_method = props.remote_method

        if step.block_kind is not BlockKind.NONE:
            step.block_condition = props.condition
            step.block_iterator = props.iterator
            step.block_cache_key = props.cache_key

        body = self._collect_children(node, step.block_kind, children)
        if body:
            parsed = self.parse_nodes(body, level + 1)
            if is_procedure_step(node, self.component_type) or step.block_kind is BlockKind.NONE:
                step.sub_steps = parsed
            else:
                step.block_steps = parsed

        if step.block_kind is BlockKind.CONDITIONAL and not step.block_steps:
            step.empty_body = True
            logger.debug(
                "Conditional '%s' in %s has an empty body", step.name, self.container_name,
            )

        return step

    def _collect_children(
        self, node: Mapping[str, Any], kind: BlockKind, children: list[Any],
    ) -> list[Any]:
        if not children:
            return []

        if is_procedure_step(node, self.component_type) or kind is BlockKind.BLOCK:
            return _flatten_groups(children)

        first_group = element_array(children[0])
        if first_group is not None:
            # Conditionals and other grouped nodes use the first group only
            return first_group

        return children
