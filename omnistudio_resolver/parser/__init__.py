"""Parser layer: raw records -> Component entities."""

from __future__ import annotations

import logging

from omnistudio_resolver.errors import ParseError
from omnistudio_resolver.models import Component, ComponentType
from omnistudio_resolver.parser.classifier import classify
from omnistudio_resolver.parser.properties import StepProperties, format_condition
from omnistudio_resolver.parser.step_parser import StepParser, parse_definition
from omnistudio_resolver.sources import RawRecord

logger = logging.getLogger(__name__)


def make_unique_id(type_: str | None, sub_type: str | None, name: str) -> str:
    """``type_subType`` when both are present, else the component name."""
    if type_ and sub_type:
        return f"{type_}_{sub_type}"
    return name


def parse_record(record: RawRecord, component_type: ComponentType) -> Component:
    """Turn one raw record into a Component.

    A malformed definition never raises: the error text is kept on
    ``content_error`` and the component is returned with no steps, so one
    broken record cannot abort loading its siblings.
    """
    if component_type is ComponentType.DATA_MAPPER:
        unique_id = record.name
    else:
        unique_id = make_unique_id(record.type, record.sub_type, record.name)

    component = Component(
        id=record.id,
        name=record.name,
        component_type=component_type,
        unique_id=unique_id,
        type=record.type,
        sub_type=record.sub_type,
        version=record.version,
        procedure_key=record.procedure_key,
        description=record.description,
        is_active=record.is_active,
    )

    if component_type is ComponentType.DATA_MAPPER:
        return component

    if not record.content:
        logger.debug("No definition content for %s '%s'", component_type.value, record.name)
        return component

    try:
        component.steps = parse_definition(record.content, component_type, record.name)
    except ParseError as e:
        logger.warning("Failed to parse %s '%s': %s", component_type.value, record.name, e)
        component.content_error = str(e)
        return component

    logger.debug(
        "Parsed %s '%s' (%s): %d top-level steps",
        component_type.value, record.name, unique_id, len(component.steps),
    )
    return component


__all__ = [
    "StepParser",
    "StepProperties",
    "classify",
    "format_condition",
    "make_unique_id",
    "parse_definition",
    "parse_record",
]
