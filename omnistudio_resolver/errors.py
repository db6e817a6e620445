"""Exception types raised by the resolver."""

from __future__ import annotations


class ResolverError(Exception):
    """Base class for resolver errors."""


class ParseError(ResolverError, ValueError):
    """A component definition could not be decoded into a step tree."""

    def __init__(self, message: str, component_name: str | None = None):
        super().__init__(message)
        self.component_name = component_name


class MetadataSourceError(ResolverError):
    """The metadata source failed to list components."""


class ReloadError(ResolverError):
    """A full reload could not run because no components could be listed."""
