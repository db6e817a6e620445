"""Omnistudio metadata hierarchy resolver."""

__version__ = "0.1.0"
