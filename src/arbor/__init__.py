"""Arbor: a tree-structured document editor with an embedded writing assistant."""

__version__ = "0.1.0"
