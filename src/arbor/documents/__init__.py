"""Document tree model and the in-memory tree store."""

from .tree_store import InMemoryTreeStore, TreeNode

__all__ = ["InMemoryTreeStore", "TreeNode"]
