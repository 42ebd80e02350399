"""In-memory document tree with JSON snapshot persistence."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping

from ..utils.file_io import read_json, write_json

LOGGER = logging.getLogger(__name__)

_FORMAT_VERSION = 1
_SUMMARY_EXCERPT_CHARS = 400
_SUMMARY_MAX_CHILDREN = 12


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_node_id() -> str:
    return f"n-{uuid.uuid4().hex[:10]}"


@dataclass(slots=True)
class TreeNode:
    """A titled unit of the document tree."""

    id: str
    title: str
    parent_id: str | None = None
    content: str = ""
    children: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "parent_id": self.parent_id,
            "content": self.content,
            "children": list(self.children),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TreeNode":
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title", "")),
            parent_id=payload.get("parent_id"),
            content=str(payload.get("content", "")),
            children=[str(child) for child in payload.get("children", [])],
            created_at=_parse_timestamp(payload.get("created_at")),
            updated_at=_parse_timestamp(payload.get("updated_at")),
        )


class InMemoryTreeStore:
    """Thread-safe tree store used by the editor and the conversation engine.

    All mutations run under a re-entrant lock so a background auto-save can
    snapshot the tree while a conversation turn edits it.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, TreeNode] = {}
        self._roots: list[str] = []
        self._lock = threading.RLock()
        self._revision = 0
        self._saved_revision = 0

    # ------------------------------------------------------------------
    # TreeStore contract
    # ------------------------------------------------------------------
    def get_node(self, node_id: str) -> TreeNode | None:
        with self._lock:
            return self._nodes.get(node_id)

    def create_node(self, parent_id: str | None, title: str) -> TreeNode:
        clean_title = (title or "").strip()
        if not clean_title:
            raise ValueError("Node title must not be empty")
        with self._lock:
            if parent_id is not None and parent_id not in self._nodes:
                raise KeyError(f"Unknown parent node: {parent_id}")
            node = TreeNode(id=_new_node_id(), title=clean_title, parent_id=parent_id)
            self._nodes[node.id] = node
            if parent_id is None:
                self._roots.append(node.id)
            else:
                self._nodes[parent_id].children.append(node.id)
            self._touch()
        LOGGER.debug("Created node %s (%r) under %s", node.id, clean_title, parent_id or "<root>")
        return node

    def update_node(self, node_id: str, content: str) -> None:
        with self._lock:
            node = self._require(node_id)
            node.content = content
            node.updated_at = _utcnow()
            self._touch()

    def delete_node(self, node_id: str) -> bool:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return False
            siblings = self._roots if node.parent_id is None else self._nodes[node.parent_id].children
            if node_id in siblings:
                siblings.remove(node_id)
            removed = 0
            for descendant in list(self._iter_subtree(node_id)):
                self._nodes.pop(descendant.id, None)
                removed += 1
            self._touch()
        LOGGER.debug("Deleted node %s (%s node(s) removed)", node_id, removed)
        return True

    def get_node_summary(self, node_id: str) -> str | None:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return None
            lines = [f"Title: {node.title}", f"Path: {' > '.join(self.path_titles(node_id))}"]
            child_titles = [self._nodes[child].title for child in node.children if child in self._nodes]
            if child_titles:
                shown = child_titles[:_SUMMARY_MAX_CHILDREN]
                extra = len(child_titles) - len(shown)
                suffix = f" (+{extra} more)" if extra > 0 else ""
                lines.append(f"Children: {', '.join(shown)}{suffix}")
            content = " ".join(node.content.split())
            if content:
                if len(content) > _SUMMARY_EXCERPT_CHARS:
                    content = content[: _SUMMARY_EXCERPT_CHARS - 1] + "…"
                lines.append(f"Content: {content}")
            else:
                lines.append("Content: (empty)")
            return "\n".join(lines)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def root_ids(self) -> list[str]:
        with self._lock:
            return list(self._roots)

    def children(self, node_id: str) -> list[TreeNode]:
        with self._lock:
            node = self._require(node_id)
            return [self._nodes[child] for child in node.children if child in self._nodes]

    def path_titles(self, node_id: str) -> list[str]:
        with self._lock:
            titles: list[str] = []
            current = self._nodes.get(node_id)
            while current is not None:
                titles.append(current.title)
                current = self._nodes.get(current.parent_id) if current.parent_id else None
            return list(reversed(titles))

    def walk(self) -> Iterator[tuple[int, TreeNode]]:
        """Yield ``(depth, node)`` pairs in depth-first document order."""

        with self._lock:
            ordered: list[tuple[int, TreeNode]] = []
            stack = [(0, root) for root in reversed(self._roots)]
            while stack:
                depth, node_id = stack.pop()
                node = self._nodes.get(node_id)
                if node is None:
                    continue
                ordered.append((depth, node))
                stack.extend((depth + 1, child) for child in reversed(node.children))
        return iter(ordered)

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._nodes

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    @property
    def is_dirty(self) -> bool:
        return self._revision != self._saved_revision

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": _FORMAT_VERSION,
                "roots": list(self._roots),
                "nodes": [node.to_dict() for _, node in self.walk()],
            }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "InMemoryTreeStore":
        store = cls()
        for entry in payload.get("nodes", []):
            if isinstance(entry, Mapping):
                node = TreeNode.from_dict(entry)
                store._nodes[node.id] = node
        store._roots = [root for root in payload.get("roots", []) if root in store._nodes]
        for node in store._nodes.values():
            node.children = [child for child in node.children if child in store._nodes]
        return store

    def save(self, path: Path | str) -> Path:
        with self._lock:
            payload = self.to_dict()
            revision = self._revision
        target = write_json(path, payload)
        self._saved_revision = revision
        LOGGER.debug("Saved %s node(s) to %s", len(payload["nodes"]), target)
        return target

    @classmethod
    def load(cls, path: Path | str) -> "InMemoryTreeStore":
        payload = read_json(path)
        if not isinstance(payload, Mapping):
            raise ValueError(f"Document file {path} does not contain a JSON object")
        version = payload.get("version")
        if version != _FORMAT_VERSION:
            LOGGER.warning("Document %s has format version %s; expected %s", path, version, _FORMAT_VERSION)
        return cls.from_dict(payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require(self, node_id: str) -> TreeNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node: {node_id}")
        return node

    def _iter_subtree(self, node_id: str) -> Iterator[TreeNode]:
        stack = [node_id]
        while stack:
            current = self._nodes.get(stack.pop())
            if current is None:
                continue
            yield current
            stack.extend(current.children)

    def _touch(self) -> None:
        self._revision += 1


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            LOGGER.debug("Ignoring invalid timestamp %r", value)
    return _utcnow()


__all__ = ["InMemoryTreeStore", "TreeNode"]
