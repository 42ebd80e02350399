"""Collaborator contracts consumed by the conversation engine.

The engine never reaches for a concrete store, model client or dialog; the
presentation layer wires implementations of these protocols in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class TreeNodeLike(Protocol):
    """Minimal view of a node returned by the tree store."""

    id: str
    title: str


class TreeStore(Protocol):
    """Tree-mutation collaborator backing the document."""

    def get_node(self, node_id: str) -> TreeNodeLike | None:
        ...

    def create_node(self, parent_id: str | None, title: str) -> TreeNodeLike:
        ...

    def update_node(self, node_id: str, content: str) -> None:
        ...

    def delete_node(self, node_id: str) -> bool:
        ...

    def get_node_summary(self, node_id: str) -> str | None:
        ...


@dataclass(slots=True, frozen=True)
class GenerationOptions:
    """Sampling options forwarded to the generation collaborator."""

    temperature: float = 0.7
    max_tokens: int = 1_000


class TextGenerator(Protocol):
    """Generation collaborator producing prose for a prompt."""

    async def generate_text(self, prompt: str, options: GenerationOptions) -> str:
        ...


@dataclass(slots=True, frozen=True)
class ResearchResult:
    """One hit returned by the research collaborator."""

    title: str
    snippet: str = ""
    url: str | None = None

    def format(self) -> str:
        line = f"- {self.title}"
        if self.snippet and self.snippet != self.title:
            line += f": {self.snippet}"
        if self.url:
            line += f" ({self.url})"
        return line


class Researcher(Protocol):
    """Research collaborator answering free-form queries."""

    async def research(self, query: str) -> Sequence[ResearchResult]:
        ...


class Confirmer(Protocol):
    """Yes/no prompt shown before destructive commands.

    ``confirm`` may block; the dispatcher runs it in a worker thread.
    """

    def confirm(self, title: str, message: str) -> bool:
        ...


class CurrentNodeRef(Protocol):
    """Mutable reference to the node the user currently has selected."""

    @property
    def node_id(self) -> str | None:
        ...

    def select(self, node_id: str | None) -> None:
        ...

    def clear(self) -> None:
        ...


class NodeSelection:
    """Plain :class:`CurrentNodeRef` implementation shared with the presentation layer."""

    __slots__ = ("_node_id",)

    def __init__(self, node_id: str | None = None) -> None:
        self._node_id = node_id

    @property
    def node_id(self) -> str | None:
        return self._node_id

    def select(self, node_id: str | None) -> None:
        self._node_id = node_id

    def clear(self) -> None:
        self.select(None)

    def __repr__(self) -> str:
        return f"NodeSelection(node_id={self._node_id!r})"


__all__ = [
    "Confirmer",
    "CurrentNodeRef",
    "GenerationOptions",
    "NodeSelection",
    "ResearchResult",
    "Researcher",
    "TextGenerator",
    "TreeNodeLike",
    "TreeStore",
]
