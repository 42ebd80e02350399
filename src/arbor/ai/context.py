"""Per-turn context assembly for assistant requests.

The context is rebuilt at the start of every turn from the ledger and the
externally owned node selection; nothing here is persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..chat.history import HistoryLedger
from ..chat.message_model import ConversationTurn
from .commands import Command

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from .orchestration.protocols import TreeStore

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_TURNS = 5


@dataclass(slots=True, frozen=True)
class ConversationContext:
    """Snapshot handed to the assistant gateway alongside the utterance.

    Attributes:
        current_node_id: Node selected when the turn started, if any.
        current_node_summary: Summary of that node, absent when unavailable.
        last_command: Final command executed by the previous turn.
        recent_history: Most recent ledger turns in insertion order.
    """

    current_node_id: str | None = None
    current_node_summary: str | None = None
    last_command: Command | None = None
    recent_history: tuple[ConversationTurn, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        """Serialize the context as the JSON payload embedded in the request."""

        return {
            "current_node_id": self.current_node_id,
            "current_node_summary": self.current_node_summary,
            "last_command": self.last_command.to_dict() if self.last_command else None,
            "recent_history": [
                {"role": turn.role.value, "text": turn.text} for turn in self.recent_history
            ],
        }


class ContextAssembler:
    """Builds :class:`ConversationContext` objects for each turn."""

    def __init__(
        self,
        tree_store: TreeStore,
        ledger: HistoryLedger,
        *,
        history_turns: int = DEFAULT_HISTORY_TURNS,
    ) -> None:
        self._tree_store = tree_store
        self._ledger = ledger
        self._history_turns = max(0, int(history_turns))
        self._summary_cache: dict[str, str | None] = {}

    @property
    def history_turns(self) -> int:
        return self._history_turns

    def begin_turn(self) -> None:
        """Drop summaries cached by the previous turn."""

        self._summary_cache.clear()

    def assemble(
        self,
        current_node_id: str | None,
        *,
        last_command: Command | None = None,
    ) -> ConversationContext:
        summary = self._summary_for(current_node_id) if current_node_id else None
        return ConversationContext(
            current_node_id=current_node_id,
            current_node_summary=summary,
            last_command=last_command,
            recent_history=tuple(self._ledger.recent(self._history_turns)),
        )

    def _summary_for(self, node_id: str) -> str | None:
        if node_id in self._summary_cache:
            return self._summary_cache[node_id]
        try:
            summary = self._tree_store.get_node_summary(node_id)
        except Exception as exc:
            # Context assembly never blocks the conversation on a store fault.
            LOGGER.warning("Node summary lookup failed for %s: %s", node_id, exc)
            summary = None
        if summary is not None and not str(summary).strip():
            summary = None
        self._summary_cache[node_id] = summary
        return summary


__all__ = ["ContextAssembler", "ConversationContext", "DEFAULT_HISTORY_TURNS"]
