"""Console presentation layer driving the conversation engine from a terminal."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Awaitable, Callable, TextIO

from ..ai.orchestration.orchestrator import ConversationOrchestrator
from ..ai.orchestration.protocols import NodeSelection
from ..chat.message_model import TurnRole
from ..documents.tree_store import InMemoryTreeStore
from .events import CommandOutcomeReported, ProcessingState, ProcessingStateChanged, TurnAppended

LOGGER = logging.getLogger(__name__)

InputReader = Callable[[str], Awaitable[str]]

_ROLE_LABELS = {
    TurnRole.USER: "you",
    TurnRole.ASSISTANT: "assistant",
    TurnRole.SYSTEM: "system",
}
_HELP = """Commands:
  /tree            show the document tree
  /select <id>     select a node (omit id to clear the selection)
  /clear           forget the conversation history
  /save            save the document now
  /help            show this help
  /quit            exit
Anything else is sent to the assistant."""


class ConsoleConfirmer:
    """Blocking yes/no prompt on stdin; the dispatcher calls it from a worker thread."""

    def __init__(self, *, stream: TextIO | None = None, reader: Callable[[str], str] = input) -> None:
        self._stream = stream or sys.stdout
        self._reader = reader

    def confirm(self, title: str, message: str) -> bool:
        self._stream.write(f"\n[{title}] {message} [y/N] ")
        self._stream.flush()
        try:
            answer = self._reader("")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}


async def _default_reader(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


class ConsoleSession:
    """Renders engine events as text and forwards typed lines to the orchestrator."""

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        store: InMemoryTreeStore,
        *,
        selection: NodeSelection | None = None,
        stream: TextIO | None = None,
        reader: InputReader | None = None,
        save: Callable[[], Awaitable[bool]] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._selection = selection or NodeSelection()
        self._stream = stream or sys.stdout
        self._reader = reader or _default_reader
        self._save = save
        self._unsubscribers = [
            orchestrator.on_turn_appended(self._on_turn_appended),
            orchestrator.on_processing_state_changed(self._on_state_changed),
            orchestrator.on_command_outcome(self._on_command_outcome),
        ]

    @property
    def selection(self) -> NodeSelection:
        return self._selection

    async def run(self) -> None:
        self._write("Arbor assistant ready. Type /help for commands.")
        while True:
            try:
                line = await self._reader(self._prompt())
            except (EOFError, KeyboardInterrupt):
                self._write("")
                break
            if not await self.handle_line(line):
                break
        self.close()

    async def handle_line(self, line: str) -> bool:
        """Process one line of input; returns False when the session should end."""

        text = line.strip()
        if not text:
            return True
        if text.startswith("/"):
            return await self._handle_command(text)
        await self._orchestrator.submit(line, self._selection)
        return True

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def _handle_command(self, text: str) -> bool:
        name, _, argument = text.partition(" ")
        argument = argument.strip()
        if name in {"/quit", "/exit"}:
            return False
        if name == "/help":
            self._write(_HELP)
        elif name == "/tree":
            self._render_tree()
        elif name == "/select":
            self._select(argument or None)
        elif name == "/clear":
            self._orchestrator.history.clear()
            self._write("Conversation history cleared.")
        elif name == "/save":
            if self._save is None:
                self._write("No document path configured.")
            elif await self._save():
                self._write("Document saved.")
            else:
                self._write("Nothing to save.")
        else:
            LOGGER.debug("Unknown console command %s", name)
            self._write(f"Unknown command {name}. Type /help for commands.")
        return True

    def _select(self, node_id: str | None) -> None:
        if node_id is not None and node_id not in self._store:
            self._write(f"No node with id {node_id}.")
            return
        self._selection.select(node_id)
        if node_id is None:
            self._write("Selection cleared.")
        else:
            self._write(f"Selected {' > '.join(self._store.path_titles(node_id))}.")

    def _render_tree(self) -> None:
        entries = list(self._store.walk())
        if not entries:
            self._write("(empty document)")
            return
        for depth, node in entries:
            marker = "*" if node.id == self._selection.node_id else " "
            self._write(f"{marker} {'  ' * depth}{node.title} [{node.id}]")

    def _prompt(self) -> str:
        node_id = self._selection.node_id
        if node_id and node_id in self._store:
            return f"[{self._store.path_titles(node_id)[-1]}] > "
        return "> "

    def _on_turn_appended(self, event: TurnAppended) -> None:
        turn = event.turn
        if turn.role is TurnRole.USER:
            return
        self._write(f"{_ROLE_LABELS[turn.role]}: {turn.text}")

    def _on_state_changed(self, event: ProcessingStateChanged) -> None:
        if event.state is ProcessingState.PROCESSING:
            self._write("…thinking")

    def _on_command_outcome(self, event: CommandOutcomeReported) -> None:
        if event.outcome.success:
            self._write(f"  ✓ {event.outcome.message}")

    def _write(self, text: str) -> None:
        self._stream.write(text + "\n")
        self._stream.flush()


__all__ = ["ConsoleConfirmer", "ConsoleSession"]
