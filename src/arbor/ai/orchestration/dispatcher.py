"""Command dispatcher: validates and applies assistant commands one at a time.

Each command maps to exactly one tree-mutation, generation or research call.
Validation always precedes the call so a rejected command leaves the tree
untouched, and collaborator faults are converted into failed outcomes rather
than propagated, so one bad command never aborts the rest of its batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Sequence, TypeVar

from ..commands import Command, CommandKind, CommandOutcome, GenerationType
from ..errors import CollaboratorError, ConversationError, ErrorCode, PreconditionError
from .protocols import (
    Confirmer,
    CurrentNodeRef,
    GenerationOptions,
    ResearchResult,
    Researcher,
    TextGenerator,
    TreeStore,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_FOLLOW_UP_LENGTH = 4_000

T = TypeVar("T")

# Positional parameter names required by each kind.
REQUIRED_PARAMETERS: dict[CommandKind, tuple[str, ...]] = {
    CommandKind.CREATE_NODE: ("title",),
    CommandKind.UPDATE_NODE: ("content",),
    CommandKind.DELETE_NODE: (),
    CommandKind.GENERATE_CONTENT: ("type", "prompt"),
    CommandKind.RESEARCH: ("query",),
}
# Parameters where an empty string is a meaningful value.
BLANK_ALLOWED_PARAMETERS: frozenset[str] = frozenset({"content"})


class CommandDispatcher:
    """Interprets commands against the tree store and generation collaborators."""

    def __init__(
        self,
        tree_store: TreeStore,
        *,
        generator: TextGenerator | None = None,
        researcher: Researcher | None = None,
        confirmer: Confirmer | None = None,
        generation_options: GenerationOptions | None = None,
        max_follow_up_length: int = DEFAULT_MAX_FOLLOW_UP_LENGTH,
    ) -> None:
        self._tree_store = tree_store
        self._generator = generator
        self._researcher = researcher
        self._confirmer = confirmer
        self._generation_options = generation_options or GenerationOptions()
        self._max_follow_up_length = max(1, int(max_follow_up_length))

    @property
    def generation_options(self) -> GenerationOptions:
        return self._generation_options

    async def execute(self, command: Command, selection: CurrentNodeRef) -> CommandOutcome:
        """Apply ``command`` and report its outcome; never raises for command faults."""

        started = time.perf_counter()
        label = command.describe() if isinstance(command, Command) else repr(command)
        try:
            self._check_parameters(command)
            outcome = await self._dispatch(command, selection)
        except ConversationError as exc:
            outcome = CommandOutcome.from_error(exc)
        except Exception as exc:
            LOGGER.exception("Command %s failed unexpectedly", label)
            outcome = CommandOutcome.failed(ErrorCode.COLLABORATOR_ERROR, f"{label} failed: {exc}")
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        if outcome.success:
            LOGGER.info("Command %s succeeded in %.1fms", label, elapsed_ms)
        else:
            LOGGER.warning(
                "Command %s failed (%s): %s",
                label,
                outcome.error_code,
                outcome.message,
            )
        return outcome

    async def _dispatch(self, command: Command, selection: CurrentNodeRef) -> CommandOutcome:
        match command.kind:
            case CommandKind.CREATE_NODE:
                return self._create_node(command, selection)
            case CommandKind.UPDATE_NODE:
                return self._update_node(command, selection)
            case CommandKind.DELETE_NODE:
                return await self._delete_node(selection)
            case CommandKind.GENERATE_CONTENT:
                return await self._generate_content(command, selection)
            case CommandKind.RESEARCH:
                return await self._research(command)
        raise AssertionError(f"Unhandled command kind: {command.kind!r}")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    @staticmethod
    def _check_parameters(command: Command) -> None:
        required = REQUIRED_PARAMETERS[command.kind]
        missing: list[str] = []
        for index, name in enumerate(required):
            if name in BLANK_ALLOWED_PARAMETERS:
                absent = index >= len(command.parameters)
            else:
                absent = command.param(index) is None
            if absent:
                missing.append(name)
        if missing:
            raise PreconditionError(
                error_code=ErrorCode.MISSING_PARAMETER,
                message=(
                    f"Precondition not met: {command.kind.value} requires "
                    f"{', '.join(missing)}"
                ),
                details={"missing": missing},
            )

    @staticmethod
    def _require_selection(command_kind: CommandKind, selection: CurrentNodeRef) -> str:
        node_id = selection.node_id
        if not node_id:
            raise PreconditionError(
                message=f"Precondition not met: {command_kind.value} requires a selected node",
            )
        return node_id

    # ------------------------------------------------------------------
    # Tree mutations
    # ------------------------------------------------------------------
    def _create_node(self, command: Command, selection: CurrentNodeRef) -> CommandOutcome:
        title = (command.param(0) or "").strip()
        parent_id = selection.node_id
        node = self._call_store("create node", self._tree_store.create_node, parent_id, title)
        selection.select(node.id)
        where = f"under {parent_id}" if parent_id else "at the root"
        return CommandOutcome.ok(f"Created node '{title}' {where}", node_id=node.id)

    def _update_node(self, command: Command, selection: CurrentNodeRef) -> CommandOutcome:
        node_id = self._require_selection(command.kind, selection)
        content = str(command.parameters[0] or "")
        self._apply_content(node_id, content)
        return CommandOutcome.ok(f"Updated content of node {node_id}", node_id=node_id)

    async def _delete_node(self, selection: CurrentNodeRef) -> CommandOutcome:
        node_id = self._require_selection(CommandKind.DELETE_NODE, selection)
        title = self._node_title(node_id)
        if not await self._confirm_delete(title):
            return CommandOutcome.failed(
                ErrorCode.OPERATION_CANCELLED,
                f"Deletion of '{title}' was cancelled",
                node_id=node_id,
            )
        deleted = self._call_store("delete node", self._tree_store.delete_node, node_id)
        if not deleted:
            raise CollaboratorError(message=f"Node '{title}' could not be deleted")
        selection.clear()
        return CommandOutcome.ok(f"Deleted node '{title}'", node_id=node_id)

    def _apply_content(self, node_id: str, content: str) -> None:
        self._call_store("update node", self._tree_store.update_node, node_id, content)

    # ------------------------------------------------------------------
    # Generation & research
    # ------------------------------------------------------------------
    async def _generate_content(self, command: Command, selection: CurrentNodeRef) -> CommandOutcome:
        raw_type = command.param(0) or ""
        generation_type = GenerationType.parse(raw_type)
        if generation_type is GenerationType.IMAGE:
            return CommandOutcome.failed(
                ErrorCode.UNSUPPORTED,
                "Image generation is not yet supported",
            )
        if generation_type is None:
            raise PreconditionError(
                error_code=ErrorCode.UNSUPPORTED,
                message=f"Precondition not met: unknown content type '{raw_type}'",
            )
        node_id = self._require_selection(command.kind, selection)
        if self._generator is None:
            raise CollaboratorError(message="No text generator is configured")
        prompt = command.param(1) or ""
        try:
            text = await self._generator.generate_text(prompt, self._generation_options)
        except Exception as exc:
            raise CollaboratorError(message=f"Text generation failed: {exc}") from exc
        self._apply_content(node_id, text)
        return CommandOutcome.ok(
            f"Generated {len(text)} characters for node {node_id}", node_id=node_id
        )

    async def _research(self, command: Command) -> CommandOutcome:
        query = (command.param(0) or "").strip()
        if self._researcher is None:
            raise CollaboratorError(message="No research service is configured")
        try:
            results = await self._researcher.research(query)
        except Exception as exc:
            raise CollaboratorError(message=f"Research failed: {exc}") from exc
        follow_up = self._format_research(query, results)
        return CommandOutcome.ok(
            f"Research returned {len(results)} result(s) for '{query}'",
            follow_up=follow_up,
        )

    def _format_research(self, query: str, results: Sequence[ResearchResult]) -> str:
        header = f'Research results for "{query}":'
        if results:
            body = "\n".join(result.format() for result in results)
        else:
            body = "(no results found)"
        text = f"{header}\n{body}"
        if len(text) > self._max_follow_up_length:
            text = text[: self._max_follow_up_length - 1] + "…"
        return text

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _call_store(self, action: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return func(*args)
        except ConversationError:
            raise
        except Exception as exc:
            raise CollaboratorError(
                message=f"Tree store could not {action}: {exc}",
                details={"action": action},
            ) from exc

    def _node_title(self, node_id: str) -> str:
        try:
            node = self._tree_store.get_node(node_id)
        except Exception:
            LOGGER.debug("Unable to resolve title for node %s", node_id, exc_info=True)
            node = None
        return getattr(node, "title", None) or node_id

    async def _confirm_delete(self, title: str) -> bool:
        if self._confirmer is None:
            LOGGER.debug("No confirmer configured; treating deletion as declined")
            return False
        try:
            answer = await asyncio.to_thread(
                self._confirmer.confirm,
                "Delete node",
                f"Delete '{title}' and everything beneath it?",
            )
        except Exception as exc:
            raise CollaboratorError(message=f"Confirmation prompt failed: {exc}") from exc
        return bool(answer)


__all__ = ["BLANK_ALLOWED_PARAMETERS", "CommandDispatcher", "REQUIRED_PARAMETERS"]
