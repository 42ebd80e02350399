"""Conversation orchestrator: the Idle/Processing state machine driving each turn.

A turn records the user's utterance, assembles context, awaits the assistant
gateway, records the reply and then executes the returned commands strictly
in order. Whatever happens inside the turn, the orchestrator is back in
``IDLE`` when :meth:`ConversationOrchestrator.submit` returns.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import TYPE_CHECKING

from ...chat.history import HistoryLedger
from ...chat.message_model import ConversationTurn, TurnRole
from ...ui.events import (
    CommandOutcomeReported,
    Event,
    EventBus,
    Handler,
    NodeSelectionChanged,
    ProcessingState,
    ProcessingStateChanged,
    TurnAppended,
    Unsubscribe,
)
from ..commands import Command, CommandKind, CommandOutcome
from ..context import ContextAssembler, ConversationContext
from ..errors import ConversationError, ErrorCode, GatewayError, ValidationError
from .dispatcher import CommandDispatcher
from .protocols import CurrentNodeRef, NodeSelection

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from ..gateway import AssistantGateway, AssistantReply

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 4_000
DEFAULT_MAX_RESEARCH_FOLLOW_UPS = 1


class ConversationOrchestrator:
    """Coordinates ledger, context assembly, gateway and dispatcher for each turn.

    At most one utterance is in flight: a submission while ``PROCESSING`` (or
    with an empty utterance) is a silent no-op. Every turn-level failure is
    recorded as exactly one System turn and the state always returns to
    ``IDLE``.
    """

    def __init__(
        self,
        gateway: "AssistantGateway",
        dispatcher: CommandDispatcher,
        assembler: ContextAssembler,
        ledger: HistoryLedger,
        *,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        max_research_follow_ups: int = DEFAULT_MAX_RESEARCH_FOLLOW_UPS,
        event_bus: EventBus[Event] | None = None,
    ) -> None:
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._assembler = assembler
        self._ledger = ledger
        self._max_message_length = max(1, int(max_message_length))
        self._max_research_follow_ups = max(0, int(max_research_follow_ups))
        self._events: EventBus[Event] = event_bus or EventBus()
        self._state = ProcessingState.IDLE
        self._state_lock = threading.Lock()
        self._last_command: Command | None = None

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------
    @property
    def state(self) -> ProcessingState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state is ProcessingState.PROCESSING

    @property
    def last_command(self) -> Command | None:
        return self._last_command

    @property
    def history(self) -> HistoryLedger:
        return self._ledger

    @property
    def events(self) -> EventBus[Event]:
        return self._events

    @property
    def max_message_length(self) -> int:
        return self._max_message_length

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def on_turn_appended(self, handler: Handler[TurnAppended]) -> Unsubscribe:
        return self._events.subscribe(TurnAppended, handler)

    def on_processing_state_changed(self, handler: Handler[ProcessingStateChanged]) -> Unsubscribe:
        return self._events.subscribe(ProcessingStateChanged, handler)

    def on_command_outcome(self, handler: Handler[CommandOutcomeReported]) -> Unsubscribe:
        return self._events.subscribe(CommandOutcomeReported, handler)

    def on_selection_changed(self, handler: Handler[NodeSelectionChanged]) -> Unsubscribe:
        return self._events.subscribe(NodeSelectionChanged, handler)

    # ------------------------------------------------------------------
    # Turn entry point
    # ------------------------------------------------------------------
    async def submit(self, utterance: str, selection: CurrentNodeRef | None = None) -> bool:
        """Run one conversation turn for ``utterance``.

        Args:
            utterance: Text typed by the user.
            selection: Reference to the currently selected node. Commands may
                move it (CreateNode) or clear it (DeleteNode).

        Returns:
            True when the utterance was accepted and a turn ran, False when it
            was rejected (already processing, empty, or too long).
        """

        node_ref: CurrentNodeRef = selection if selection is not None else NodeSelection()
        accepted, follow_up = await self._run_turn(utterance, node_ref)
        if not accepted:
            return False
        chain = 0
        while follow_up is not None:
            if chain >= self._max_research_follow_ups:
                LOGGER.info("Research follow-up limit (%s) reached", self._max_research_follow_ups)
                self._record(
                    TurnRole.SYSTEM,
                    "Research results were not sent back to the assistant: follow-up limit reached.",
                )
                break
            chain += 1
            accepted, follow_up = await self._run_turn(follow_up, node_ref)
            if not accepted:
                break
        return True

    async def _run_turn(
        self, utterance: str, selection: CurrentNodeRef
    ) -> tuple[bool, str | None]:
        """Execute a single turn.

        Returns:
            Whether the utterance was accepted, and the research follow-up
            message to submit next, if any.
        """

        text = utterance if isinstance(utterance, str) else ""
        if not text.strip():
            LOGGER.debug("Ignoring empty utterance")
            return False, None
        if not self._try_begin():
            LOGGER.debug("Ignoring submission while a turn is in flight")
            return False, None
        try:
            self._validate_length(text)
        except ValidationError as exc:
            self._finish()
            LOGGER.info("Rejected utterance: %s", exc.message)
            self._record(TurnRole.SYSTEM, exc.message)
            return False, None

        turn_id = uuid.uuid4().hex[:8]
        self._publish(ProcessingStateChanged(ProcessingState.PROCESSING))
        LOGGER.info("Turn %s started (%s chars, node=%s)", turn_id, len(text), selection.node_id)
        follow_ups: list[str] = []
        try:
            self._record(TurnRole.USER, text)
            self._assembler.begin_turn()
            context = self._assembler.assemble(selection.node_id, last_command=self._last_command)
            reply = await self._call_gateway(text, context)
            self._record(TurnRole.ASSISTANT, reply.reply_text)
            follow_ups = await self._run_commands(reply, selection)
            LOGGER.info("Turn %s completed (%s command(s))", turn_id, len(reply.commands))
        except ConversationError as exc:
            LOGGER.warning("Turn %s failed: %s", turn_id, exc)
            self._record(TurnRole.SYSTEM, f"Error: {exc.message}")
            follow_ups = []
        except Exception as exc:
            LOGGER.exception("Turn %s failed unexpectedly", turn_id)
            self._record(TurnRole.SYSTEM, f"Unexpected error: {exc}")
            follow_ups = []
        finally:
            self._finish()
            self._publish(ProcessingStateChanged(ProcessingState.IDLE))

        if not follow_ups:
            return True, None
        joined = "\n\n".join(follow_ups)
        return True, joined[: self._max_message_length]

    # ------------------------------------------------------------------
    # Turn steps
    # ------------------------------------------------------------------
    async def _call_gateway(self, text: str, context: ConversationContext) -> "AssistantReply":
        try:
            reply = await self._gateway.send(text, context)
        except GatewayError:
            raise
        except Exception as exc:
            raise GatewayError(message=f"The assistant request failed: {exc}") from exc
        if reply is None or not isinstance(getattr(reply, "reply_text", None), str):
            raise GatewayError(
                error_code=ErrorCode.MALFORMED_RESPONSE,
                message="The assistant returned an empty response",
            )
        commands = getattr(reply, "commands", None)
        if not isinstance(commands, (tuple, list)) or not all(
            isinstance(command, Command) for command in commands
        ):
            raise GatewayError(
                error_code=ErrorCode.MALFORMED_RESPONSE,
                message="The assistant returned a malformed command list",
            )
        return reply

    async def _run_commands(self, reply: "AssistantReply", selection: CurrentNodeRef) -> list[str]:
        follow_ups: list[str] = []
        commands = tuple(reply.commands or ())
        for index, command in enumerate(commands, start=1):
            before = selection.node_id
            outcome = await self._dispatcher.execute(command, selection)
            self._publish(CommandOutcomeReported(command=command, outcome=outcome))
            if selection.node_id != before:
                self._publish(NodeSelectionChanged(node_id=selection.node_id))
            if not outcome.success:
                self._record(TurnRole.SYSTEM, self._describe_failure(index, command, outcome))
            elif command.kind is CommandKind.RESEARCH and outcome.follow_up:
                follow_ups.append(outcome.follow_up)
        if commands:
            self._last_command = commands[-1]
        return follow_ups

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _try_begin(self) -> bool:
        with self._state_lock:
            if self._state is not ProcessingState.IDLE:
                return False
            self._state = ProcessingState.PROCESSING
            return True

    def _finish(self) -> None:
        with self._state_lock:
            self._state = ProcessingState.IDLE

    def _validate_length(self, text: str) -> None:
        if len(text) > self._max_message_length:
            raise ValidationError(
                error_code=ErrorCode.MESSAGE_TOO_LONG,
                message=(
                    f"Message too long ({len(text)} characters; "
                    f"the maximum is {self._max_message_length})."
                ),
            )

    def _record(self, role: TurnRole, text: str) -> ConversationTurn:
        turn = self._ledger.record(role, text)
        self._publish(TurnAppended(turn))
        return turn

    def _publish(self, event: Event) -> None:
        self._events.publish(event)

    @staticmethod
    def _describe_failure(index: int, command: Command, outcome: CommandOutcome) -> str:
        return f"Command {index} ({command.kind.value}) failed: {outcome.message}"


__all__ = [
    "ConversationOrchestrator",
    "DEFAULT_MAX_MESSAGE_LENGTH",
    "DEFAULT_MAX_RESEARCH_FOLLOW_UPS",
]
