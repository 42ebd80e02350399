"""Typed events published by the conversation engine.

The presentation layer subscribes to these instead of wiring handlers onto
individual controls, so the core has no dependency on any UI toolkit.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Generic, TypeVar
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from ..ai.commands import Command, CommandOutcome
    from ..chat.message_model import ConversationTurn

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]
Unsubscribe = Callable[[], None]


class ProcessingState(str, Enum):
    """Whether the orchestrator currently has an utterance in flight."""

    IDLE = "idle"
    PROCESSING = "processing"


@dataclass(slots=True)
class Event:
    """Base class for all engine events."""


@dataclass(slots=True)
class TurnAppended(Event):
    """A turn was recorded in the history ledger."""

    turn: "ConversationTurn"


@dataclass(slots=True)
class ProcessingStateChanged(Event):
    """The orchestrator moved between Idle and Processing."""

    state: ProcessingState


@dataclass(slots=True)
class CommandOutcomeReported(Event):
    """A command returned by the assistant finished executing."""

    command: "Command"
    outcome: "CommandOutcome"


@dataclass(slots=True)
class NodeSelectionChanged(Event):
    """The current node changed as a side effect of a command."""

    node_id: str | None


@dataclass(slots=True)
class DocumentSaved(Event):
    """The auto-save task wrote the tree to disk."""

    path: str
    node_count: int


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers run synchronously in subscription order. Bound methods are held
    through :class:`WeakMethod` so a discarded view does not keep receiving
    events; plain functions and lambdas are held strongly. A handler that
    raises is logged and does not prevent the remaining handlers from running.

    Not thread-safe: publish and subscribe from the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Unsubscribe:
        """Register ``handler`` for ``event_type`` and return a callable that removes it."""

        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return _unsubscribe

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                return

    def publish(self, event: E) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if not handlers:
            return

        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for handler_ref in dead:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "Unsubscribe",
    "ProcessingState",
    "TurnAppended",
    "ProcessingStateChanged",
    "CommandOutcomeReported",
    "NodeSelectionChanged",
    "DocumentSaved",
]
