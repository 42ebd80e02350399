"""Structured commands returned by the assistant and their outcomes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from .errors import ConversationError, ErrorCode

_KIND_NORMALIZER = re.compile(r"[\s_\-]+")


class CommandKind(str, Enum):
    """Closed set of operations the assistant may request."""

    CREATE_NODE = "CreateNode"
    UPDATE_NODE = "UpdateNode"
    DELETE_NODE = "DeleteNode"
    GENERATE_CONTENT = "GenerateContent"
    RESEARCH = "Research"

    @classmethod
    def parse(cls, value: Any) -> "CommandKind":
        """Resolve ``value`` to a kind, accepting ``CreateNode``/``create_node`` spellings.

        Raises:
            ValueError: if the value names no known kind.
        """

        if isinstance(value, CommandKind):
            return value
        key = _KIND_NORMALIZER.sub("", str(value or "")).lower()
        for kind in cls:
            if kind.value.lower() == key:
                return kind
        raise ValueError(f"Unknown command kind: {value!r}")


class GenerationType(str, Enum):
    """Content types the GenerateContent command can target."""

    TEXT = "Text"
    IMAGE = "Image"

    @classmethod
    def parse(cls, value: str) -> "GenerationType | None":
        key = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        return None


@dataclass(slots=True, frozen=True)
class Command:
    """A single instruction returned by the assistant.

    Parameters are positional and kind-specific; see the dispatcher for the
    meaning of each slot.
    """

    kind: CommandKind
    parameters: tuple[str, ...] = ()

    def param(self, index: int) -> str | None:
        """Return the stripped parameter at ``index`` or ``None`` when absent/blank."""

        if index < 0 or index >= len(self.parameters):
            return None
        value = self.parameters[index]
        if value is None or not str(value).strip():
            return None
        return str(value)

    def describe(self) -> str:
        if not self.parameters:
            return self.kind.value
        preview = ", ".join(_preview(value) for value in self.parameters)
        return f"{self.kind.value}({preview})"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "parameters": list(self.parameters)}


@dataclass(slots=True, frozen=True)
class CommandOutcome:
    """Result of executing one command.

    Attributes:
        success: Whether the command was applied.
        message: Human-readable summary of what happened.
        error_code: Machine-readable failure code when ``success`` is False.
        node_id: Node affected by the command, if any.
        follow_up: Synthetic user message to submit after the turn (Research).
    """

    success: bool
    message: str = ""
    error_code: str | None = None
    node_id: str | None = None
    follow_up: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        message: str = "",
        *,
        node_id: str | None = None,
        follow_up: str | None = None,
    ) -> "CommandOutcome":
        return cls(success=True, message=message, node_id=node_id, follow_up=follow_up)

    @classmethod
    def failed(cls, error_code: str, message: str, **details: Any) -> "CommandOutcome":
        return cls(success=False, message=message, error_code=error_code, details=dict(details))

    @classmethod
    def from_error(cls, error: ConversationError) -> "CommandOutcome":
        return cls(
            success=False,
            message=error.message,
            error_code=error.error_code or ErrorCode.INTERNAL_ERROR,
            details=dict(error.details),
        )


def build_command(kind: Any, parameters: Sequence[str] | None = None) -> Command:
    """Build a command from raw values as parsed from an assistant response."""

    return Command(kind=CommandKind.parse(kind), parameters=tuple(parameters or ()))


def _preview(value: str, limit: int = 40) -> str:
    text = " ".join(str(value).split())
    if len(text) > limit:
        text = text[: limit - 1] + "…"
    return repr(text)


__all__ = ["Command", "CommandKind", "CommandOutcome", "GenerationType", "build_command"]
