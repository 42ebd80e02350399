"""Error taxonomy for the conversation engine.

Every error carries a machine-readable code and a human-readable message so
the orchestrator can surface it as a System turn without special casing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in turn and command outcomes."""

    # Utterance validation
    EMPTY_MESSAGE = "empty_message"
    MESSAGE_TOO_LONG = "message_too_long"

    # Command validation
    MISSING_PARAMETER = "missing_parameter"
    PRECONDITION_NOT_MET = "precondition_not_met"
    UNSUPPORTED = "unsupported"
    OPERATION_CANCELLED = "operation_cancelled"

    # Boundaries
    GATEWAY_ERROR = "gateway_error"
    MALFORMED_RESPONSE = "malformed_response"
    COLLABORATOR_ERROR = "collaborator_error"

    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ConversationError(Exception):
    """Base exception class for all conversation engine errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "category": self.category,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ValidationError(ConversationError):
    """Malformed input rejected before any state change."""

    error_code: str = field(default=ErrorCode.EMPTY_MESSAGE)
    message: str = field(default="Message is empty")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "validation"


@dataclass
class PreconditionError(ConversationError):
    """A command's preconditions were not met; nothing was applied."""

    error_code: str = field(default=ErrorCode.PRECONDITION_NOT_MET)
    message: str = field(default="Precondition not met")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "precondition"


@dataclass
class GatewayError(ConversationError):
    """Transport or parse failure talking to the assistant; aborts the turn."""

    error_code: str = field(default=ErrorCode.GATEWAY_ERROR)
    message: str = field(default="The assistant could not be reached")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "gateway"


@dataclass
class CollaboratorError(ConversationError):
    """Tree store, generation or research failure for a single command."""

    error_code: str = field(default=ErrorCode.COLLABORATOR_ERROR)
    message: str = field(default="A collaborator failed")
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "collaborator"


__all__ = [
    "ErrorCode",
    "ConversationError",
    "ValidationError",
    "PreconditionError",
    "GatewayError",
    "CollaboratorError",
]
