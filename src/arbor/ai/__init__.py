"""Assistant boundary, command model and turn orchestration."""

from .commands import Command, CommandKind, CommandOutcome
from .context import ContextAssembler, ConversationContext
from .errors import ConversationError, ErrorCode

__all__ = [
    "Command",
    "CommandKind",
    "CommandOutcome",
    "ContextAssembler",
    "ConversationContext",
    "ConversationError",
    "ErrorCode",
]
