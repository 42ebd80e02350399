"""Conversation turns and the bounded history ledger."""

from .history import HistoryLedger
from .message_model import ConversationTurn, TurnRole

__all__ = ["ConversationTurn", "HistoryLedger", "TurnRole"]
