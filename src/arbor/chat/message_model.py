"""Conversation turn data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


class TurnRole(str, Enum):
    """Speaker attached to a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    @classmethod
    def coerce(cls, value: "TurnRole | str") -> "TurnRole":
        if isinstance(value, TurnRole):
            return value
        return cls(str(value).strip().lower())


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    """Represents one recorded message inside the history ledger.

    ``sequence`` is assigned by the ledger when the turn is recorded and is the
    authoritative ordering key; ``created_at`` is informational.
    """

    role: TurnRole
    text: str
    created_at: datetime = field(default_factory=_utcnow)
    sequence: int = 0

    def to_chat_message(self) -> Dict[str, str]:
        """Render the turn as an OpenAI-style chat message."""

        return {"role": self.role.value, "content": self.text}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the turn for logging or UI traces."""

        return {
            "role": self.role.value,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
            "sequence": self.sequence,
        }
