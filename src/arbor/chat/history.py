"""Bounded conversation ledger used to build assistant context."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from datetime import datetime
from typing import Callable, Iterator

from .message_model import ConversationTurn, TurnRole, _utcnow

LOGGER = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_MAX_TEXT_LENGTH = 4_000
_TRUNCATION_MARKER = "…"

Clock = Callable[[], datetime]


class HistoryLedger:
    """Capacity-bounded, insertion-ordered log of conversation turns.

    Oldest turns are evicted first once ``capacity`` is exceeded. Ordering is
    defined by the sequence number assigned at record time, and timestamps are
    clamped so they never run backwards even if the wall clock does.
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_CAPACITY,
        max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
        clock: Clock | None = None,
    ) -> None:
        self._capacity = max(1, int(capacity))
        self._max_text_length = max(1, int(max_text_length))
        self._clock = clock or _utcnow
        self._turns: deque[ConversationTurn] = deque(maxlen=self._capacity)
        self._sequence = itertools.count(1)
        self._last_timestamp: datetime | None = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def max_text_length(self) -> int:
        return self._max_text_length

    def record(self, role: TurnRole | str, text: str) -> ConversationTurn:
        """Append a turn, evicting the oldest one when the ledger is full."""

        turn = ConversationTurn(
            role=TurnRole.coerce(role),
            text=self._clamp_text(text or ""),
            created_at=self._next_timestamp(),
            sequence=next(self._sequence),
        )
        if len(self._turns) == self._capacity:
            evicted = self._turns[0]
            LOGGER.debug("History ledger full; evicting turn #%s", evicted.sequence)
        self._turns.append(turn)
        return turn

    def recent(self, n: int) -> list[ConversationTurn]:
        """Return the last ``min(n, len(self))`` turns in insertion order."""

        if n <= 0 or not self._turns:
            return []
        count = min(int(n), len(self._turns))
        return list(itertools.islice(self._turns, len(self._turns) - count, None))

    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    def clear(self) -> None:
        self._turns.clear()

    def as_chat_messages(self, n: int | None = None) -> list[dict[str, str]]:
        source = self.turns() if n is None else self.recent(n)
        return [turn.to_chat_message() for turn in source]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(list(self._turns))

    def _clamp_text(self, text: str) -> str:
        if len(text) <= self._max_text_length:
            return text
        keep = self._max_text_length - len(_TRUNCATION_MARKER)
        return text[:keep] + _TRUNCATION_MARKER

    def _next_timestamp(self) -> datetime:
        now = self._clock()
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now


__all__ = ["HistoryLedger", "DEFAULT_CAPACITY", "DEFAULT_MAX_TEXT_LENGTH"]
