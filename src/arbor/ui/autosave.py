"""Periodic auto-save owned by the presentation layer."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Protocol

from .events import DocumentSaved, Event, EventBus

LOGGER = logging.getLogger(__name__)


class SaveableStore(Protocol):
    @property
    def is_dirty(self) -> bool:
        ...

    def save(self, path: Path | str) -> Path:
        ...

    def __len__(self) -> int:
        ...


class AutoSaveTask:
    """Cancellable background task that saves the tree every ``interval`` seconds.

    The task only talks to the store; it never touches the conversation
    engine, so saves interleave freely with conversation turns.
    """

    def __init__(
        self,
        store: SaveableStore,
        path: Path | str,
        *,
        interval: float = 60.0,
        event_bus: EventBus[Event] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Auto-save interval must be positive")
        self._store = store
        self._path = Path(path)
        self._interval = float(interval)
        self._events = event_bus
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def path(self) -> Path:
        return self._path

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="arbor-autosave")
        LOGGER.debug("Auto-save started (every %.1fs to %s)", self._interval, self._path)

    async def stop(self, *, flush: bool = True) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if flush:
            await self.save_now(force=False)
        LOGGER.debug("Auto-save stopped")

    async def save_now(self, *, force: bool = True) -> bool:
        """Save immediately; when ``force`` is False only a dirty tree is written."""

        if not force and not self._store.is_dirty:
            return False
        try:
            target = await asyncio.to_thread(self._store.save, self._path)
        except OSError as exc:
            LOGGER.warning("Auto-save to %s failed: %s", self._path, exc)
            return False
        if self._events is not None:
            self._events.publish(DocumentSaved(path=str(target), node_count=len(self._store)))
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.save_now(force=False)


__all__ = ["AutoSaveTask", "SaveableStore"]
