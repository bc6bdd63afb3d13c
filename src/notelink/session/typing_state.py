"""Shared typing signal consulted by the auto-tag timer."""

from __future__ import annotations

import logging

from .store import SessionStore
from .timers import CancellableTimer, TimerScheduler

LOGGER = logging.getLogger(__name__)


class TypingTracker:
    """Marks the session as typing on activity and quiet after ``idle_ms`` of silence."""

    def __init__(self, store: SessionStore, *, idle_ms: int = 1_000, scheduler: TimerScheduler | None = None) -> None:
        self._store = store
        self._idle_seconds = max(0, idle_ms) / 1000.0
        self._timer = CancellableTimer(scheduler, name="typing-quiet")

    @property
    def is_typing(self) -> bool:
        return self._store.typing.is_typing

    def note_activity(self) -> None:
        deadline = self._timer.arm(self._idle_seconds, self._on_quiet)
        self._store.update_typing(is_typing=True, quiet_deadline=deadline)

    def reset(self) -> None:
        self._timer.disarm()
        if self._store.typing.is_typing:
            self._store.update_typing(is_typing=False, quiet_deadline=None)

    def _on_quiet(self) -> None:
        self._store.update_typing(is_typing=False, quiet_deadline=None)


__all__ = ["TypingTracker"]
