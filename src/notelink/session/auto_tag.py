"""Idle-triggered, cancellable auto-tagging.

Phases: ``DISARMED -> WAITING_TYPING_IDLE -> COUNTING_DOWN -> {FIRED | CANCELLED}``.

The timer arms on blur when the page was edited since the previous arm. It
waits for the typing signal to go quiet (polling, with a hard cap), then
counts down. Focus or any keystroke before the countdown ends cancels the
cycle. When it fires, the page text is sent to the tag gateway and the
suggested tags that the page does not already carry are published.
"""

from __future__ import annotations

import logging
from typing import Any

from ..editor.buffer import BufferHandle
from ..models.session_models import AutoTagPhase
from ..services.gateways import TagGateway
from ..services.settings import SessionTimings
from ..utils.logging import SessionLoggerAdapter, session_logger
from .events import AutoTagArmed, AutoTagCancelled, AutoTagFired, EventBus, TagGenerationFailed, TagsSuggested
from .store import SessionStore
from .timers import BackgroundTasks, CancellableTimer, TimerScheduler
from .typing_state import TypingTracker

LOGGER = logging.getLogger(__name__)


class AutoTagTimer:
    """Runs one blur-to-fire auto-tag cycle at a time."""

    def __init__(
        self,
        store: SessionStore,
        gateway: TagGateway | None,
        buffer: BufferHandle,
        typing: TypingTracker,
        *,
        event_bus: EventBus,
        tasks: BackgroundTasks,
        workspace_id: str | None = None,
        timings: SessionTimings | None = None,
        min_text_chars: int = 50,
        enabled: bool = True,
        scheduler: TimerScheduler | None = None,
        logger: SessionLoggerAdapter | None = None,
    ) -> None:
        timings = timings or SessionTimings()
        self._store = store
        self._gateway = gateway
        self._buffer = buffer
        self._typing = typing
        self._bus = event_bus
        self._tasks = tasks
        self._workspace_id = workspace_id or ""
        self._poll_seconds = max(1, timings.typing_poll_ms) / 1000.0
        self._wait_cap_seconds = max(0, timings.typing_wait_cap_ms) / 1000.0
        self._countdown_seconds = max(0, timings.auto_tag_countdown_ms) / 1000.0
        self._min_text_chars = min_text_chars
        self._enabled = enabled
        self._timer = CancellableTimer(scheduler, name="auto-tag")
        self._log = logger or session_logger(__name__, store.document_id)
        self._wait_started_at: float | None = None

    @property
    def phase(self) -> AutoTagPhase:
        return self._store.auto_tag.phase

    @property
    def armed(self) -> bool:
        return self._store.auto_tag.armed

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------
    def note_content_edited(self, *, from_keystroke: bool = True) -> None:
        """Record that the page changed; a keystroke also cancels a pending cycle."""

        if from_keystroke and self.armed:
            self.cancel("edit")
        if not self._store.auto_tag.content_edited_since_arm:
            self._store.update_auto_tag(content_edited_since_arm=True)

    def on_keydown(self) -> None:
        if self.armed:
            self.cancel("keystroke")

    def on_focus(self) -> None:
        if self.armed:
            self.cancel("focus")

    def on_blur(self) -> bool:
        """Arm the timer when the page was edited since the last arm."""

        state = self._store.auto_tag
        if not self._enabled or not state.content_edited_since_arm:
            return False
        if not self._buffer.available:
            return False
        if self.armed:
            self._timer.disarm()

        waiting = self._typing.is_typing
        token = state.cancel_token + 1
        self._store.update_auto_tag(
            content_edited_since_arm=False,
            cancel_token=token,
            generating=False,
        )
        if waiting:
            self._wait_started_at = self._timer.now()
            deadline = self._timer.arm(self._poll_seconds, self._poll_typing, token)
            self._store.update_auto_tag(phase=AutoTagPhase.WAITING_TYPING_IDLE, deadline=deadline)
            self._log.debug("Auto-tag armed; waiting for typing to stop")
        else:
            self._start_countdown(token)
        self._bus.publish(AutoTagArmed(waiting_for_typing=waiting))
        return True

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel a pending cycle. Returns ``False`` when nothing was armed."""

        if not self.armed:
            return False
        self._timer.disarm()
        self._wait_started_at = None
        state = self._store.auto_tag
        self._store.update_auto_tag(
            phase=AutoTagPhase.CANCELLED,
            deadline=None,
            cancel_token=state.cancel_token + 1,
        )
        self._log.debug("Auto-tag cancelled (%s)", reason)
        self._bus.publish(AutoTagCancelled(reason=reason))
        return True

    def close(self) -> None:
        self._timer.disarm()
        self._wait_started_at = None
        if self.armed:
            self._store.update_auto_tag(phase=AutoTagPhase.DISARMED, deadline=None)

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------
    def _poll_typing(self, token: int) -> None:
        if not self._is_current(token, AutoTagPhase.WAITING_TYPING_IDLE):
            return
        waited = self._timer.now() - (self._wait_started_at or 0.0)
        if self._typing.is_typing and waited < self._wait_cap_seconds:
            deadline = self._timer.arm(self._poll_seconds, self._poll_typing, token)
            self._store.update_auto_tag(deadline=deadline)
            return
        if self._typing.is_typing:
            self._log.debug("Typing wait cap reached after %.1fs; counting down anyway", waited)
        self._start_countdown(token)

    def _start_countdown(self, token: int) -> None:
        self._wait_started_at = None
        deadline = self._timer.arm(self._countdown_seconds, self._fire, token)
        self._store.update_auto_tag(phase=AutoTagPhase.COUNTING_DOWN, deadline=deadline)
        self._log.debug("Auto-tag countdown started (%.1fs)", self._countdown_seconds)

    def _fire(self, token: int) -> None:
        if not self._is_current(token, AutoTagPhase.COUNTING_DOWN):
            return
        self._store.update_auto_tag(phase=AutoTagPhase.FIRED, deadline=None)
        buffer = self._buffer.get()
        if buffer is None:
            self._log.debug("Auto-tag fired after the buffer was released")
            return
        document = buffer.document().clone()
        text = document.plain_text().strip()
        if len(text) < self._min_text_chars:
            self._log.debug("Auto-tag skipped: %d chars of text (minimum %d)", len(text), self._min_text_chars)
            self._bus.publish(AutoTagFired(document_id=document.document_id, skipped=True))
            return
        self._bus.publish(AutoTagFired(document_id=document.document_id))
        if self._gateway is None:
            return
        self._tasks.spawn(
            self._generate(token, document.document_id, document.title, document.content()),
            name="auto-tag",
        )

    async def _generate(self, token: int, document_id: str, title: str, content: list[dict[str, Any]]) -> None:
        gateway = self._gateway
        if gateway is None:
            return
        if self._store.auto_tag.cancel_token != token:
            self._log.debug("Auto-tag cycle superseded before the tag request was sent")
            return
        self._store.update_auto_tag(generating=True)
        try:
            result = await gateway.generate_tags(title, content, self._workspace_id)
            try:
                existing = await gateway.page_tag_names(document_id)
            except Exception:
                self._log.debug("Unable to load existing tags for %s", document_id, exc_info=True)
                existing = set()
        except Exception as exc:
            self._log.debug("Tag generation failed", exc_info=True)
            self._log.warning("Tag generation failed: %s", exc)
            self._bus.publish(TagGenerationFailed(document_id=document_id, error=str(exc)))
            return
        finally:
            if self._store.auto_tag.cancel_token == token:
                self._store.update_auto_tag(generating=False)

        if self._store.auto_tag.cancel_token != token:
            self._log.debug("Discarding tags from a superseded auto-tag cycle")
            return
        filtered = result.without(existing)
        self._log.debug("Auto-tag suggested %d new tag(s)", len(filtered.tags))
        self._bus.publish(TagsSuggested(document_id=document_id, tags=filtered.tags, reasoning=filtered.reasoning))

    def _is_current(self, token: int, phase: AutoTagPhase) -> bool:
        state = self._store.auto_tag
        return state.cancel_token == token and state.phase is phase


__all__ = ["AutoTagTimer"]
