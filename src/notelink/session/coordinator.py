"""Edit-session coordinator wiring the buffer to the four session processes."""

from __future__ import annotations

import logging
from typing import Callable

from ..editor.buffer import BufferChange, BufferHandle, EditBuffer
from ..models.session_models import Viewport
from ..services.gateways import PersistenceGateway, SuggestionGateway, TagGateway
from ..services.page_catalog import PageCatalog
from ..services.settings import Settings
from ..utils.logging import session_logger
from .auto_tag import AutoTagTimer
from .content_sync import ContentSyncScheduler
from .events import EventBus, LinkCleanupRequested, LinkTriggerDetected
from .store import SessionStore
from .suggestion_engine import SuggestionEngine
from .timers import BackgroundTasks, TimerScheduler
from .trigger_detector import TriggerDetector
from .typing_state import TypingTracker

LOGGER = logging.getLogger(__name__)

POPUP_KEYS = frozenset({"ArrowUp", "ArrowDown", "Enter", "Escape"})


class EditSessionCoordinator:
    """Reconciles one edit buffer with persistence, linking and tagging.

    The coordinator subscribes to the buffer's change and focus callbacks and
    fans each notification out to the components. Hosts forward the remaining
    inbound events (keydown, click outside, viewport resize) and listen on
    :attr:`bus` for ``SuggestionAccepted`` and ``LinkCleanupRequested``.

    The buffer is referenced weakly. Once the editor releases it every handler
    becomes a no-op.
    """

    def __init__(
        self,
        buffer: EditBuffer,
        *,
        persistence: PersistenceGateway,
        suggestions: SuggestionGateway,
        tags: TagGateway | None = None,
        catalog: PageCatalog | None = None,
        settings: Settings | None = None,
        workspace_id: str | None = None,
        scheduler: TimerScheduler | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._settings = settings or Settings()
        timings = self._settings.timings
        document = buffer.document()

        self._buffer = BufferHandle(buffer)
        self._bus = event_bus or EventBus()
        self._store = SessionStore(document.document_id, self._bus)
        self._tasks = BackgroundTasks(name=f"session-{document.document_id}")
        self._catalog = catalog or PageCatalog()
        self._workspace_id = workspace_id or self._settings.workspace_id or ""
        self._log = session_logger(__name__, document.document_id)
        self._closed = False

        self._typing = TypingTracker(self._store, idle_ms=timings.typing_idle_ms, scheduler=scheduler)
        self._content_sync = ContentSyncScheduler(
            self._store,
            persistence,
            event_bus=self._bus,
            tasks=self._tasks,
            debounce_ms=timings.save_debounce_ms,
            scheduler=scheduler,
            logger=self._log,
        )
        self._detector = TriggerDetector(self._settings.linking)
        self._engine = SuggestionEngine(
            self._store,
            suggestions,
            self._catalog,
            self._buffer,
            event_bus=self._bus,
            tasks=self._tasks,
            settings=self._settings.linking,
            logger=self._log,
        )
        self._auto_tag = AutoTagTimer(
            self._store,
            tags,
            self._buffer,
            self._typing,
            event_bus=self._bus,
            tasks=self._tasks,
            workspace_id=self._workspace_id,
            timings=timings,
            min_text_chars=self._settings.min_tag_text_chars,
            enabled=self._settings.auto_tag_enabled,
            scheduler=scheduler,
            logger=self._log,
        )

        self._marker_counts = self._detector.marker_counts(document)
        self._content_sync.reset(document.document_id, document.content())
        self._bus.subscribe(LinkCleanupRequested, self._on_cleanup_requested)
        self._unsubscribers: list[Callable[[], None]] = [
            buffer.add_change_listener(self.handle_buffer_changed),
            buffer.add_focus_listener(self.handle_focus_changed),
        ]
        self._log.debug("Edit session started")

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------
    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def catalog(self) -> PageCatalog:
        return self._catalog

    @property
    def content_sync(self) -> ContentSyncScheduler:
        return self._content_sync

    @property
    def detector(self) -> TriggerDetector:
        return self._detector

    @property
    def suggestion_engine(self) -> SuggestionEngine:
        return self._engine

    @property
    def auto_tag(self) -> AutoTagTimer:
        return self._auto_tag

    @property
    def typing(self) -> TypingTracker:
        return self._typing

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------
    def handle_buffer_changed(self, change: BufferChange) -> None:
        """Fan a change notification out to persistence, tagging and the detector."""

        buffer = self._buffer.get()
        if self._closed or buffer is None:
            return
        if change.document_id != self._store.document_id:
            self._log.debug("Ignoring change for unbound document %s", change.document_id)
            return
        document = buffer.document()
        user_edit = change.origin == "user"
        if user_edit:
            self._typing.note_activity()
        self._auto_tag.note_content_edited(from_keystroke=user_edit)
        self._content_sync.notify_changed(document.content())

        # Only a marker that appeared with this edit fires.
        known_markers, self._marker_counts = self._marker_counts, self._detector.marker_counts(document)
        # Coordinator writes (link insertion, marker cleanup) never re-trigger.
        if not user_edit:
            return
        context = self._detector.scan(
            document,
            buffer.cursor_offset(),
            cursor_screen_position=buffer.cursor_screen_position(),
            engine_active=self._engine.active,
            known_markers=known_markers,
        )
        if context is None:
            return
        self._bus.publish(LinkTriggerDetected(marker_offset=context.marker_offset, strategy=context.strategy))
        self._engine.trigger(context, self._workspace_id, page_id=document.document_id)

    def handle_focus_changed(self, focused: bool) -> None:
        if self._closed or not self._buffer.available:
            return
        if focused:
            self._auto_tag.on_focus()
        else:
            self._auto_tag.on_blur()

    def handle_blur(self) -> None:
        self.handle_focus_changed(False)

    def handle_focus(self) -> None:
        self.handle_focus_changed(True)

    def handle_keydown(self, key: str) -> bool:
        """Route a keystroke; returns ``True`` when the popup consumed it."""

        if self._closed or not self._buffer.available:
            return False
        self._auto_tag.on_keydown()
        if key in POPUP_KEYS and self._engine.visible:
            return self._engine.handle_key(key)
        self._typing.note_activity()
        return False

    def handle_click_outside(self) -> bool:
        if self._closed:
            return False
        return self._engine.dismiss("click_outside")

    def close_suggestions(self) -> bool:
        if self._closed:
            return False
        return self._engine.dismiss("close")

    def handle_viewport_resized(self, width: float, height: float) -> None:
        if self._closed:
            return
        self._engine.on_viewport_resized(Viewport(width=width, height=height))

    def trigger_suggestions(self) -> int | None:
        """Open the popup at the cursor without requiring the marker."""

        buffer = self._buffer.get()
        if self._closed or buffer is None:
            return None
        document = buffer.document()
        context = self._detector.scan(
            document,
            buffer.cursor_offset(),
            cursor_screen_position=buffer.cursor_screen_position(),
        ) or self._detector.context_at(
            document,
            buffer.cursor_offset(),
            cursor_screen_position=buffer.cursor_screen_position(),
        )
        return self._engine.trigger(context, self._workspace_id, page_id=document.document_id)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    async def flush(self) -> bool:
        return await self._content_sync.flush()

    async def force_save(self) -> bool:
        return await self._content_sync.force_save()

    def has_unsaved_changes(self) -> bool:
        return self._content_sync.has_unsaved_changes()

    def switch_document(self, buffer: EditBuffer) -> None:
        """Rebind the session after the host loads another page into ``buffer``."""

        if self._closed:
            return
        document = buffer.document()
        if self._buffer.get() is not buffer:
            self._detach_listeners()
            self._buffer.rebind(buffer)
            self._unsubscribers = [
                buffer.add_change_listener(self.handle_buffer_changed),
                buffer.add_focus_listener(self.handle_focus_changed),
            ]
        self._engine.clear()
        self._auto_tag.close()
        self._typing.reset()
        self._log.rebind(document.document_id)
        self._marker_counts = self._detector.marker_counts(document)
        self._content_sync.reset(document.document_id, document.content())

    async def drain(self) -> None:
        """Wait for background work (saves, fetches, tag calls) to settle."""

        await self._tasks.drain()

    # ------------------------------------------------------------------
    # Outbound signal handling
    # ------------------------------------------------------------------
    def _on_cleanup_requested(self, event: LinkCleanupRequested) -> None:
        buffer = self._buffer.get()
        if buffer is None or not event.remove_trigger_marker:
            return
        removed = buffer.remove_marker(self._detector.marker, event.marker_offset)
        self._log.debug("Residual trigger marker removed: %s", removed)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Detach from the buffer and stop all timers. Idempotent."""

        if self._closed:
            return
        self._closed = True
        self._detach_listeners()
        self._engine.clear()
        self._auto_tag.close()
        self._typing.reset()
        self._bus.unsubscribe(LinkCleanupRequested, self._on_cleanup_requested)
        self._buffer.detach()
        self._log.debug("Edit session closed")

    async def aclose(self) -> None:
        self.close()
        await self._content_sync.aclose()
        self._tasks.cancel_all()
        await self._tasks.drain()

    def _detach_listeners(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()


__all__ = ["EditSessionCoordinator", "POPUP_KEYS"]
