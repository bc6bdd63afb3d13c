"""Debounced persistence of the edit buffer."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from ..services.gateways import PersistenceGateway
from ..utils.logging import SessionLoggerAdapter, session_logger
from .events import ContentSaved, ContentSaveFailed, EventBus
from .store import SessionStore
from .timers import BackgroundTasks, CancellableTimer, TimerScheduler

LOGGER = logging.getLogger(__name__)

Snapshot = list[dict[str, Any]]


class ContentSyncScheduler:
    """Saves the latest buffer snapshot after the user stops editing.

    Every change re-arms a debounce timer. When it expires the pending snapshot
    is compared structurally with the last saved one and sent to the
    persistence gateway only when they differ. At most one save is in flight;
    a flush requested meanwhile runs once after the current request settles.
    Failed saves are recorded on the session and never retried automatically.
    """

    def __init__(
        self,
        store: SessionStore,
        gateway: PersistenceGateway,
        *,
        event_bus: EventBus,
        tasks: BackgroundTasks,
        debounce_ms: int = 1_000,
        scheduler: TimerScheduler | None = None,
        logger: SessionLoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._bus = event_bus
        self._tasks = tasks
        self._debounce_seconds = max(0, debounce_ms) / 1000.0
        self._timer = CancellableTimer(scheduler, name="save-debounce")
        self._log = logger or session_logger(__name__, store.document_id)
        self._pending: Snapshot | None = None
        self._change_seq = 0
        self._request_seq = 0
        self._generation = 0
        self._inflight: asyncio.Future[None] | None = None
        self._inflight_snapshot: Snapshot | None = None
        self._follow_up = False
        self._handoffs: set[asyncio.Task[None]] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def debounce_armed(self) -> bool:
        return self._timer.armed

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    def notify_changed(self, snapshot: Snapshot) -> None:
        """Record ``snapshot`` as the latest buffer content and re-arm the debounce."""

        if self._closed:
            return
        self._pending = copy.deepcopy(snapshot)
        self._change_seq += 1
        self._timer.arm(self._debounce_seconds, self._on_debounce_elapsed)
        self._store.update_edit_session(dirty=True, last_edit_timestamp=self._timer.now())

    def has_unsaved_changes(self) -> bool:
        if self._pending is None:
            return False
        return self._pending != self._store.edit_session.last_saved_snapshot

    async def flush(self) -> bool:
        """Save the pending snapshot if it differs from the last saved one.

        Returns ``True`` when the buffer is persisted after the call. A flush
        issued while a save is in flight only marks a follow-up and returns
        ``False``.
        """

        self._timer.disarm()
        if self._closed:
            return False
        if self._inflight is not None:
            self._follow_up = True
            self._log.debug("Save in flight; follow-up flush queued")
            return False
        snapshot = self._pending
        if snapshot is None:
            return True
        if snapshot == self._store.edit_session.last_saved_snapshot:
            if self._store.edit_session.dirty:
                self._store.update_edit_session(dirty=False, error=None)
            return True
        return await self._save(snapshot)

    async def force_save(self) -> bool:
        """Save the pending snapshot now, skipping the structural comparison."""

        self._timer.disarm()
        while self._inflight is not None and not self._closed:
            await asyncio.shield(self._inflight)
        if self._closed:
            return False
        snapshot = self._pending
        if snapshot is None:
            snapshot = copy.deepcopy(self._store.edit_session.last_saved_snapshot or [])
        return await self._save(snapshot)

    def reset(self, document_id: str, snapshot: Snapshot | None = None) -> None:
        """Bind to another document.

        Unsaved changes of the previous document are handed to a detached save
        bound to its id, unless the request already in flight carries them.
        Results of requests issued for the previous document no longer touch
        the session state.
        """

        self._timer.disarm()
        if not self._closed and self.has_unsaved_changes():
            previous = self._store.document_id
            pending = copy.deepcopy(self._pending)
            inflight = self._inflight
            if inflight is None or pending != self._inflight_snapshot:
                self._log.debug("Handing unsaved changes of %s to a final save", previous)
                task = self._tasks.spawn(self._save_previous(previous, pending, inflight), name=f"flush-{previous}")
                self._handoffs.add(task)
                task.add_done_callback(self._handoffs.discard)
        self._generation += 1
        self._inflight = None
        self._inflight_snapshot = None
        self._follow_up = False
        self._pending = copy.deepcopy(snapshot) if snapshot is not None else None
        self._store.reset_edit_session(document_id, snapshot)
        self._log.rebind(document_id)
        self._log.debug("Content sync reset")

    async def aclose(self) -> None:
        """Disarm the debounce and wait for in-flight and handed-off saves to settle."""

        self._closed = True
        self._timer.disarm()
        self._follow_up = False
        inflight = self._inflight
        if inflight is not None:
            await asyncio.shield(inflight)
        if self._handoffs:
            await asyncio.gather(*list(self._handoffs), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _on_debounce_elapsed(self) -> None:
        self._tasks.spawn(self.flush(), name="flush")

    async def _save(self, snapshot: Snapshot) -> bool:
        generation = self._generation
        change_seq = self._change_seq
        document_id = self._store.document_id
        self._request_seq += 1
        request_id = self._request_seq
        inflight: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._inflight = inflight
        self._inflight_snapshot = snapshot
        self._store.update_edit_session(saving=True)
        self._log.debug("Saving content (request=%d, blocks=%d)", request_id, len(snapshot))

        error: Exception | None = None
        try:
            await self._gateway.save(document_id, copy.deepcopy(snapshot))
        except Exception as exc:
            error = exc
        finally:
            if self._inflight is inflight:
                self._inflight = None
                self._inflight_snapshot = None
            inflight.set_result(None)

        if generation != self._generation:
            self._log.debug("Discarding save result %d for previous document %s", request_id, document_id)
            return False

        if error is None:
            newer_change = self._change_seq != change_seq
            self._store.update_edit_session(
                last_saved_snapshot=snapshot,
                dirty=newer_change,
                error=None,
                saving=False,
            )
            self._log.debug("Content saved (request=%d, newer_change=%s)", request_id, newer_change)
            self._bus.publish(ContentSaved(document_id=document_id, request_id=request_id))
        else:
            message = str(error) or type(error).__name__
            self._store.update_edit_session(dirty=True, error=message, saving=False)
            self._log.warning("Save failed (request=%d): %s", request_id, message)
            self._bus.publish(ContentSaveFailed(document_id=document_id, request_id=request_id, error=message))

        if self._follow_up and not self._closed:
            self._follow_up = False
            self._tasks.spawn(self.flush(), name="flush-follow-up")
        return error is None

    async def _save_previous(
        self, document_id: str, snapshot: Snapshot, inflight: asyncio.Future[None] | None
    ) -> None:
        """Persist the last snapshot of a document the session has moved away from."""

        if inflight is not None:
            await asyncio.shield(inflight)
        self._request_seq += 1
        request_id = self._request_seq
        try:
            await self._gateway.save(document_id, snapshot)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._log.warning("Final save of %s failed (request=%d): %s", document_id, request_id, message)
            self._bus.publish(ContentSaveFailed(document_id=document_id, request_id=request_id, error=message))
            return
        self._log.debug("Final save of %s done (request=%d)", document_id, request_id)
        self._bus.publish(ContentSaved(document_id=document_id, request_id=request_id))


__all__ = ["ContentSyncScheduler"]
