"""State machine behind the link suggestion popup.

Lifecycle: ``IDLE -> LOADING -> VISIBLE -> {ACCEPTED | REJECTED | DISMISSED} -> IDLE``.

Each trigger bumps a sequence token. The AI fetch started by a trigger only
writes its result back when its token is still the latest one and the popup
is still open, so a slow response can never overwrite a newer cycle.
"""

from __future__ import annotations

import logging
from typing import Literal

from ..editor.buffer import BufferHandle
from ..editor.document_model import marker_pattern
from ..models.session_models import PopupPlacement, SuggestionPhase, SuggestionSet, TriggerContext, Viewport
from ..models.suggestions import LinkSuggestion, SuggestionItem
from ..services.gateways import SuggestionGateway
from ..services.page_catalog import PageCatalog
from ..services.settings import LinkingSettings
from ..utils.logging import SessionLoggerAdapter, session_logger
from .events import EventBus, LinkCleanupRequested, SuggestionAccepted, SuggestionsLoaded
from .popup_placement import compute_popup_placement
from .store import SessionStore
from .timers import BackgroundTasks

LOGGER = logging.getLogger(__name__)

DismissReason = Literal["click_outside", "close", "escape"]

_ACTIVE_PHASES = (SuggestionPhase.LOADING, SuggestionPhase.VISIBLE)


class SuggestionEngine:
    """Drives one suggestion popup per trigger.

    Candidate pages come synchronously from the :class:`PageCatalog`; AI
    suggestions arrive asynchronously from the :class:`SuggestionGateway`.
    """

    def __init__(
        self,
        store: SessionStore,
        gateway: SuggestionGateway,
        catalog: PageCatalog,
        buffer: BufferHandle,
        *,
        event_bus: EventBus,
        tasks: BackgroundTasks,
        settings: LinkingSettings | None = None,
        logger: SessionLoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._catalog = catalog
        self._buffer = buffer
        self._bus = event_bus
        self._tasks = tasks
        self._settings = settings or LinkingSettings()
        self._log = logger or session_logger(__name__, store.document_id)
        self._token = 0
        self._viewport: Viewport | None = None
        self._navigated = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def phase(self) -> SuggestionPhase:
        return self._store.suggestion_phase

    @property
    def active(self) -> bool:
        """Whether a cycle is loading or visible; the trigger detector idles meanwhile."""
        return self._store.suggestion_phase in _ACTIVE_PHASES

    @property
    def visible(self) -> bool:
        return self._store.suggestions.visible

    @property
    def token(self) -> int:
        return self._token

    @property
    def viewport(self) -> Viewport | None:
        return self._viewport

    # ------------------------------------------------------------------
    # Trigger
    # ------------------------------------------------------------------
    def trigger(self, context: TriggerContext, workspace_id: str, page_id: str | None = None) -> int:
        """Open the popup for ``context`` and start fetching AI suggestions.

        Supersedes any cycle in progress. Returns the sequence token of the
        new cycle.
        """

        self._token += 1
        token = self._token
        self._navigated = False
        candidates = self._catalog.candidates(exclude_id=page_id)
        self._store.replace_suggestions(
            SuggestionSet(
                candidate_pages=candidates,
                selected_index=0 if candidates else None,
                visible=True,
                loading=True,
                trigger_type=context.trigger_type,
                context=context,
                placement=self._placement_for(context),
                token=token,
            ),
            SuggestionPhase.LOADING,
        )
        self._log.debug("Suggestion cycle %d started (%d candidate pages)", token, len(candidates))
        self._tasks.spawn(self._fetch(token, context, workspace_id, page_id), name=f"link-suggestions-{token}")
        return token

    async def _fetch(self, token: int, context: TriggerContext, workspace_id: str, page_id: str | None) -> None:
        query = self._query_text(context.extracted_text)
        try:
            suggestions = await self._gateway.generate_link_suggestions(
                query,
                workspace_id,
                page_id=page_id,
                context_window=self._settings.context_window,
            )
        except Exception as exc:
            if not self._is_current(token):
                self._log.debug("Discarding failure of stale suggestion request %d", token)
                return
            message = str(exc) or "Failed to load suggestions"
            self._log.debug("Suggestion request %d failed: %s", token, message, exc_info=True)
            self._store.update_suggestions(loading=False, error=message, phase=SuggestionPhase.VISIBLE)
            candidate_count = len(self._store.suggestions.candidate_pages)
            self._bus.publish(SuggestionsLoaded(token=token, ai_count=0, candidate_count=candidate_count, error=message))
            return

        if not self._is_current(token):
            self._log.debug("Discarding stale suggestion response %d (latest=%d)", token, self._token)
            return
        ordered = sorted(suggestions, key=lambda item: item.confidence, reverse=True)
        self._store.update_suggestions(
            ai_suggestions=ordered,
            selected_index=self._merged_selection(ordered),
            loading=False,
            error=None,
            phase=SuggestionPhase.VISIBLE,
        )
        self._log.debug("Suggestion request %d returned %d suggestions", token, len(ordered))
        self._bus.publish(
            SuggestionsLoaded(
                token=token,
                ai_count=len(ordered),
                candidate_count=len(self._store.suggestions.candidate_pages),
            )
        )

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def select_next(self) -> int | None:
        return self._move_selection(1)

    def select_previous(self) -> int | None:
        return self._move_selection(-1)

    def select(self, index: int) -> None:
        total = self._store.suggestions.total_items
        if not 0 <= index < total:
            raise IndexError(f"suggestion index {index} outside [0, {total})")
        self._navigated = True
        self._store.update_suggestions(selected_index=index)

    def handle_key(self, key: str) -> bool:
        """Handle popup keys. Returns ``True`` when the key was consumed."""

        if not self.visible:
            return False
        if key == "ArrowDown":
            self.select_next()
        elif key == "ArrowUp":
            self.select_previous()
        elif key == "Enter":
            self.accept()
        elif key == "Escape":
            self.reject()
        else:
            return False
        return True

    def _move_selection(self, delta: int) -> int | None:
        suggestions = self._store.suggestions
        total = suggestions.total_items
        if not suggestions.visible or total == 0:
            return None
        current = suggestions.selected_index
        if current is None:
            index = 0 if delta > 0 else total - 1
        else:
            index = (current + delta) % total
        self._navigated = True
        self._store.update_suggestions(selected_index=index)
        return index

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------
    def accept(self, index: int | None = None) -> bool:
        """Replace the trigger marker with a link to the selected item.

        A popup opened without a marker inserts the link at the cursor offset
        it was opened at.

        Returns ``False`` when nothing is selectable or the link could not be
        written; the accept signal is published only after a successful write.
        """

        suggestions = self._store.suggestions
        if not suggestions.visible:
            return False
        if index is not None:
            self.select(index)
            suggestions = self._store.suggestions
        item = suggestions.selected_item
        if item is None:
            return False

        context = suggestions.context
        buffer = self._buffer.get()
        if buffer is None:
            self._log.debug("Buffer gone; clearing suggestion state without linking")
            self._store.finish_suggestions(SuggestionPhase.DISMISSED, token=self._token)
            return False

        href = self._settings.link_href_template.format(page_id=item.id)
        near = context.marker_offset if context is not None else buffer.cursor_offset()
        # Finish first so the change notification caused by the write sees an idle engine.
        self._store.finish_suggestions(SuggestionPhase.ACCEPTED, token=self._token)
        if context is None or context.marker_present:
            linked = buffer.replace_marker_with_link(self._settings.trigger_marker, near, title=item.title, href=href)
        else:
            linked = buffer.insert_link(near, title=item.title, href=href)
        if not linked:
            self._log.warning("Trigger marker vanished before link to %s could be inserted", item.id)
            return False
        self._log.debug("Linked marker to page %s", item.id)
        self._bus.publish(SuggestionAccepted(page_id=item.id, page_title=item.title))
        return True

    def reject(self) -> bool:
        """Escape: hide the popup and request removal of the trigger marker."""

        return self._close(SuggestionPhase.REJECTED)

    def dismiss(self, reason: DismissReason = "click_outside") -> bool:
        """Click outside or explicit close."""

        self._log.debug("Dismissing suggestions (%s)", reason)
        return self._close(SuggestionPhase.DISMISSED)

    def clear(self) -> None:
        """Drop any cycle in progress without signalling the buffer."""

        if self._store.suggestion_phase is SuggestionPhase.IDLE and not self._store.suggestions.visible:
            return
        self._store.finish_suggestions(SuggestionPhase.DISMISSED, token=self._token)

    def _close(self, outcome: SuggestionPhase) -> bool:
        if not self.active:
            return False
        context = self._store.suggestions.context
        self._store.finish_suggestions(outcome, token=self._token)
        self._bus.publish(
            LinkCleanupRequested(
                remove_trigger_marker=context is not None and context.marker_present,
                marker_offset=context.marker_offset if context is not None else None,
            )
        )
        return True

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------
    def on_viewport_resized(self, viewport: Viewport) -> PopupPlacement | None:
        """Remember ``viewport`` and reposition the popup when it is shown."""

        self._viewport = viewport
        suggestions = self._store.suggestions
        if not suggestions.visible or suggestions.context is None:
            return None
        placement = self._placement_for(suggestions.context)
        if placement != suggestions.placement:
            self._store.update_suggestions(placement=placement)
        return placement

    def _placement_for(self, context: TriggerContext) -> PopupPlacement | None:
        cursor = context.cursor_screen_position
        if cursor is None or self._viewport is None:
            return None
        return compute_popup_placement(cursor, self._viewport)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _merged_selection(self, ai_suggestions: list[LinkSuggestion]) -> int | None:
        """Index to select once AI results are prepended to the candidates.

        The first item is selected unless the user moved the highlight while
        the request was loading; that item keeps the highlight at its new index.
        """

        suggestions = self._store.suggestions
        items: list[SuggestionItem] = [*ai_suggestions, *suggestions.candidate_pages]
        if not items:
            return None
        highlighted = suggestions.selected_item
        if not self._navigated or highlighted is None:
            return 0
        for index, item in enumerate(items):
            if type(item) is type(highlighted) and item.id == highlighted.id:
                return index
        return 0

    def _is_current(self, token: int) -> bool:
        return token == self._token and self.active

    def _query_text(self, extracted: str) -> str:
        stripped = marker_pattern(self._settings.trigger_marker).sub("", extracted).strip()
        if len(stripped) < self._settings.min_context_chars:
            return self._settings.generic_context
        return extracted


__all__ = ["DismissReason", "SuggestionEngine"]
