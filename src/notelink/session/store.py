"""Session store domain service.

Holds the observable state of one edit session: the persistence record, the
suggestion popup, the auto-tag cycle and the shared typing signal. Components
receive the store by injection and write to it only through the typed
mutation methods below; each mutation publishes a
:class:`~notelink.session.events.SessionStateChanged` event.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import fields
from typing import Any

from ..models.session_models import (
    AutoTagState,
    EditSession,
    SuggestionPhase,
    SuggestionSet,
    TypingState,
)
from .events import EventBus, SessionStateChanged

LOGGER = logging.getLogger(__name__)


class SessionStore:
    """Domain store for the state of a single edit session.

    The store never schedules work on its own; it only records state and
    announces changes so hosts can re-render.
    """

    def __init__(self, document_id: str, event_bus: EventBus) -> None:
        """Initialize the store.

        Args:
            document_id: Identifier of the page being edited.
            event_bus: Session bus receiving change notifications.
        """
        self._bus = event_bus
        self._edit_session = EditSession(document_id=document_id)
        self._suggestions = SuggestionSet()
        self._suggestion_phase = SuggestionPhase.IDLE
        self._last_suggestion_outcome: SuggestionPhase | None = None
        self._auto_tag = AutoTagState()
        self._typing = TypingState()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def edit_session(self) -> EditSession:
        return self._edit_session

    @property
    def document_id(self) -> str:
        return self._edit_session.document_id

    @property
    def suggestions(self) -> SuggestionSet:
        return self._suggestions

    @property
    def suggestion_phase(self) -> SuggestionPhase:
        return self._suggestion_phase

    @property
    def last_suggestion_outcome(self) -> SuggestionPhase | None:
        """How the most recent suggestion cycle ended (accepted, rejected or dismissed)."""
        return self._last_suggestion_outcome

    @property
    def auto_tag(self) -> AutoTagState:
        return self._auto_tag

    @property
    def typing(self) -> TypingState:
        return self._typing

    # ------------------------------------------------------------------
    # Edit session
    # ------------------------------------------------------------------

    def update_edit_session(self, **changes: Any) -> None:
        """Apply ``changes`` to the :class:`EditSession` record."""
        if "last_saved_snapshot" in changes and changes["last_saved_snapshot"] is not None:
            changes["last_saved_snapshot"] = copy.deepcopy(changes["last_saved_snapshot"])
        self._apply("edit_session", self._edit_session, changes)

    def reset_edit_session(self, document_id: str, snapshot: list[dict[str, Any]] | None = None) -> None:
        """Bind the store to another document, treating ``snapshot`` as already saved."""
        self._edit_session = EditSession(
            document_id=document_id,
            last_saved_snapshot=copy.deepcopy(snapshot) if snapshot is not None else None,
        )
        LOGGER.debug("SessionStore bound to document %s", document_id)
        self._bus.publish(SessionStateChanged(section="edit_session", fields=_field_names(EditSession)))

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def replace_suggestions(self, suggestions: SuggestionSet, phase: SuggestionPhase) -> None:
        """Install a fresh suggestion set, e.g. when a new trigger starts a cycle."""
        _check_selection(suggestions)
        self._suggestions = suggestions
        self._suggestion_phase = phase
        self._bus.publish(
            SessionStateChanged(section="suggestions", fields=(*_field_names(SuggestionSet), "phase"))
        )

    def update_suggestions(self, *, phase: SuggestionPhase | None = None, **changes: Any) -> None:
        """Apply ``changes`` to the current suggestion set and optionally move to ``phase``.

        Raises:
            ValueError: If the resulting selection is outside the item range.
        """
        candidate = copy.copy(self._suggestions)
        for name, value in changes.items():
            _require_field(candidate, name)
            setattr(candidate, name, value)
        _check_selection(candidate)
        self._suggestions = candidate
        names = tuple(changes)
        if phase is not None and phase is not self._suggestion_phase:
            LOGGER.debug("Suggestion phase %s -> %s", self._suggestion_phase.value, phase.value)
            self._suggestion_phase = phase
            names = (*names, "phase")
        self._bus.publish(SessionStateChanged(section="suggestions", fields=names))

    def finish_suggestions(self, outcome: SuggestionPhase, *, token: int = 0) -> None:
        """Record the outcome of a cycle, clear the popup and return to ``IDLE``."""
        LOGGER.debug("Suggestion cycle finished: %s", outcome.value)
        self._last_suggestion_outcome = outcome
        self._suggestions = SuggestionSet(token=token)
        self._suggestion_phase = SuggestionPhase.IDLE
        self._bus.publish(
            SessionStateChanged(section="suggestions", fields=(*_field_names(SuggestionSet), "phase"))
        )

    # ------------------------------------------------------------------
    # Auto-tag and typing
    # ------------------------------------------------------------------

    def update_auto_tag(self, **changes: Any) -> None:
        previous = self._auto_tag.phase
        self._apply("auto_tag", self._auto_tag, changes)
        if self._auto_tag.phase is not previous:
            LOGGER.debug("Auto-tag phase %s -> %s", previous.value, self._auto_tag.phase.value)

    def update_typing(self, **changes: Any) -> None:
        self._apply("typing", self._typing, changes)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply(self, section: str, target: Any, changes: dict[str, Any]) -> None:
        for name in changes:
            _require_field(target, name)
        for name, value in changes.items():
            setattr(target, name, value)
        self._bus.publish(SessionStateChanged(section=section, fields=tuple(changes)))


def _field_names(model: type) -> tuple[str, ...]:
    return tuple(item.name for item in fields(model))


def _require_field(target: Any, name: str) -> None:
    if name not in {item.name for item in fields(target)}:
        raise AttributeError(f"{type(target).__name__} has no field {name!r}")


def _check_selection(suggestions: SuggestionSet) -> None:
    index = suggestions.selected_index
    total = suggestions.total_items
    if index is None:
        return
    if not 0 <= index < total:
        raise ValueError(f"selected_index {index} outside [0, {total})")


__all__ = ["SessionStore"]
