"""State models owned by the edit-session store.

These dataclasses and enums describe the state of each coordinator process.
They are mutated only through :class:`notelink.session.store.SessionStore`,
which publishes a change notification for every mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from ..editor.buffer import ScreenPoint
from .suggestions import CandidatePage, LinkSuggestion, SuggestionItem

TriggerType = Literal["manual"]
ContextStrategy = Literal["blocks", "window", "leading"]


@dataclass(slots=True)
class EditSession:
    """Persistence state of the document being edited.

    Attributes:
        document_id: Identifier of the page bound to this session.
        dirty: Whether the buffer holds changes not yet persisted.
        last_saved_snapshot: Block tree last acknowledged by the persistence gateway.
        last_edit_timestamp: Loop time of the most recent change notification.
        error: Message of the last failed save, cleared by the next success.
        saving: Whether a save request is in flight.
    """

    document_id: str
    dirty: bool = False
    last_saved_snapshot: list[dict[str, Any]] | None = None
    last_edit_timestamp: float | None = None
    error: str | None = None
    saving: bool = False


@dataclass(slots=True, frozen=True)
class TriggerContext:
    """Text extracted around a detected trigger marker.

    ``marker_present`` is false for contexts opened at the cursor without a
    marker; resolving such a popup inserts a link instead of replacing text.
    """

    marker_offset: int
    extracted_text: str
    cursor_screen_position: ScreenPoint | None = None
    strategy: ContextStrategy = "blocks"
    trigger_type: TriggerType = "manual"
    marker_present: bool = True


@dataclass(slots=True, frozen=True)
class Viewport:
    width: float
    height: float


@dataclass(slots=True, frozen=True)
class PopupPlacement:
    """Top-left corner of the suggestion popup in viewport pixels."""

    x: float
    y: float
    is_above: bool = False


class SuggestionPhase(Enum):
    """Lifecycle of the link suggestion popup.

    ``ACCEPTED``, ``REJECTED`` and ``DISMISSED`` are recorded as the outcome of
    a cycle; the engine returns to ``IDLE`` right after reaching them.
    """

    IDLE = "idle"
    LOADING = "loading"
    VISIBLE = "visible"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DISMISSED = "dismissed"


@dataclass(slots=True)
class SuggestionSet:
    """Contents of the suggestion popup for one trigger."""

    ai_suggestions: list[LinkSuggestion] = field(default_factory=list)
    candidate_pages: list[CandidatePage] = field(default_factory=list)
    selected_index: int | None = None
    visible: bool = False
    loading: bool = False
    error: str | None = None
    trigger_type: TriggerType = "manual"
    context: TriggerContext | None = None
    placement: PopupPlacement | None = None
    token: int = 0

    @property
    def total_items(self) -> int:
        return len(self.ai_suggestions) + len(self.candidate_pages)

    def items(self) -> list[SuggestionItem]:
        return [*self.ai_suggestions, *self.candidate_pages]

    @property
    def selected_item(self) -> SuggestionItem | None:
        if self.selected_index is None:
            return None
        items = self.items()
        if 0 <= self.selected_index < len(items):
            return items[self.selected_index]
        return None


class AutoTagPhase(Enum):
    DISARMED = "disarmed"
    WAITING_TYPING_IDLE = "waiting_typing_idle"
    COUNTING_DOWN = "counting_down"
    FIRED = "fired"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class AutoTagState:
    """State of one blur → (fire | cancel) auto-tag cycle."""

    phase: AutoTagPhase = AutoTagPhase.DISARMED
    content_edited_since_arm: bool = False
    deadline: float | None = None
    cancel_token: int = 0
    generating: bool = False

    @property
    def armed(self) -> bool:
        return self.phase in (AutoTagPhase.WAITING_TYPING_IDLE, AutoTagPhase.COUNTING_DOWN)


@dataclass(slots=True)
class TypingState:
    is_typing: bool = False
    quiet_deadline: float | None = None


__all__ = [
    "AutoTagPhase",
    "AutoTagState",
    "ContextStrategy",
    "EditSession",
    "PopupPlacement",
    "SuggestionPhase",
    "SuggestionSet",
    "TriggerContext",
    "TriggerType",
    "TypingState",
    "Viewport",
]
