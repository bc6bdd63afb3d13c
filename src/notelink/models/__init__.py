"""State and payload models shared by the session components."""

from .session_models import (
    AutoTagPhase,
    AutoTagState,
    EditSession,
    PopupPlacement,
    SuggestionPhase,
    SuggestionSet,
    TriggerContext,
    TypingState,
    Viewport,
)
from .suggestions import (
    CandidatePage,
    LinkSuggestion,
    SuggestionItem,
    TagGenerationResult,
    TagSuggestion,
    confidence_label,
)

__all__ = [
    "AutoTagPhase",
    "AutoTagState",
    "CandidatePage",
    "EditSession",
    "LinkSuggestion",
    "PopupPlacement",
    "SuggestionItem",
    "SuggestionPhase",
    "SuggestionSet",
    "TagGenerationResult",
    "TagSuggestion",
    "TriggerContext",
    "TypingState",
    "Viewport",
    "confidence_label",
]
