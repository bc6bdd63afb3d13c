"""Edit-session coordination: persistence, link suggestions and auto-tagging."""

from .auto_tag import AutoTagTimer
from .content_sync import ContentSyncScheduler
from .coordinator import EditSessionCoordinator
from .events import (
    AutoTagArmed,
    AutoTagCancelled,
    AutoTagFired,
    ContentSaved,
    ContentSaveFailed,
    Event,
    EventBus,
    LinkCleanupRequested,
    LinkTriggerDetected,
    SessionStateChanged,
    SuggestionAccepted,
    SuggestionsLoaded,
    TagGenerationFailed,
    TagsSuggested,
)
from .popup_placement import compute_popup_placement
from .store import SessionStore
from .suggestion_engine import SuggestionEngine
from .timers import BackgroundTasks, CancellableTimer, TimerScheduler
from .trigger_detector import TriggerDetector
from .typing_state import TypingTracker

__all__ = [
    "AutoTagArmed",
    "AutoTagCancelled",
    "AutoTagFired",
    "AutoTagTimer",
    "BackgroundTasks",
    "CancellableTimer",
    "ContentSaveFailed",
    "ContentSaved",
    "ContentSyncScheduler",
    "EditSessionCoordinator",
    "Event",
    "EventBus",
    "LinkCleanupRequested",
    "LinkTriggerDetected",
    "SessionStateChanged",
    "SessionStore",
    "SuggestionAccepted",
    "SuggestionEngine",
    "SuggestionsLoaded",
    "TagGenerationFailed",
    "TagsSuggested",
    "TimerScheduler",
    "TriggerDetector",
    "TypingTracker",
    "compute_popup_placement",
]
