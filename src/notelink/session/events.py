"""Session-scoped event bus and the signals exchanged by coordinator components.

Each edit session owns one :class:`EventBus`; nothing here is process-wide.
Components publish typed events instead of calling each other, and the
editor host subscribes to the outbound signals (accept and cleanup).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

from ..models.suggestions import TagSuggestion

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all session events.

    Subclasses use ``@dataclass(slots=True)`` and carry plain values only.
    """


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# State events
# =============================================================================


@dataclass(slots=True)
class SessionStateChanged(Event):
    """Emitted by the session store after every typed mutation.

    Attributes:
        section: Which part of the state changed (``"edit_session"``,
            ``"suggestions"``, ``"auto_tag"`` or ``"typing"``).
        fields: Names of the attributes that were written.
    """

    section: str
    fields: tuple[str, ...] = ()


_QUIET_EVENT_TYPES.add(SessionStateChanged)


# =============================================================================
# Persistence events
# =============================================================================


@dataclass(slots=True)
class ContentSaved(Event):
    document_id: str
    request_id: int


@dataclass(slots=True)
class ContentSaveFailed(Event):
    """Emitted when a save request fails; no retry is scheduled."""

    document_id: str
    request_id: int
    error: str


# =============================================================================
# Linking events
# =============================================================================


@dataclass(slots=True)
class LinkTriggerDetected(Event):
    marker_offset: int
    strategy: str


@dataclass(slots=True)
class SuggestionsLoaded(Event):
    """Emitted when the latest suggestion fetch settles.

    Attributes:
        token: Sequence token of the request that produced the data.
        ai_count: Number of AI suggestions now displayed.
        candidate_count: Number of candidate pages displayed.
        error: Message shown in the popup when the fetch failed.
    """

    token: int
    ai_count: int
    candidate_count: int
    error: str | None = None


@dataclass(slots=True)
class SuggestionAccepted(Event):
    """Outbound signal: the user linked the trigger marker to a page."""

    page_id: str
    page_title: str


@dataclass(slots=True)
class LinkCleanupRequested(Event):
    """Outbound signal: the buffer should drop any residual trigger marker."""

    remove_trigger_marker: bool = True
    marker_offset: int | None = None


# =============================================================================
# Auto-tag events
# =============================================================================


@dataclass(slots=True)
class AutoTagArmed(Event):
    waiting_for_typing: bool


@dataclass(slots=True)
class AutoTagCancelled(Event):
    reason: str


@dataclass(slots=True)
class AutoTagFired(Event):
    """Emitted when the countdown completes.

    ``skipped`` is true when the page text was too short to tag.
    """

    document_id: str
    skipped: bool = False


@dataclass(slots=True)
class TagsSuggested(Event):
    document_id: str
    tags: tuple[TagSuggestion, ...]
    reasoning: str = ""


@dataclass(slots=True)
class TagGenerationFailed(Event):
    document_id: str
    error: str


class EventBus(Generic[E]):
    """A typed publish-subscribe bus scoped to one edit session.

    Handlers are stored as weak references where possible (bound methods) so
    a torn-down component never keeps receiving events.

    Thread Safety:
        Not thread-safe. All operations happen on the session's event loop.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register a handler to receive events of exactly ``event_type``.

        Subscribing the same handler twice results in two invocations.
        """
        self._handlers[event_type].append(_HandlerRef.create(handler))
        LOGGER.debug("Subscribed handler %s to event type %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                LOGGER.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` synchronously to its handlers in registration order.

        A handler that raises is logged and the remaining handlers still run.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if not handlers:
            if not is_quiet:
                LOGGER.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            LOGGER.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                LOGGER.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for handler_ref in dead:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()
        LOGGER.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for plain callables."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "AutoTagArmed",
    "AutoTagCancelled",
    "AutoTagFired",
    "ContentSaveFailed",
    "ContentSaved",
    "Event",
    "EventBus",
    "Handler",
    "LinkCleanupRequested",
    "LinkTriggerDetected",
    "SessionStateChanged",
    "SuggestionAccepted",
    "SuggestionsLoaded",
    "TagGenerationFailed",
    "TagsSuggested",
]
