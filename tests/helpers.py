"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Mapping, Sequence

from notelink.editor.buffer import InMemoryEditBuffer
from notelink.editor.document_model import Block, DocumentState
from notelink.models.suggestions import CandidatePage, LinkSuggestion, TagGenerationResult, TagSuggestion
from notelink.services.errors import GatewayError


class ManualHandle:
    """Timer handle returned by :class:`ManualScheduler`."""

    __slots__ = ("when", "seq", "callback", "args", "cancelled")

    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic clock implementing ``call_later`` and ``time``.

    Callbacks run only from :meth:`advance`, in deadline order. Callbacks
    scheduled while advancing run in the same call when they fall due.

    Example:
        scheduler = ManualScheduler()
        timer = CancellableTimer(scheduler)
        timer.arm(1.0, callback)
        scheduler.advance(1.0)
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._seq = 0
        self._handles: list[ManualHandle] = []

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualHandle:
        self._seq += 1
        handle = ManualHandle(self._now + max(0.0, delay), self._seq, callback, args)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._handles if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [handle for handle in self._handles if not handle.cancelled and handle.when <= target]
            if not due:
                break
            handle = min(due, key=lambda item: (item.when, item.seq))
            self._handles.remove(handle)
            self._now = handle.when
            handle.callback(*handle.args)
        self._handles = [handle for handle in self._handles if not handle.cancelled]
        self._now = target


async def settle(rounds: int = 10) -> None:
    """Yield to the loop so freshly spawned tasks reach their first await."""

    for _ in range(rounds):
        await asyncio.sleep(0)


class StubPersistenceGateway:
    """Records saves; can fail or hold each request until released."""

    def __init__(self) -> None:
        self.saves: list[tuple[str, list[dict[str, Any]]]] = []
        self.failures: list[Exception] = []
        self.hold = False
        self.pending: list[asyncio.Future[None]] = []

    async def save(self, document_id: str, content: Sequence[Mapping[str, Any]]) -> None:
        self.saves.append((document_id, copy.deepcopy([dict(item) for item in content])))
        failure = self.failures.pop(0) if self.failures else None
        if self.hold:
            future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self.pending.append(future)
            await future
        if failure is not None:
            raise failure

    def release(self, index: int = 0) -> None:
        future = self.pending[index]
        if not future.done():
            future.set_result(None)

    def fail_next(self, message: str = "Service unavailable") -> None:
        self.failures.append(GatewayError(message=message, status_code=503))


class StubSuggestionGateway:
    """Returns canned suggestions, or holds requests for manual resolution."""

    def __init__(self, suggestions: Sequence[LinkSuggestion] = (), *, error: Exception | None = None) -> None:
        self.suggestions = list(suggestions)
        self.error = error
        self.hold = False
        self.calls: list[dict[str, Any]] = []
        self.pending: list[asyncio.Future[list[LinkSuggestion]]] = []

    async def generate_link_suggestions(
        self,
        text: str,
        workspace_id: str,
        page_id: str | None = None,
        context_window: int = 100,
    ) -> list[LinkSuggestion]:
        self.calls.append(
            {"text": text, "workspace_id": workspace_id, "page_id": page_id, "context_window": context_window}
        )
        if self.hold:
            future: asyncio.Future[list[LinkSuggestion]] = asyncio.get_running_loop().create_future()
            self.pending.append(future)
            return await future
        if self.error is not None:
            raise self.error
        return list(self.suggestions)


class StubTagGateway:
    """Records tag requests and returns a fixed result."""

    def __init__(
        self,
        result: TagGenerationResult | None = None,
        *,
        existing: set[str] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.result = result or TagGenerationResult(
            tags=(TagSuggestion(name="planning", confidence=0.9), TagSuggestion(name="Roadmap", confidence=0.7)),
            reasoning="Mentions quarterly goals",
        )
        self.existing = set(existing or ())
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def generate_tags(
        self,
        title: str,
        content: Sequence[Mapping[str, Any]],
        workspace_id: str,
    ) -> TagGenerationResult:
        self.calls.append({"title": title, "content": list(content), "workspace_id": workspace_id})
        if self.error is not None:
            raise self.error
        return self.result

    async def page_tag_names(self, page_id: str) -> set[str]:
        return set(self.existing)


def make_document(text: str = "", *, document_id: str = "page-1", title: str = "Weekly notes") -> DocumentState:
    return DocumentState.from_text(text, document_id=document_id, title=title)


def make_buffer(text: str = "", **kwargs: Any) -> InMemoryEditBuffer:
    return InMemoryEditBuffer(make_document(text, **kwargs))


def make_suggestion(page_id: str, title: str, confidence: float = 0.7) -> LinkSuggestion:
    return LinkSuggestion(text=title.lower(), page_id=page_id, page_title=title, confidence=confidence)


def make_pages(*titles: str) -> list[CandidatePage]:
    return [CandidatePage(id=f"page-{index + 2}", title=title) for index, title in enumerate(titles)]


def heading(text: str, level: int = 1) -> Block:
    return Block.heading(text, level)
