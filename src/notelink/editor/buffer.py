"""Edit buffer interface plus the in-memory buffer used by hosts and tests.

The editing surface owns the buffer. The session coordinator only ever holds a
:class:`BufferHandle`, which resolves to ``None`` once the editor is torn down
so every coordinator component can no-op instead of raising.
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass
from typing import Callable, Literal, Protocol, runtime_checkable

from .document_model import Block, DocumentState, InlineContent, find_marker_offsets

LOGGER = logging.getLogger(__name__)

ChangeOrigin = Literal["user", "program"]
ChangeListener = Callable[["BufferChange"], None]
FocusListener = Callable[[bool], None]
Unsubscribe = Callable[[], None]


@dataclass(slots=True, frozen=True)
class ScreenPoint:
    """Cursor position in viewport pixels."""

    x: float
    y: float


@dataclass(slots=True, frozen=True)
class BufferChange:
    """Change notification delivered to buffer listeners.

    Attributes:
        document_id: The document the change applies to.
        version_id: Document version after the change.
        origin: ``"user"`` for direct input, ``"program"`` for coordinator writes.
    """

    document_id: str
    version_id: int
    origin: ChangeOrigin = "user"


@runtime_checkable
class EditBuffer(Protocol):
    """Interface the editing surface exposes to the session coordinator."""

    def document(self) -> DocumentState:
        ...

    def cursor_offset(self) -> int:
        ...

    def cursor_screen_position(self) -> ScreenPoint | None:
        ...

    def add_change_listener(self, listener: ChangeListener) -> Unsubscribe:
        ...

    def add_focus_listener(self, listener: FocusListener) -> Unsubscribe:
        ...

    def replace_marker_with_link(self, marker: str, near_offset: int, *, title: str, href: str) -> bool:
        ...

    def insert_link(self, offset: int, *, title: str, href: str) -> bool:
        ...

    def remove_marker(self, marker: str, near_offset: int | None = None) -> bool:
        ...


class BufferHandle:
    """Weak, detachable reference to the editor's buffer."""

    __slots__ = ("_ref", "__weakref__")

    def __init__(self, buffer: EditBuffer | None) -> None:
        self._ref: weakref.ReferenceType[EditBuffer] | None = weakref.ref(buffer) if buffer is not None else None

    def get(self) -> EditBuffer | None:
        if self._ref is None:
            return None
        return self._ref()

    @property
    def available(self) -> bool:
        return self.get() is not None

    def rebind(self, buffer: EditBuffer | None) -> None:
        """Point the handle at another buffer; holders of the handle follow along."""

        self._ref = weakref.ref(buffer) if buffer is not None else None

    def detach(self) -> None:
        self._ref = None


class InMemoryEditBuffer:
    """Reference :class:`EditBuffer` holding a :class:`DocumentState` in memory.

    Mutations are applied synchronously and listeners are notified before the
    mutating call returns, mirroring how a rich-text editor reports changes.
    """

    def __init__(self, document: DocumentState | None = None) -> None:
        self._document = document or DocumentState(blocks=[Block.paragraph()])
        if not self._document.blocks:
            self._document.blocks.append(Block.paragraph())
        self._cursor = len(self._document.plain_text())
        self._screen: ScreenPoint | None = None
        self._focused = False
        self._change_listeners: list[ChangeListener] = []
        self._focus_listeners: list[FocusListener] = []

    # ------------------------------------------------------------------
    # EditBuffer protocol
    # ------------------------------------------------------------------
    def document(self) -> DocumentState:
        return self._document

    def cursor_offset(self) -> int:
        return self._cursor

    def cursor_screen_position(self) -> ScreenPoint | None:
        return self._screen

    # The returned callables close over the listener list only, so holding one
    # does not keep the buffer alive.
    def add_change_listener(self, listener: ChangeListener) -> Unsubscribe:
        listeners = self._change_listeners
        listeners.append(listener)
        return lambda: _discard(listeners, listener)

    def add_focus_listener(self, listener: FocusListener) -> Unsubscribe:
        listeners = self._focus_listeners
        listeners.append(listener)
        return lambda: _discard(listeners, listener)

    def replace_marker_with_link(self, marker: str, near_offset: int, *, title: str, href: str) -> bool:
        offset = self._nearest_marker(marker, near_offset)
        if offset is None:
            LOGGER.debug("No %r marker left near offset %d; link not inserted", marker, near_offset)
            return False
        self._replace_range(offset, offset + len(marker), [InlineContent(title, href=href)])
        self._cursor = offset + len(title)
        self._notify("program")
        return True

    def insert_link(self, offset: int, *, title: str, href: str) -> bool:
        if self._document.locate(offset) is None:
            LOGGER.debug("Offset %d is outside the document; link not inserted", offset)
            return False
        self._replace_range(offset, offset, [InlineContent(title, href=href)])
        self._cursor = offset + len(title)
        self._notify("program")
        return True

    def remove_marker(self, marker: str, near_offset: int | None = None) -> bool:
        text = self._document.plain_text()
        anchor = near_offset if near_offset is not None else self._cursor
        offset = self._nearest_marker(marker, anchor, text=text)
        if offset is None:
            return False
        end = offset + len(marker)
        # Swallow one adjacent space so "need a @link here" becomes "need a here".
        if end < len(text) and text[end] == " " and (offset == 0 or text[offset - 1] == " "):
            end += 1
        self._replace_range(offset, end, [])
        if self._cursor > offset:
            self._cursor = max(offset, self._cursor - (end - offset))
        self._notify("program")
        return True

    # ------------------------------------------------------------------
    # Editing surface helpers
    # ------------------------------------------------------------------
    @property
    def focused(self) -> bool:
        return self._focused

    def focus(self) -> None:
        if self._focused:
            return
        self._focused = True
        self._notify_focus(True)

    def blur(self) -> None:
        if not self._focused:
            return
        self._focused = False
        self._notify_focus(False)

    def set_cursor(self, offset: int, screen: ScreenPoint | None = None) -> None:
        self._cursor = max(0, min(offset, len(self._document.plain_text())))
        if screen is not None:
            self._screen = screen

    def type_text(self, text: str) -> None:
        """Insert ``text`` at the cursor as direct user input."""

        self._replace_range(self._cursor, self._cursor, [InlineContent(text)])
        self._cursor += len(text)
        self._notify("user")

    def delete_backward(self, count: int = 1) -> None:
        start = max(0, self._cursor - count)
        if start == self._cursor:
            return
        self._replace_range(start, self._cursor, [])
        self._cursor = start
        self._notify("user")

    def append_block(self, block: Block, *, origin: str = "user") -> None:
        self._document.blocks.append(block)
        self._document.touch()
        self._cursor = len(self._document.plain_text())
        self._notify("program" if origin == "program" else "user")

    def replace_blocks(self, blocks: list[Block], *, origin: str = "user") -> None:
        """Replace the whole block tree, as a paste-over or undo would."""

        self._document.blocks = list(blocks) or [Block.paragraph()]
        self._document.touch()
        self._cursor = min(self._cursor, len(self._document.plain_text()))
        self._notify("program" if origin == "program" else "user")

    def load(self, document: DocumentState) -> None:
        """Swap in another document without notifying change listeners."""

        self._document = document
        self._cursor = len(document.plain_text())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _nearest_marker(self, marker: str, anchor: int, *, text: str | None = None) -> int | None:
        """Return the marker nearest ``anchor`` within the block containing it."""

        span = self._document.locate(anchor)
        if span is None:
            return None
        if text is None:
            text = self._document.plain_text()
        offsets = [offset for offset in find_marker_offsets(text, marker) if span.start <= offset <= span.end]
        if not offsets:
            return None
        return min(offsets, key=lambda candidate: (abs(candidate - anchor), candidate))

    def _replace_range(self, start: int, end: int, replacement: list[InlineContent]) -> None:
        span = self._document.locate(start)
        if span is None:
            raise ValueError(f"offset {start} is outside the document")
        local_start = start - span.start
        local_end = min(end, span.end) - span.start
        span.block.replace_text(local_start, local_end, replacement)
        self._document.touch()

    def _notify(self, origin: ChangeOrigin) -> None:
        change = BufferChange(
            document_id=self._document.document_id,
            version_id=self._document.version_id,
            origin=origin,
        )
        for listener in list(self._change_listeners):
            listener(change)

    def _notify_focus(self, focused: bool) -> None:
        for listener in list(self._focus_listeners):
            listener(focused)


def _discard(listeners: list, listener: object) -> None:
    try:
        listeners.remove(listener)
    except ValueError:
        pass


__all__ = [
    "BufferChange",
    "BufferHandle",
    "ChangeOrigin",
    "EditBuffer",
    "InMemoryEditBuffer",
    "ScreenPoint",
]
