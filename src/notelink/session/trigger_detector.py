"""Detection of the manual link marker and extraction of its surrounding context."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from ..editor.buffer import ScreenPoint
from ..editor.document_model import BLOCK_SEPARATOR, BlockSpan, DocumentState, find_marker_offsets, marker_pattern
from ..models.session_models import ContextStrategy, TriggerContext
from ..services.settings import LinkingSettings

LOGGER = logging.getLogger(__name__)


class TriggerDetector:
    """Scans a document snapshot for the trigger marker.

    Scanning is synchronous, linear in the document length and free of side
    effects, so it can run on every change notification.
    """

    def __init__(self, settings: LinkingSettings | None = None) -> None:
        self._settings = settings or LinkingSettings()

    @property
    def marker(self) -> str:
        return self._settings.trigger_marker

    def scan(
        self,
        document: DocumentState,
        cursor_offset: int | None = None,
        *,
        cursor_screen_position: ScreenPoint | None = None,
        engine_active: bool = False,
        known_markers: Mapping[str, int] | None = None,
    ) -> TriggerContext | None:
        """Return a :class:`TriggerContext` when an eligible marker is present.

        Args:
            document: Snapshot of the buffer.
            cursor_offset: Plain-text cursor offset used to pick among markers.
            cursor_screen_position: Forwarded to the context for popup placement.
            engine_active: When true the suggestion popup is busy and the scan
                is skipped.
            known_markers: Per-block marker counts from the previous snapshot
                (see :meth:`marker_counts`). When given, only markers in blocks
                whose count grew are eligible, so markers that were already in
                the document never fire. Without it, only a marker in the
                cursor's block is eligible.
        """

        if engine_active:
            return None
        offsets = self._eligible_offsets(document, known_markers)
        if not offsets:
            return None
        marker_offset = self.choose_marker(
            document,
            offsets,
            cursor_offset,
            cursor_block_only=known_markers is None,
        )
        if marker_offset is None:
            return None
        text = document.plain_text()
        extracted, strategy = self.extract_context(document, marker_offset, text=text)
        LOGGER.debug(
            "Trigger marker at %d (%d candidates, strategy=%s, %d chars)",
            marker_offset,
            len(offsets),
            strategy,
            len(extracted),
        )
        return TriggerContext(
            marker_offset=marker_offset,
            extracted_text=extracted,
            cursor_screen_position=cursor_screen_position,
            strategy=strategy,
        )

    def marker_counts(self, document: DocumentState) -> dict[str, int]:
        """Return the number of markers in each block, keyed by block id."""

        counts: dict[str, int] = {}
        for span in document.block_spans():
            found = len(find_marker_offsets(span.block.text, self.marker))
            if found:
                counts[span.block.id] = counts.get(span.block.id, 0) + found
        return counts

    def context_at(
        self,
        document: DocumentState,
        offset: int,
        *,
        cursor_screen_position: ScreenPoint | None = None,
    ) -> TriggerContext:
        """Build a context around ``offset`` without requiring a marker."""

        extracted, strategy = self.extract_context(document, offset)
        return TriggerContext(
            marker_offset=offset,
            extracted_text=extracted,
            cursor_screen_position=cursor_screen_position,
            strategy=strategy,
            marker_present=False,
        )

    def choose_marker(
        self,
        document: DocumentState,
        offsets: Sequence[int],
        cursor_offset: int | None,
        *,
        cursor_block_only: bool = False,
    ) -> int | None:
        """Prefer the marker nearest the cursor in its block, otherwise the last one.

        With ``cursor_block_only`` a cursor outside every marker's block yields
        ``None``.
        """

        if cursor_offset is not None:
            span = document.locate(cursor_offset)
            if span is not None:
                in_block = [offset for offset in offsets if span.start <= offset <= span.end]
                if in_block:
                    return min(in_block, key=lambda offset: (abs(offset - cursor_offset), offset))
            if cursor_block_only:
                return None
        return offsets[-1]

    def extract_context(
        self,
        document: DocumentState,
        marker_offset: int,
        *,
        text: str | None = None,
    ) -> tuple[str, ContextStrategy]:
        """Return ``(context, strategy)`` using the first tier that yields text.

        1. ``blocks``: the enclosing block, up to ``context_blocks`` blocks on
           each side, and the headings preceding that window.
        2. ``window``: ``context_chars`` characters on each side of the marker.
        3. ``leading``: the first ``fallback_chars`` characters of the document.
        """

        settings = self._settings
        limit = max(1, settings.max_context_chars)
        if text is None:
            text = document.plain_text()

        blocks_text = self._block_context(document, marker_offset, limit)
        if self._meaningful(blocks_text):
            return blocks_text, "blocks"

        start = max(0, marker_offset - settings.context_chars)
        end = min(len(text), marker_offset + len(self.marker) + settings.context_chars)
        window_text = text[start:end].strip()
        if self._meaningful(window_text):
            return window_text[:limit], "window"

        return text[: settings.fallback_chars].strip()[:limit], "leading"

    def _block_context(self, document: DocumentState, marker_offset: int, limit: int) -> str:
        spans = document.block_spans()
        index = next((i for i, span in enumerate(spans) if span.contains(marker_offset)), None)
        if index is None:
            return ""
        radius = max(0, self._settings.context_blocks)
        first = max(0, index - radius)
        window = spans[first : index + radius + 1]
        headings = [span.block.text.strip() for span in spans[:first] if span.block.is_heading and span.block.text.strip()]

        body, marker_local = _join_window(window, spans[index], marker_offset)
        if len(body) > limit:
            start = min(max(0, marker_local - limit // 2), len(body) - limit)
            return body[start : start + limit].strip()

        kept: list[str] = []
        budget = limit - len(body)
        for heading in reversed(headings):
            cost = len(heading) + len(BLOCK_SEPARATOR)
            if cost > budget:
                break
            kept.insert(0, heading)
            budget -= cost
        return BLOCK_SEPARATOR.join([*kept, body]).strip()

    def _eligible_offsets(self, document: DocumentState, known_markers: Mapping[str, int] | None) -> list[int]:
        offsets: list[int] = []
        for span in document.block_spans():
            local = find_marker_offsets(span.block.text, self.marker)
            if not local:
                continue
            if known_markers is not None and len(local) <= known_markers.get(span.block.id, 0):
                continue
            offsets.extend(span.start + offset for offset in local)
        return offsets

    def _meaningful(self, text: str) -> bool:
        return bool(marker_pattern(self.marker).sub("", text).strip())


def _join_window(window: Sequence[BlockSpan], anchor: BlockSpan, marker_offset: int) -> tuple[str, int]:
    """Join non-blank block texts; also return the marker offset inside the result."""

    parts: list[str] = []
    marker_local = 0
    length = 0
    for span in window:
        block_text = span.block.text
        if span is anchor:
            marker_local = length + (len(BLOCK_SEPARATOR) if parts else 0) + (marker_offset - span.start)
        elif not block_text.strip():
            continue
        if parts:
            length += len(BLOCK_SEPARATOR)
        parts.append(block_text)
        length += len(block_text)
    return BLOCK_SEPARATOR.join(parts), marker_local


__all__ = ["TriggerDetector"]
