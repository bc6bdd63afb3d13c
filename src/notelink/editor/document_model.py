"""Dataclasses representing the block document held by the edit buffer."""

from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Iterator, Mapping, Sequence

BLOCK_SEPARATOR = "\n"


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _new_block_id() -> str:
    return uuid.uuid4().hex[:12]


@lru_cache(maxsize=16)
def marker_pattern(marker: str) -> re.Pattern[str]:
    """Return the case-insensitive, whole-word pattern matching ``marker``."""

    return re.compile(rf"(?<!\w){re.escape(marker)}(?!\w)", re.IGNORECASE)


def find_marker_offsets(text: str, marker: str) -> list[int]:
    """Return the start offset of every whole-word occurrence of ``marker``."""

    if not marker:
        return []
    return [match.start() for match in marker_pattern(marker).finditer(text)]


@dataclass(slots=True)
class InlineContent:
    """A run of inline text, optionally wrapped in a link."""

    text: str = ""
    href: str | None = None

    def slice(self, start: int, end: int) -> InlineContent:
        return InlineContent(text=self.text[start:end], href=self.href)

    def to_dict(self) -> dict[str, Any]:
        if self.href is None:
            return {"type": "text", "text": self.text}
        return {
            "type": "link",
            "href": self.href,
            "content": [{"type": "text", "text": self.text}],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> InlineContent:
        if payload.get("type") == "link":
            inner = payload.get("content") or []
            if isinstance(inner, str):
                text = inner
            else:
                text = "".join(str(item.get("text", "")) for item in inner if isinstance(item, Mapping))
            return cls(text=text, href=str(payload.get("href") or ""))
        return cls(text=str(payload.get("text", "")))


@dataclass(slots=True)
class Block:
    """One block of the document tree (paragraph, heading, list item...)."""

    type: str = "paragraph"
    content: list[InlineContent] = field(default_factory=list)
    props: dict[str, Any] = field(default_factory=dict)
    children: list[Block] = field(default_factory=list)
    id: str = field(default_factory=_new_block_id)

    @classmethod
    def paragraph(cls, text: str = "", **kwargs: Any) -> Block:
        return cls(type="paragraph", content=[InlineContent(text)] if text else [], **kwargs)

    @classmethod
    def heading(cls, text: str, level: int = 1, **kwargs: Any) -> Block:
        return cls(type="heading", content=[InlineContent(text)], props={"level": level}, **kwargs)

    @property
    def text(self) -> str:
        return "".join(item.text for item in self.content)

    @property
    def is_heading(self) -> bool:
        return self.type == "heading"

    def replace_text(self, start: int, end: int, replacement: Sequence[InlineContent]) -> None:
        """Replace the block-local character range ``[start, end)`` with ``replacement``."""

        if start < 0 or end < start or end > len(self.text):
            raise ValueError(f"invalid range {start}:{end} for block {self.id}")
        before: list[InlineContent] = []
        after: list[InlineContent] = []
        pos = 0
        for item in self.content:
            item_start = pos
            item_end = pos + len(item.text)
            pos = item_end
            if item_end <= start:
                before.append(item)
                continue
            if item_start >= end:
                after.append(item)
                continue
            if item_start < start:
                before.append(item.slice(0, start - item_start))
            if item_end > end:
                after.append(item.slice(end - item_start, len(item.text)))
        self.content = _merge_runs([*before, *replacement, *after])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "props": dict(self.props),
            "content": [item.to_dict() for item in self.content],
            "children": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Block:
        raw_content = payload.get("content") or []
        if isinstance(raw_content, str):
            content = [InlineContent(raw_content)] if raw_content else []
        else:
            content = [InlineContent.from_dict(item) for item in raw_content if isinstance(item, Mapping)]
        children = [cls.from_dict(child) for child in payload.get("children") or [] if isinstance(child, Mapping)]
        return cls(
            type=str(payload.get("type") or "paragraph"),
            content=content,
            props=dict(payload.get("props") or {}),
            children=children,
            id=str(payload.get("id") or _new_block_id()),
        )


@dataclass(slots=True, frozen=True)
class BlockSpan:
    """Location of a flattened block inside the document's plain text."""

    block: Block
    index: int
    start: int
    end: int
    depth: int = 0

    def contains(self, offset: int) -> bool:
        return self.start <= offset <= self.end


@dataclass(slots=True)
class DocumentState:
    """Full snapshot of a workspace page as held by the edit buffer."""

    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    title: str = "Untitled"
    blocks: list[Block] = field(default_factory=list)
    version_id: int = 1
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_text(cls, text: str, **kwargs: Any) -> DocumentState:
        """Build a document with one paragraph per line of ``text``."""

        blocks = [Block.paragraph(line) for line in text.split(BLOCK_SEPARATOR)]
        return cls(blocks=blocks, **kwargs)

    @classmethod
    def from_content(cls, content: Sequence[Mapping[str, Any]], **kwargs: Any) -> DocumentState:
        return cls(blocks=[Block.from_dict(item) for item in content], **kwargs)

    def iter_blocks(self) -> Iterator[tuple[Block, int]]:
        """Yield ``(block, depth)`` pairs depth-first in document order."""

        stack: list[tuple[Block, int]] = [(block, 0) for block in reversed(self.blocks)]
        while stack:
            block, depth = stack.pop()
            yield block, depth
            stack.extend((child, depth + 1) for child in reversed(block.children))

    def block_spans(self) -> list[BlockSpan]:
        spans: list[BlockSpan] = []
        offset = 0
        for index, (block, depth) in enumerate(self.iter_blocks()):
            length = len(block.text)
            spans.append(BlockSpan(block=block, index=index, start=offset, end=offset + length, depth=depth))
            offset += length + len(BLOCK_SEPARATOR)
        return spans

    def plain_text(self) -> str:
        return BLOCK_SEPARATOR.join(block.text for block, _ in self.iter_blocks())

    def locate(self, offset: int) -> BlockSpan | None:
        """Return the span of the block containing plain-text ``offset``."""

        for span in self.block_spans():
            if span.contains(offset):
                return span
        return None

    def content(self) -> list[dict[str, Any]]:
        """Return the serialisable block tree sent to the persistence gateway."""

        return [block.to_dict() for block in self.blocks]

    def touch(self) -> None:
        self.version_id += 1
        self.updated_at = _utcnow()

    def clone(self) -> DocumentState:
        return copy.deepcopy(self)


def _merge_runs(items: Sequence[InlineContent]) -> list[InlineContent]:
    merged: list[InlineContent] = []
    for item in items:
        if not item.text:
            continue
        if merged and merged[-1].href == item.href and item.href is None:
            merged[-1] = InlineContent(text=merged[-1].text + item.text)
            continue
        merged.append(InlineContent(text=item.text, href=item.href))
    return merged


__all__ = [
    "BLOCK_SEPARATOR",
    "Block",
    "BlockSpan",
    "DocumentState",
    "InlineContent",
    "find_marker_offsets",
    "marker_pattern",
]
