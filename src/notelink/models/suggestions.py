"""Payload models exchanged with the suggestion and tag services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


def confidence_label(confidence: float) -> str:
    """Return the badge label shown next to an AI suggestion."""

    if confidence >= 0.8:
        return "High"
    if confidence >= 0.6:
        return "Medium"
    return "Low"


@dataclass(slots=True, frozen=True)
class LinkSuggestion:
    """An AI-ranked page the user may link to.

    Attributes:
        text: The span of the context text that matched the page.
        page_id: Identifier of the suggested page.
        page_title: Title rendered in the popup and used as link text.
        confidence: Score in ``[0, 1]``.
        start_index: Start of ``text`` within the submitted context.
        end_index: End of ``text`` within the submitted context.
        summary: Optional page summary.
        relevance_score: Optional secondary ranking score.
    """

    text: str
    page_id: str
    page_title: str
    confidence: float = 0.0
    start_index: int = 0
    end_index: int = 0
    summary: str | None = None
    relevance_score: float | None = None

    @property
    def id(self) -> str:
        return self.page_id

    @property
    def title(self) -> str:
        return self.page_title

    @property
    def label(self) -> str:
        return confidence_label(self.confidence)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> LinkSuggestion:
        return cls(
            text=str(payload.get("text") or ""),
            page_id=str(payload.get("pageId") or payload.get("page_id") or ""),
            page_title=str(payload.get("pageTitle") or payload.get("page_title") or ""),
            confidence=float(payload.get("confidence") or 0.0),
            start_index=int(payload.get("startIndex") or payload.get("start_index") or 0),
            end_index=int(payload.get("endIndex") or payload.get("end_index") or 0),
            summary=payload.get("summary") or None,
            relevance_score=_optional_float(payload.get("relevanceScore", payload.get("relevance_score"))),
        )


@dataclass(slots=True, frozen=True)
class CandidatePage:
    """A workspace page eligible to be linked."""

    id: str
    title: str
    icon: str | None = None
    summary: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CandidatePage:
        return cls(
            id=str(payload.get("id") or ""),
            title=str(payload.get("title") or "Untitled"),
            icon=payload.get("icon_url") or payload.get("icon") or None,
            summary=payload.get("summary") or None,
        )


SuggestionItem = LinkSuggestion | CandidatePage


@dataclass(slots=True, frozen=True)
class TagSuggestion:
    """A tag proposed by the tag service."""

    name: str
    color: str = "gray"
    confidence: float = 0.0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TagSuggestion:
        return cls(
            name=str(payload.get("name") or "").strip(),
            color=str(payload.get("color") or "gray"),
            confidence=float(payload.get("confidence") or 0.0),
        )


@dataclass(slots=True, frozen=True)
class TagGenerationResult:
    """Tags returned by the tag service together with its reasoning."""

    tags: tuple[TagSuggestion, ...] = field(default_factory=tuple)
    reasoning: str = ""

    def without(self, existing_names: set[str] | frozenset[str]) -> TagGenerationResult:
        """Drop tags whose name (case-insensitive) is already on the page."""

        lowered = {name.lower() for name in existing_names}
        kept = tuple(tag for tag in self.tags if tag.name and tag.name.lower() not in lowered)
        return TagGenerationResult(tags=kept, reasoning=self.reasoning)


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "CandidatePage",
    "LinkSuggestion",
    "SuggestionItem",
    "TagGenerationResult",
    "TagSuggestion",
    "confidence_label",
]
