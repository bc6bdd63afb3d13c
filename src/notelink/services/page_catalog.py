"""In-memory list of workspace pages offered as link candidates."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from ..models.suggestions import CandidatePage

LOGGER = logging.getLogger(__name__)


class PageCatalog:
    """Synchronously readable candidate page source.

    The page collection keeps this catalog current; the suggestion engine
    reads it without awaiting anything so candidates render immediately.
    """

    def __init__(self, pages: Iterable[CandidatePage] = ()) -> None:
        self._pages: list[CandidatePage] = []
        self.replace(pages)

    def replace(self, pages: Iterable[CandidatePage]) -> None:
        seen: set[str] = set()
        unique: list[CandidatePage] = []
        for page in pages:
            if not page.id or page.id in seen:
                continue
            seen.add(page.id)
            unique.append(page)
        self._pages = unique
        LOGGER.debug("Page catalog now holds %d page(s)", len(unique))

    def replace_from_payload(self, payload: Iterable[Mapping]) -> None:
        self.replace(CandidatePage.from_payload(item) for item in payload)

    def candidates(self, *, exclude_id: str | None = None) -> list[CandidatePage]:
        return [page for page in self._pages if page.id != exclude_id]

    def __len__(self) -> int:
        return len(self._pages)


__all__ = ["PageCatalog"]
