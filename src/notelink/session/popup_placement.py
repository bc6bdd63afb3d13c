"""Geometry for the link suggestion popup."""

from __future__ import annotations

from ..editor.buffer import ScreenPoint
from ..models.session_models import PopupPlacement, Viewport

POPUP_WIDTH = 380.0
POPUP_HEIGHT = 400.0
POPUP_MARGIN = 10.0
CURSOR_OFFSET_Y = 25.0


def compute_popup_placement(
    cursor: ScreenPoint,
    viewport: Viewport,
    *,
    width: float = POPUP_WIDTH,
    height: float = POPUP_HEIGHT,
    margin: float = POPUP_MARGIN,
) -> PopupPlacement:
    """Place the popup below the cursor, flipping above when it does not fit.

    The popup flips only when the space below is too small *and* the space
    above is large enough; otherwise it stays below even if it overflows. The
    horizontal position is clamped to keep ``margin`` pixels from both edges.
    """

    space_below = viewport.height - cursor.y
    space_above = cursor.y
    needed = height + margin

    if space_below < needed and space_above > needed:
        y = cursor.y - height - margin
        is_above = True
    else:
        y = cursor.y + CURSOR_OFFSET_Y
        is_above = False

    max_x = viewport.width - width - margin
    x = max(margin, min(cursor.x, max_x))
    return PopupPlacement(x=x, y=y, is_above=is_above)


__all__ = [
    "CURSOR_OFFSET_Y",
    "POPUP_HEIGHT",
    "POPUP_MARGIN",
    "POPUP_WIDTH",
    "compute_popup_placement",
]
