"""Page ownership for fields dropped while dragging across a multi-page view."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)

# Snapped fields sit this far inside the page edge so the next resolve pass
# sees them fully contained.
SNAP_INSET = 1.0


@dataclass(frozen=True)
class PageBand:
    """Vertical extent of a rendered page, in absolute document pixels."""

    top: float
    height: float

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass(frozen=True)
class Placement:
    x: float
    y: float
    page_number: int


@dataclass(frozen=True)
class SnapResult:
    x: float
    y: float
    page_number: int
    snapped: bool


def resolve_page_snap(
    proposed_x: float,
    proposed_y: float,
    height: float,
    previous: Placement,
    pages: Sequence[PageBand | None],
    container_top: float = 0.0,
) -> SnapResult:
    """Decide which page owns a dragged field and where it ends up.

    ``proposed_y`` is relative to the document container whose absolute top
    (scroll offset applied) is ``container_top``. A field fully inside a page
    passes through; a field straddling a page edge is moved flush against the
    nearer edge of the first page it overlaps. Missing page entries are
    skipped, and when no page matches the previous placement is kept.
    """
    field_top = proposed_y + container_top
    field_bottom = field_top + height

    for index, page in enumerate(pages):
        if page is None:
            continue
        if field_top >= page.top and field_bottom <= page.bottom:
            return SnapResult(proposed_x, proposed_y, index + 1, snapped=False)

        if field_bottom > page.top and field_top < page.bottom:
            dist_to_top = abs(field_top - page.top)
            dist_to_bottom = abs(field_bottom - page.bottom)
            if dist_to_top < dist_to_bottom:
                new_y = page.top - container_top + SNAP_INSET
            else:
                new_y = page.bottom - height - container_top - SNAP_INSET
            logger.debug(
                "Snapped field from y=%.1f to y=%.1f on page %d",
                proposed_y,
                new_y,
                index + 1,
            )
            return SnapResult(proposed_x, new_y, index + 1, snapped=True)

    logger.debug("No page matched drop at y=%.1f; keeping previous placement", proposed_y)
    return SnapResult(previous.x, previous.y, previous.page_number, snapped=False)
