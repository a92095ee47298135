"""Mapping between editor viewport space and PDF user space.

Viewport space has its origin at the top-left of the rendered page element
and grows downward; PDF space has its origin at the bottom-left of the page
and grows upward, in points. Page rectangles are expressed in editor units
(viewport pixels divided by the zoom factor), which is how the editor
persists them alongside each field.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PageSize:
    width: float
    height: float


@dataclass(frozen=True)
class PageRect:
    width: float
    height: float
    left: float = 0.0
    top: float = 0.0


def _scales(page_rect: PageRect, page_size: PageSize, zoom: float) -> tuple[float, float]:
    if page_rect.width <= 0 or page_rect.height <= 0:
        raise ValueError("Page rectangle must have a positive width and height")
    if zoom <= 0:
        raise ValueError("Zoom factor must be positive")
    return page_size.width / page_rect.width, page_size.height / page_rect.height


def clamp_to_page(box: Box, page_size: PageSize) -> Box:
    """Move (and if needed shrink) a PDF-space box so it lies inside the page."""
    width = min(max(box.width, 0.0), page_size.width)
    height = min(max(box.height, 0.0), page_size.height)
    x = max(0.0, min(box.x, page_size.width - width))
    y = max(0.0, min(box.y, page_size.height - height))
    return Box(x, y, width, height)


def viewport_to_pdf(
    box: Box, page_rect: PageRect, page_size: PageSize, zoom: float = 1.0
) -> Box:
    """Convert a viewport-pixel box to a PDF-space box clamped to the page."""
    scale_x, scale_y = _scales(page_rect, page_size, zoom)
    rel_x = box.x / zoom - page_rect.left
    rel_y = box.y / zoom - page_rect.top
    width = box.width / zoom
    height = box.height / zoom
    pdf_box = Box(
        x=rel_x * scale_x,
        y=page_size.height - (rel_y + height) * scale_y,
        width=width * scale_x,
        height=height * scale_y,
    )
    return clamp_to_page(pdf_box, page_size)


def pdf_to_viewport(
    box: Box, page_rect: PageRect, page_size: PageSize, zoom: float = 1.0
) -> Box:
    """Inverse of :func:`viewport_to_pdf` for boxes that lie inside the page."""
    scale_x, scale_y = _scales(page_rect, page_size, zoom)
    width = box.width / scale_x
    height = box.height / scale_y
    rel_x = box.x / scale_x
    rel_y = (page_size.height - box.y) / scale_y - height
    return Box(
        x=(rel_x + page_rect.left) * zoom,
        y=(rel_y + page_rect.top) * zoom,
        width=width * zoom,
        height=height * zoom,
    )


def page_local_origin(
    x: float, y: float, page_rect: PageRect | None, tolerance: float = 1.0
) -> tuple[float, float]:
    """Return field coordinates relative to the page element.

    Older fields store page-local coordinates while newer ones store
    container coordinates next to the page rectangle they were dropped on.
    The rectangle offset is only subtracted when the result lands inside it.
    """
    if page_rect is None:
        return x, y
    candidate_x = x - page_rect.left
    candidate_y = y - page_rect.top
    within_x = -tolerance <= candidate_x <= page_rect.width + tolerance
    within_y = -tolerance <= candidate_y <= page_rect.height + tolerance
    if within_x and within_y:
        return candidate_x, candidate_y
    return x, y
