from fastapi import APIRouter

from app.schemas.signing import PageSnapRequest, PageSnapResponse
from app.services.page_snap import PageBand, Placement, resolve_page_snap

router = APIRouter(prefix="/builder", tags=["builder"])


@router.post("/page-snap", response_model=PageSnapResponse)
def page_snap(payload: PageSnapRequest):
    pages = [
        PageBand(top=band.top, height=band.height) if band is not None else None
        for band in payload.pages
    ]
    previous = Placement(
        x=payload.previous_x if payload.previous_x is not None else payload.x,
        y=payload.previous_y if payload.previous_y is not None else payload.y,
        page_number=payload.page_number,
    )
    result = resolve_page_snap(
        payload.x,
        payload.y,
        payload.height,
        previous,
        pages,
        container_top=payload.container_top,
    )
    return PageSnapResponse(
        x=result.x, y=result.y, page_number=result.page_number, snapped=result.snapped
    )
