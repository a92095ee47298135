"""Draw structured field values onto PDF page overlays.

Each target page gets a :class:`PageCanvas`, a reportlab canvas sized like
the page's media box. Fields are drawn in the page's upright (as displayed)
coordinate system and mapped back to media space when the page carries a
``/Rotate`` entry, so output stays upright on rotated pages. The finished
overlay is merged onto the original page with pypdf.
"""

from __future__ import annotations

import base64
import binascii
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import getAscentDescent, stringWidth
from reportlab.pdfgen import canvas

from app.metrics import field_render_skips_total
from app.services.coordinates import Box, PageSize

logger = logging.getLogger(__name__)

TEXT_TYPES = frozenset({"text", "date"})
# "live_photo" is the older spelling of "realtime_photo" still found in saved fields.
IMAGE_TYPES = frozenset(
    {"signature", "initials", "stamp", "image", "realtime_photo", "live_photo"}
)
CHECKBOX_TYPE = "checkbox"
CHECKED_VALUES = frozenset({"true", "checked"})

TEXT_PADDING = 5.0
MAX_FONT_SIZE = 14.0
TEXT_COLOR = (0, 0, 0)
CHECK_COLOR = (0, 0.5, 0)


class FieldDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class FontSet:
    regular: str = "Helvetica"
    bold: str = "Helvetica-Bold"


@dataclass(frozen=True)
class RenderField:
    id: str
    type: str
    value: str | None
    box: Box


class PageCanvas:
    """Overlay drawing surface for one PDF page."""

    def __init__(
        self,
        media_width: float,
        media_height: float,
        rotation: int = 0,
        origin: tuple[float, float] = (0.0, 0.0),
    ):
        rotation = int(rotation) % 360
        if rotation % 90:
            raise ValueError(f"Unsupported page rotation: {rotation}")
        self.media_width = float(media_width)
        self.media_height = float(media_height)
        self.rotation = rotation
        self.origin = (float(origin[0]), float(origin[1]))
        self.operations = 0
        self._buffer = BytesIO()
        self.canvas = canvas.Canvas(
            self._buffer,
            pagesize=(self.origin[0] + self.media_width, self.origin[1] + self.media_height),
        )

    @property
    def size(self) -> PageSize:
        """Page size as displayed, i.e. after rotation."""
        if self.rotation in (90, 270):
            return PageSize(self.media_height, self.media_width)
        return PageSize(self.media_width, self.media_height)

    def to_media(self, x: float, y: float) -> tuple[float, float]:
        w, h = self.media_width, self.media_height
        if self.rotation == 90:
            mx, my = w - y, x
        elif self.rotation == 180:
            mx, my = w - x, h - y
        elif self.rotation == 270:
            mx, my = y, h - x
        else:
            mx, my = x, y
        return mx + self.origin[0], my + self.origin[1]

    @contextmanager
    def upright(self, box: Box):
        """Yield the canvas with (0, 0) at the box's lower-left corner, upright."""
        c = self.canvas
        c.saveState()
        try:
            c.translate(*self.to_media(box.x, box.y))
            if self.rotation:
                c.rotate(self.rotation)
            yield c
        finally:
            c.restoreState()
        self.operations += 1

    def finish(self) -> bytes | None:
        if not self.operations:
            return None
        self.canvas.showPage()
        self.canvas.save()
        return self._buffer.getvalue()


# ---------------------------------------------------------------------------
# Value decoding
# ---------------------------------------------------------------------------


def is_checked(value) -> bool:
    return isinstance(value, str) and value in CHECKED_VALUES


def _declared_format(header: str) -> str | None:
    lowered = header.lower()
    if "png" in lowered:
        return "PNG"
    if "jpeg" in lowered or "jpg" in lowered:
        return "JPEG"
    return None


def _open_image(payload: bytes, image_format: str) -> Image.Image:
    image = Image.open(BytesIO(payload), formats=[image_format])
    image.load()
    return image


def decode_image(value: str) -> Image.Image:
    """Decode a base64 data URI into a loaded Pillow image."""
    if not isinstance(value, str) or "," not in value:
        raise FieldDecodeError("Image value is not a data URI")
    header, encoded = value.split(",", 1)
    try:
        payload = base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise FieldDecodeError(f"Invalid base64 payload: {exc}") from exc
    if not payload:
        raise FieldDecodeError("Empty image payload")

    declared = _declared_format(header)
    attempts = [declared] if declared else ["PNG", "JPEG"]
    last_error: Exception | None = None
    for image_format in attempts:
        try:
            image = _open_image(payload, image_format)
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as exc:
            last_error = exc
            continue
        if image_format == "PNG":
            return image.convert("RGBA")
        return image.convert("RGB")
    raise FieldDecodeError(f"Unable to decode image ({', '.join(attempts)}): {last_error}")


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------


def _baseline(font: str, size: float, height: float) -> float:
    ascent, descent = getAscentDescent(font, size)
    return (height - (ascent + descent)) / 2


def fit_text(text: str, font: str, size: float, max_width: float) -> str:
    if max_width <= 0:
        return ""
    if stringWidth(text, font, size) <= max_width:
        return text
    end = len(text)
    while end > 0 and stringWidth(text[:end], font, size) > max_width:
        end -= 1
    return text[:end]


def _draw_text(field: RenderField, page: PageCanvas, fonts: FontSet) -> None:
    box = field.box
    size = min(box.height * 0.6, MAX_FONT_SIZE)
    if size <= 0:
        return
    text = " ".join(str(field.value).splitlines())
    text = fit_text(text, fonts.regular, size, box.width - TEXT_PADDING)
    if not text:
        return
    with page.upright(box) as c:
        c.setFillColorRGB(*TEXT_COLOR)
        c.setFont(fonts.regular, size)
        c.drawString(TEXT_PADDING, _baseline(fonts.regular, size, box.height), text)


def _draw_checkbox(field: RenderField, page: PageCanvas, fonts: FontSet) -> None:
    box = field.box
    size = min(box.width, box.height) * 0.7
    if size <= 0:
        return
    glyph_width = stringWidth("X", fonts.bold, size)
    with page.upright(box) as c:
        c.setFillColorRGB(*CHECK_COLOR)
        c.setFont(fonts.bold, size)
        c.drawString(
            (box.width - glyph_width) / 2,
            _baseline(fonts.bold, size, box.height),
            "X",
        )


def _draw_image(field: RenderField, page: PageCanvas) -> None:
    image = decode_image(field.value)
    box = field.box
    with page.upright(box) as c:
        c.drawImage(
            ImageReader(image),
            0,
            0,
            width=box.width,
            height=box.height,
            mask="auto",
        )


def render_field(field: RenderField, page: PageCanvas, fonts: FontSet) -> None:
    """Draw one field's value onto ``page``.

    Callers must not render the same field twice in one pass; drawing is
    additive. Undecodable images and unknown types are logged and skipped.
    """
    if field.type == CHECKBOX_TYPE:
        if is_checked(field.value):
            _draw_checkbox(field, page, fonts)
        return

    if field.type not in TEXT_TYPES and field.type not in IMAGE_TYPES:
        logger.warning("Skipping field %s with unknown type %r", field.id, field.type)
        field_render_skips_total.labels(reason="unknown_type").inc()
        return

    if not field.value:
        return

    if field.type in TEXT_TYPES:
        _draw_text(field, page, fonts)
        return

    try:
        _draw_image(field, page)
    except FieldDecodeError as exc:
        logger.warning("Skipping %s field %s: %s", field.type, field.id, exc)
        field_render_skips_total.labels(reason="decode_error").inc()
