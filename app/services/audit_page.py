from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from typing import Iterable, Sequence

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from app.config import settings

logger = logging.getLogger(__name__)

TITLE = "Certificate of Completion"
FOOTER = "This document has been electronically signed and is legally binding."
RULE = "_" * 80
LEFT_MARGIN = 50.0
TOP_MARGIN = 50.0
FOOTER_Y = 30.0

REGULAR = "Helvetica"
BOLD = "Helvetica-Bold"
BLACK = (0, 0, 0)
GREY = (0.5, 0.5, 0.5)
LIGHT_GREY = (0.7, 0.7, 0.7)
GREEN = (0, 0.5, 0)
NAVY = (0, 0.2, 0.5)


@dataclass(frozen=True)
class AuditRecipient:
    name: str
    email: str
    role: str
    status: str
    signed_at: datetime | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class AuditLine:
    text: str
    y: float
    font: str
    size: float
    color: tuple = BLACK


@dataclass(frozen=True)
class AuditLayout:
    lines: list[AuditLine]
    recipients_rendered: int
    recipients_omitted: int


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def field_tally(field_types: Iterable[str]) -> str:
    """Summarize field types, e.g. ``"2 signatures, 1 date"``."""
    counts = Counter(field_types)
    if not counts:
        return "N/A"
    return ", ".join(
        f"{count} {field_type}{'s' if count > 1 else ''}"
        for field_type, count in counts.items()
    )


def layout_audit_page(
    document_name: str,
    recipients: Sequence[AuditRecipient],
    field_types: Iterable[str],
    completed_at: datetime,
    page_height: float = A4[1],
    min_y: float | None = None,
) -> AuditLayout:
    """Compute every line of the certificate page top to bottom.

    Recipient blocks stop once the cursor drops below ``min_y``; there is no
    continuation page.
    """
    if min_y is None:
        min_y = settings.audit_page_min_y
    lines: list[AuditLine] = []
    y = page_height - TOP_MARGIN

    def emit(text, font=REGULAR, size=10.0, color=BLACK, advance=18.0):
        nonlocal y
        lines.append(AuditLine(text, y, font, size, color))
        y -= advance

    emit(TITLE, BOLD, 20, NAVY, advance=40)
    emit(f"Document: {document_name}", size=12, advance=20)
    emit("Status: Signed", size=12, color=GREEN, advance=20)
    emit(f"Completed: {_format_timestamp(completed_at)}", size=12, advance=20)
    emit(f"Fields: {field_tally(field_types)}", size=10, color=(0.4, 0.4, 0.4), advance=40)
    emit("Audit Trail", BOLD, 16, advance=30)

    rendered = 0
    for recipient in recipients:
        if y < min_y:
            break
        emit(RULE, color=LIGHT_GREY, advance=20)
        emit(f"Name: {recipient.name}", BOLD, 11)
        emit(f"Email: {recipient.email}")
        emit(f"Role: {recipient.role}")
        emit(
            f"Status: {recipient.status}",
            color=GREEN if recipient.status == "signed" else GREY,
        )
        if recipient.signed_at:
            emit(f"Signed At: {_format_timestamp(recipient.signed_at)}")
        if recipient.ip_address:
            emit(f"IP Address: {recipient.ip_address}", color=GREY)
        y -= 10
        rendered += 1

    omitted = len(recipients) - rendered
    if omitted:
        logger.warning(
            "Audit page for %r ran out of space; %d recipient(s) omitted",
            document_name,
            omitted,
        )

    lines.append(AuditLine(FOOTER, FOOTER_Y, REGULAR, 8, GREY))
    return AuditLayout(lines, rendered, omitted)


def compose_audit_page(
    document_name: str,
    recipients: Sequence[AuditRecipient],
    field_types: Iterable[str],
    completed_at: datetime | None = None,
    page_size: tuple[float, float] = A4,
) -> bytes:
    """Render the certificate page as a single-page PDF."""
    completed_at = completed_at or datetime.now(timezone.utc)
    layout = layout_audit_page(
        document_name, recipients, field_types, completed_at, page_height=page_size[1]
    )
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=page_size)
    c.setTitle(f"{TITLE}: {document_name}")
    c.setAuthor(settings.brand_name)
    for line in layout.lines:
        c.setFillColorRGB(*line.color)
        c.setFont(line.font, line.size)
        c.drawString(LEFT_MARGIN, line.y, line.text)
    c.showPage()
    c.save()
    return buf.getvalue()
