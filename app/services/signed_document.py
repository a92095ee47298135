from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from urllib.parse import quote

from fastapi import HTTPException
from pydantic import ValidationError
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.metrics import field_render_skips_total
from app.models.signing import (
    SIGNED_DOCUMENT_STATUSES,
    Document,
    DocumentVersion,
    SignedFieldRecord,
)
from app.schemas.signing import FieldPayload
from app.services.audit_page import AuditRecipient, compose_audit_page
from app.services.common import SessionContext
from app.services.coordinates import (
    Box,
    PageRect,
    PageSize,
    page_local_origin,
    viewport_to_pdf,
)
from app.services.field_renderer import FontSet, PageCanvas, RenderField, render_field
from app.services.object_storage import object_storage
from app.services.pdf_bytes import UnsupportedBinaryShape, normalize_pdf_bytes
from app.services.signing_document import Documents
from app.services.version_store import store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedArtifact:
    file_name: str
    content: bytes


def load_version_bytes(version: DocumentVersion) -> bytes:
    """Return a version's PDF bytes from the database, disk or object storage."""
    try:
        data = normalize_pdf_bytes(version.pdf_data)
    except UnsupportedBinaryShape as exc:
        logger.error("Version %s has an unreadable payload: %s", version.id, exc)
        raise HTTPException(status_code=500, detail="Invalid PDF data format") from exc
    if not data and version.file_path and Path(version.file_path).is_file():
        data = Path(version.file_path).read_bytes()
    if not data and version.storage_key:
        data = object_storage.fetch(version.storage_key)
    if not data:
        raise HTTPException(status_code=404, detail="PDF data not available")
    return data


def replay_signed_values(
    db: Session, document: Document, fields: list[dict]
) -> list[dict]:
    """Overlay the newest signed value recorded for each field id."""
    records = db.scalars(
        select(SignedFieldRecord).where(SignedFieldRecord.document_id == document.id)
    ).all()
    latest: dict[str, SignedFieldRecord] = {}
    for record in records:
        current = latest.get(record.field_id)
        if current is None or (record.version_number, record.signed_at) > (
            current.version_number,
            current.signed_at,
        ):
            latest[record.field_id] = record
    replayed = []
    for field in fields:
        record = latest.get(str(field.get("id", "")))
        replayed.append({**field, "value": record.field_value} if record else dict(field))
    return replayed


def field_pdf_box(field: FieldPayload, page_size: PageSize) -> Box:
    rect = field.page_rect
    if rect is not None and rect.width and rect.height:
        persisted = PageRect(rect.width, rect.height, rect.left or 0.0, rect.top or 0.0)
        x, y = page_local_origin(field.x, field.y, persisted)
        page_rect = PageRect(rect.width, rect.height)
    else:
        # Without a recorded page rectangle, editor units are PDF points.
        x, y = field.x, field.y
        page_rect = PageRect(page_size.width, page_size.height)
    return viewport_to_pdf(Box(x, y, field.width, field.height), page_rect, page_size)


def _page_canvas(page) -> PageCanvas:
    box = page.mediabox
    return PageCanvas(
        float(box.width),
        float(box.height),
        rotation=page.rotation,
        origin=(float(box.left), float(box.bottom)),
    )


def render_fields(pdf_bytes: bytes, fields: list[dict], fonts: FontSet | None = None) -> PdfWriter:
    """Draw every field onto its page and return the merged document."""
    fonts = fonts or FontSet()
    writer = PdfWriter(clone_from=PdfReader(BytesIO(pdf_bytes)))
    canvases: dict[int, PageCanvas] = {}

    for raw in fields:
        try:
            field = FieldPayload.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Skipping malformed field %r: %s", raw.get("id"), exc)
            field_render_skips_total.labels(reason="malformed").inc()
            continue
        if not field.page_number:
            continue
        index = field.page_number - 1
        if index >= len(writer.pages):
            logger.warning(
                "Skipping field %s: page %d does not exist", field.id, field.page_number
            )
            field_render_skips_total.labels(reason="missing_page").inc()
            continue
        page_canvas = canvases.get(index)
        if page_canvas is None:
            page_canvas = canvases[index] = _page_canvas(writer.pages[index])
        box = field_pdf_box(field, page_canvas.size)
        render_field(RenderField(field.id, field.type, field.value, box), page_canvas, fonts)

    for index, page_canvas in canvases.items():
        overlay = page_canvas.finish()
        if overlay:
            writer.pages[index].merge_page(PdfReader(BytesIO(overlay)).pages[0])
    return writer


def _download_name(document_name: str) -> str:
    base = store.sanitize_file_name(document_name)[: -len(".pdf")]
    return f"{base}-signed.pdf"


def content_disposition(file_name: str) -> str:
    """Attachment header value that survives non-ASCII names.

    Response headers are latin-1 on the wire, so the plain ``filename`` carries
    an ASCII rendition and ``filename*`` carries the UTF-8 name (RFC 6266).
    """
    decomposed = unicodedata.normalize("NFKD", file_name)
    fallback = "".join(
        ch if ord(ch) < 128 else "_" for ch in decomposed if not unicodedata.combining(ch)
    )
    fallback = fallback.replace('"', "").replace("\\", "")
    encoded = quote(file_name, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


class SignedDocuments:
    @staticmethod
    def build(db: Session, ctx: SessionContext, document_id: str) -> SignedArtifact:
        document = Documents.get_owned(db, ctx, document_id)
        if document.status not in SIGNED_DOCUMENT_STATUSES:
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "document_not_completed",
                    "message": "Document is not completed yet",
                    "details": "Signed copy will be available once all recipients complete signing.",
                },
            )
        version = Documents.current_version(document)
        pdf_bytes = load_version_bytes(version)
        stored_fields = list(version.fields or [])
        fields = replay_signed_values(db, document, stored_fields)

        try:
            writer = render_fields(pdf_bytes, fields)
        except PdfReadError as exc:
            logger.error("Stored PDF for document %s is unreadable: %s", document.id, exc)
            raise HTTPException(status_code=500, detail="Stored PDF could not be read") from exc

        recipients = [
            AuditRecipient(
                name=r.name,
                email=r.email,
                role=r.role.value,
                status=r.status.value,
                signed_at=r.signed_at,
                ip_address=r.ip_address,
            )
            for r in document.recipients
        ]
        audit_pdf = compose_audit_page(
            document.document_name,
            recipients,
            [str(f.get("type", "unknown")) for f in stored_fields],
            completed_at=datetime.now(timezone.utc),
        )
        writer.append(PdfReader(BytesIO(audit_pdf)))

        out = BytesIO()
        writer.write(out)
        content = out.getvalue()
        logger.info(
            "Built signed copy of document %s v%d (%d bytes)",
            document.id,
            version.version_number,
            len(content),
        )
        return SignedArtifact(_download_name(document.document_name), content)


signed_documents = SignedDocuments()
