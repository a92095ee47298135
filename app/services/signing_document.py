from __future__ import annotations

import hmac
import logging
import secrets
from collections import Counter
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.signing import (
    Document,
    DocumentStatus,
    DocumentVersion,
    Recipient,
    RecipientRole,
    RecipientStatus,
    SignedFieldRecord,
    VersionStatus,
)
from app.schemas.signing import (
    DocumentRead,
    RecipientPayload,
    RecipientRead,
    SendResponse,
    SignRequest,
    VersionRead,
)
from app.services.common import (
    SessionContext,
    apply_ordering,
    apply_pagination,
    coerce_uuid,
)
from app.services.pdf_bytes import sha256_hex

logger = logging.getLogger(__name__)

_VALID_ROLES = {e.value for e in RecipientRole}
_VALID_RECIPIENT_STATUSES = {e.value for e in RecipientStatus}

# Recipient status that completes each role's part of the workflow
ROLE_COMPLETION_STATUS = {
    RecipientRole.signer: RecipientStatus.signed,
    RecipientRole.approver: RecipientStatus.approved,
    RecipientRole.viewer: RecipientStatus.viewed,
}


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_document_status(document: Document) -> DocumentStatus:
    """Derive the document status from its recipients' progress."""
    if document.status == DocumentStatus.voided:
        return DocumentStatus.voided

    recipients = list(document.recipients or [])
    if not recipients or all(r.status == RecipientStatus.pending for r in recipients):
        return DocumentStatus.draft

    if any(r.status == RecipientStatus.delivery_failed for r in recipients):
        return DocumentStatus.delivery_failed

    actors = [
        r for r in recipients if r.role in (RecipientRole.signer, RecipientRole.approver)
    ]
    viewers = [r for r in recipients if r.role == RecipientRole.viewer]

    if any(r.status == RecipientStatus.rejected for r in actors):
        return DocumentStatus.rejected

    def done(recipient: Recipient) -> bool:
        return ROLE_COMPLETION_STATUS[recipient.role] == recipient.status

    if actors and all(done(r) for r in actors):
        return DocumentStatus.completed
    if not actors and viewers and all(done(r) for r in viewers):
        return DocumentStatus.completed
    if any(done(r) for r in actors):
        return DocumentStatus.in_progress
    if any(r.status == RecipientStatus.viewed for r in recipients):
        return DocumentStatus.in_progress
    if any(r.status == RecipientStatus.sent for r in recipients):
        return DocumentStatus.sent
    return document.status


class Documents:
    @staticmethod
    def get_owned(db: Session, ctx: SessionContext, document_id) -> Document:
        document = db.get(Document, coerce_uuid(document_id))
        if not document:
            raise HTTPException(status_code=404, detail="Document not found")
        if document.owner_id != ctx.owner_id:
            raise HTTPException(status_code=403, detail="Forbidden")
        if document.deleted_at is not None:
            raise HTTPException(status_code=410, detail="Document has been trashed.")
        return document

    @staticmethod
    def current_version(document: Document) -> DocumentVersion:
        version = document.get_version(document.current_version)
        if version is None:
            raise HTTPException(status_code=404, detail="Version not found")
        return version

    @staticmethod
    def list(
        db: Session,
        ctx: SessionContext,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[Document]:
        stmt = (
            select(Document)
            .where(Document.owner_id == ctx.owner_id)
            .where(Document.deleted_at.is_(None))
        )
        if status is not None:
            if status not in {e.value for e in DocumentStatus}:
                raise HTTPException(status_code=400, detail="Invalid status filter")
            stmt = stmt.where(Document.status == DocumentStatus(status))
        stmt = apply_ordering(
            stmt,
            order_by,
            order_dir,
            {
                "created_at": Document.created_at,
                "updated_at": Document.updated_at,
                "document_name": Document.document_name,
            },
        )
        return db.scalars(apply_pagination(stmt, limit, offset)).all()

    @staticmethod
    def list_versions(
        db: Session, ctx: SessionContext, document_id: str, limit: int, offset: int
    ) -> list[VersionRead]:
        document = Documents.get_owned(db, ctx, document_id)
        stmt = (
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document.id)
            .order_by(DocumentVersion.version_number.desc())
        )
        versions = db.scalars(apply_pagination(stmt, limit, offset)).all()
        return [Documents.version_read(v) for v in versions]

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    @staticmethod
    def version_read(version: DocumentVersion) -> VersionRead:
        return VersionRead(
            version=version.version_number,
            file_name=version.file_name,
            status=version.status.value,
            change_log=version.change_log,
            checksum_sha256=version.checksum_sha256,
            file_size=version.file_size or 0,
            fields=list(version.fields or []),
            created_at=version.created_at,
            updated_at=version.updated_at,
        )

    @staticmethod
    def to_read(document: Document) -> DocumentRead:
        version = document.get_version(document.current_version)
        fields = list(version.fields or []) if version else []
        field_counts = Counter(f.get("recipientId") for f in fields if f.get("recipientId"))
        recipients = [
            RecipientRead(
                id=r.recipient_id,
                name=r.name,
                email=r.email,
                role=r.role.value,
                status=r.status.value,
                order=r.order,
                signed_at=r.signed_at,
                ip_address=r.ip_address,
                field_count=field_counts.get(r.recipient_id, 0),
            )
            for r in document.recipients
        ]
        return DocumentRead(
            id=document.id,
            document_name=document.document_name,
            file_name=document.file_name,
            status=document.status.value,
            current_version=document.current_version,
            recipients=recipients,
            version=Documents.version_read(version) if version else None,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )

    # ------------------------------------------------------------------
    # Recipients
    # ------------------------------------------------------------------

    @staticmethod
    def validate_recipients(payloads: list[RecipientPayload]) -> None:
        seen: set[str] = set()
        for payload in payloads:
            if payload.role not in _VALID_ROLES:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid recipient role. Allowed: {sorted(_VALID_ROLES)}",
                )
            if payload.status not in _VALID_RECIPIENT_STATUSES:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid recipient status. Allowed: {sorted(_VALID_RECIPIENT_STATUSES)}",
                )
            if payload.id in seen:
                raise HTTPException(
                    status_code=400, detail=f"Duplicate recipient id {payload.id}"
                )
            seen.add(payload.id)

    @staticmethod
    def sync_recipients(document: Document, payloads: list[RecipientPayload]) -> None:
        """Make the document's recipients match the editor's list.

        Signing progress (status, signed_at, ip_address) already recorded on
        the server is kept for recipients that remain.
        """
        existing = {r.recipient_id: r for r in document.recipients}
        keep: list[Recipient] = []
        for payload in payloads:
            recipient = existing.get(payload.id)
            if recipient is None:
                recipient = Recipient(
                    recipient_id=payload.id,
                    status=RecipientStatus(payload.status),
                    signed_at=payload.signed_at,
                    ip_address=payload.ip_address,
                )
            recipient.name = payload.name
            recipient.email = payload.email
            recipient.role = RecipientRole(payload.role)
            recipient.order = payload.order
            keep.append(recipient)
        document.recipients = keep

    # ------------------------------------------------------------------
    # Signing lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def send(db: Session, ctx: SessionContext, document_id: str) -> SendResponse:
        document = Documents.get_owned(db, ctx, document_id)
        version = Documents.current_version(document)
        if not version.is_open:
            raise HTTPException(
                status_code=400,
                detail="Current version has already been sent or finalized",
            )
        if not document.recipients:
            raise HTTPException(
                status_code=400, detail="Add at least one recipient before sending"
            )

        now = datetime.now(timezone.utc)
        version.status = VersionStatus.sent
        version.signing_token = secrets.token_urlsafe(32)
        version.token_expires_at = now + timedelta(days=settings.signing_token_ttl_days)
        version.updated_at = now
        for recipient in document.recipients:
            if recipient.status == RecipientStatus.pending:
                recipient.status = RecipientStatus.sent
        document.status = resolve_document_status(document)
        document.updated_at = now
        db.commit()
        logger.info(
            "Sent document %s (v%d) to %d recipient(s)",
            document.id,
            version.version_number,
            len(document.recipients),
        )
        return SendResponse(
            document_id=document.id,
            version=version.version_number,
            status=document.status.value,
            signing_token=version.signing_token,
            token_expires_at=version.token_expires_at,
        )

    @staticmethod
    def sign(
        db: Session,
        document_id: str,
        recipient_id: str,
        token: str,
        payload: SignRequest,
        ip_address: str | None,
    ) -> Document:
        document = db.get(Document, coerce_uuid(document_id))
        if not document or document.deleted_at is not None:
            raise HTTPException(status_code=404, detail="Document not found")
        version = Documents.current_version(document)
        if not version.signing_token or not hmac.compare_digest(
            token or "", version.signing_token
        ):
            raise HTTPException(status_code=403, detail="Invalid signing token")
        now = datetime.now(timezone.utc)
        if version.token_expires_at and _aware(version.token_expires_at) < now:
            raise HTTPException(status_code=410, detail="Signing link has expired")

        recipient = next(
            (r for r in document.recipients if r.recipient_id == recipient_id), None
        )
        if recipient is None:
            raise HTTPException(status_code=404, detail="Recipient not found")
        completion = ROLE_COMPLETION_STATUS[recipient.role]
        if recipient.status == completion:
            raise HTTPException(
                status_code=400, detail="Recipient has already completed this document"
            )

        assigned = {
            f["id"]: f for f in (version.fields or []) if f.get("recipientId") == recipient_id
        }
        values = {item.id: item.value for item in payload.fields}
        unknown = sorted(set(values) - set(assigned))
        if unknown:
            raise HTTPException(
                status_code=400,
                detail=f"Fields not assigned to this recipient: {', '.join(unknown)}",
            )
        existing = {
            record.field_id: record
            for record in db.scalars(
                select(SignedFieldRecord)
                .where(SignedFieldRecord.document_id == document.id)
                .where(SignedFieldRecord.version_number == version.version_number)
                .where(SignedFieldRecord.recipient_id == recipient_id)
            ).all()
        }
        missing = [
            field_id
            for field_id, field in assigned.items()
            if field.get("required", True)
            and field.get("type") != "checkbox"
            and not values.get(field_id)
            and field_id not in existing
        ]
        if missing and recipient.role != RecipientRole.viewer:
            raise HTTPException(
                status_code=400,
                detail=f"Required fields missing: {', '.join(sorted(missing))}",
            )

        for field_id, value in values.items():
            if field_id in existing:
                continue
            field_value = value or ""
            db.add(
                SignedFieldRecord(
                    document_id=document.id,
                    version_number=version.version_number,
                    recipient_id=recipient_id,
                    field_id=field_id,
                    field_type=str(assigned[field_id].get("type", "unknown")),
                    field_value=field_value,
                    field_value_hash=sha256_hex(field_value.encode("utf-8")),
                    ip_address=ip_address,
                    signed_at=now,
                )
            )

        recipient.status = completion
        recipient.signed_at = now
        recipient.ip_address = ip_address
        document.status = resolve_document_status(document)
        if document.status == DocumentStatus.completed:
            version.status = VersionStatus.final
            version.updated_at = now
        document.updated_at = now
        db.commit()
        db.refresh(document)
        logger.info(
            "Recipient %s completed document %s; status now %s",
            recipient_id,
            document.id,
            document.status.value,
        )
        return document


documents = Documents()
