"""Save-request state machine for document versions.

An open session (current version in ``draft``/``save``) is overwritten in
place; a closed session (current version sent or finalized) forks a new
version. Disk writes always fall back to a lower-trust writer instead of
failing the save; a save only fails when the database update fails or every
writer is exhausted.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.metrics import save_outcomes_total, storage_fallbacks_total
from app.models.signing import Document, DocumentStatus, DocumentVersion, VersionStatus
from app.schemas.signing import FieldPayload, RecipientPayload, SaveResponse
from app.services.common import SessionContext
from app.services.object_storage import object_storage
from app.services.pdf_bytes import UnsupportedBinaryShape, normalize_pdf_bytes, sha256_hex
from app.services.signing_document import Documents
from app.services.version_store import WriteResult, store

logger = logging.getLogger(__name__)

NO_CHANGES_MESSAGE = "No relevant changes detected. Session maintained."


@dataclass
class SaveRequest:
    pdf_bytes: bytes
    document_name: str
    fields: list[FieldPayload] = field(default_factory=list)
    recipients: list[RecipientPayload] = field(default_factory=list)
    document_id: str | None = None
    file_name: str | None = None
    upload_file_name: str | None = None
    change_log: str | None = None
    expected_version: int | None = None


def serialize_fields(fields: list[dict]) -> str:
    """Order-independent canonical form of a field list."""
    ordered = sorted(fields, key=lambda f: str(f.get("id", "")))
    return json.dumps(ordered, sort_keys=True, separators=(",", ":"), default=str)


def _field_dicts(fields: list[FieldPayload]) -> list[dict]:
    return [f.model_dump(mode="json", by_alias=True) for f in fields]


def _recipient_signature(items) -> list[tuple]:
    return sorted((r[0], r[1], r[2].lower(), r[3], r[4]) for r in items)


def _recipients_changed(document: Document, payloads: list[RecipientPayload]) -> bool:
    stored = _recipient_signature(
        (r.recipient_id, r.name, r.email, r.role.value, r.order) for r in document.recipients
    )
    incoming = _recipient_signature(
        (p.id, p.name, p.email, p.role, p.order) for p in payloads
    )
    return stored != incoming


def _stored_bytes(version: DocumentVersion) -> bytes | None:
    try:
        return normalize_pdf_bytes(version.pdf_data)
    except UnsupportedBinaryShape:
        logger.warning(
            "Version %s of document %s holds an unreadable payload",
            version.version_number,
            version.document_id,
        )
        return None


class SessionReconciler:
    @staticmethod
    def save(db: Session, ctx: SessionContext, request: SaveRequest) -> SaveResponse:
        if not request.pdf_bytes:
            raise HTTPException(status_code=400, detail="PDF content is required")
        if not request.document_name or not request.document_name.strip():
            raise HTTPException(status_code=400, detail="Document name is required")
        Documents.validate_recipients(request.recipients)

        if not request.document_id:
            return SessionReconciler._create(db, ctx, request)

        document = Documents.get_owned(db, ctx, request.document_id)
        if (
            request.expected_version is not None
            and request.expected_version != document.current_version
        ):
            raise HTTPException(
                status_code=409,
                detail=(
                    f"Document is at version {document.current_version}, "
                    f"expected {request.expected_version}"
                ),
            )
        version = Documents.current_version(document)
        if version.is_open:
            return SessionReconciler._continue(db, ctx, document, version, request)
        return SessionReconciler._fork(db, ctx, document, version, request)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    @staticmethod
    def _write_with_fallback(
        stage: str,
        primary: Callable[[], WriteResult] | None,
        directory: Path,
        document_id,
        version_number: int,
        data: bytes,
    ) -> WriteResult:
        if primary is not None:
            try:
                return primary()
            except OSError as exc:
                logger.warning(
                    "%s write for document %s v%d failed (%s); using deterministic writer",
                    stage,
                    document_id,
                    version_number,
                    exc,
                )
                storage_fallbacks_total.labels(stage=stage).inc()
        try:
            return store.write_deterministic(directory, document_id, version_number, data)
        except OSError as exc:
            logger.warning(
                "Deterministic write for document %s v%d failed (%s); using stable writer",
                document_id,
                version_number,
                exc,
            )
            storage_fallbacks_total.labels(stage=f"{stage}_stable").inc()
        try:
            return store.write_stable(
                directory,
                str(document_id),
                data,
                preferred_version=version_number,
                owned=directory / store.deterministic_name(document_id, version_number),
            )
        except OSError as exc:
            logger.error(
                "Every writer failed for document %s v%d: %s", document_id, version_number, exc
            )
            raise HTTPException(status_code=500, detail="Unable to persist document") from exc

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Database update failed during save")
            raise HTTPException(status_code=500, detail="Failed to save document") from exc

    @staticmethod
    def _mirror(document_id, version: DocumentVersion, data: bytes) -> None:
        if not object_storage.is_configured():
            return
        key = object_storage.generate_storage_key(
            document_id, version.version_number, version.file_name or "document.pdf"
        )
        if object_storage.mirror(key, data):
            version.storage_key = key

    @staticmethod
    def _response(document: Document, version: DocumentVersion, message: str) -> SaveResponse:
        return SaveResponse(
            success=True,
            document_id=document.id,
            version=version.version_number,
            file_url=store.file_url(version.file_path) if version.file_path else None,
            file_name=version.file_name,
            message=message,
        )

    # ------------------------------------------------------------------
    # Initial save
    # ------------------------------------------------------------------

    @staticmethod
    def _create(db: Session, ctx: SessionContext, request: SaveRequest) -> SaveResponse:
        directory = store.user_dir(ctx.owner_id)
        document_id = uuid.uuid4()
        data = request.pdf_bytes
        name = store.sanitize_file_name(
            request.file_name or request.upload_file_name or request.document_name
        )

        try:
            result = store.write_named(directory, name, data)
        except OSError as exc:
            logger.warning("Primary write of %s failed (%s); using stable writer", name, exc)
            storage_fallbacks_total.labels(stage="initial").inc()
            result = SessionReconciler._write_with_fallback(
                "initial",
                lambda: store.write_stable(directory, name, data),
                directory,
                document_id,
                1,
                data,
            )

        now = datetime.now(timezone.utc)
        document = Document(
            id=document_id,
            owner_id=ctx.owner_id,
            document_name=request.document_name,
            original_file_name=result.file_name,
            file_name=result.file_name,
            status=DocumentStatus.draft,
            current_version=1,
            created_at=now,
            updated_at=now,
        )
        version = DocumentVersion(
            version_number=1,
            file_path=str(result.path),
            file_name=result.file_name,
            fields=_field_dicts(request.fields),
            pdf_data=data,
            status=VersionStatus.draft,
            change_log=request.change_log or "Initial version created",
            checksum_sha256=sha256_hex(data),
            file_size=len(data),
            created_at=now,
            updated_at=now,
        )
        document.versions.append(version)
        Documents.sync_recipients(document, request.recipients)
        db.add(document)
        SessionReconciler._mirror(document_id, version, data)
        SessionReconciler._commit(db)
        save_outcomes_total.labels(outcome="created").inc()
        logger.info("Created document %s as %s", document.id, result.path)
        return SessionReconciler._response(document, version, "Document saved successfully")

    # ------------------------------------------------------------------
    # Open session: overwrite the current version in place
    # ------------------------------------------------------------------

    @staticmethod
    def _heal(
        document: Document, version: DocumentVersion, directory: Path, data: bytes
    ) -> WriteResult:
        logger.warning(
            "Document %s v%d has no file on disk (%r); healing",
            document.id,
            version.version_number,
            version.file_path,
        )
        storage_fallbacks_total.labels(stage="heal").inc()
        name = version.file_name or document.original_file_name
        owned = Path(version.file_path) if version.file_path else None
        primary = (
            (lambda: store.write_named(directory, name, data, owned=owned)) if name else None
        )
        return SessionReconciler._write_with_fallback(
            "heal", primary, directory, document.id, version.version_number, data
        )

    @staticmethod
    def _continue(
        db: Session,
        ctx: SessionContext,
        document: Document,
        version: DocumentVersion,
        request: SaveRequest,
    ) -> SaveResponse:
        directory = store.user_dir(ctx.owner_id)
        data = request.pdf_bytes
        incoming_fields = _field_dicts(request.fields)

        healed: WriteResult | None = None
        target = Path(version.file_path) if version.file_path else None
        if target is None or not target.is_file():
            healed = SessionReconciler._heal(document, version, directory, data)
            target = healed.path

        changes_detected = (
            healed is not None
            or serialize_fields(incoming_fields) != serialize_fields(list(version.fields or []))
            or _stored_bytes(version) != data
            or document.document_name != request.document_name
            or _recipients_changed(document, request.recipients)
        )
        if not changes_detected:
            save_outcomes_total.labels(outcome="unchanged").inc()
            logger.info(
                "No changes for document %s v%d; session maintained",
                document.id,
                version.version_number,
            )
            return SessionReconciler._response(document, version, NO_CHANGES_MESSAGE)

        rename_to = store.sanitize_file_name(request.file_name) if request.file_name else None
        if rename_to and rename_to != version.file_name:
            result = SessionReconciler._write_with_fallback(
                "rename",
                lambda: store.write_stable(
                    directory,
                    rename_to,
                    data,
                    preferred_version=version.version_number,
                    owned=target,
                ),
                directory,
                document.id,
                version.version_number,
                data,
            )
            outcome = "renamed"
            message = f"Document (v{version.version_number}) saved as {result.file_name}."
        elif healed is not None:
            result = healed
            outcome = "overwritten"
            message = (
                f"Document (v{version.version_number}) restored and overwritten "
                "(changes saved)."
            )
        else:
            result = SessionReconciler._write_with_fallback(
                "overwrite",
                lambda: store.overwrite(target, data),
                directory,
                document.id,
                version.version_number,
                data,
            )
            outcome = "overwritten"
            message = f"Document (v{version.version_number}) overwritten (changes saved)."

        now = datetime.now(timezone.utc)
        version.file_path = str(result.path)
        version.file_name = result.file_name
        version.fields = incoming_fields
        version.pdf_data = data
        version.checksum_sha256 = sha256_hex(data)
        version.file_size = len(data)
        if request.change_log:
            version.change_log = request.change_log
        version.status = VersionStatus.draft
        version.updated_at = now

        document.file_name = result.file_name
        document.document_name = request.document_name
        document.updated_at = now
        Documents.sync_recipients(document, request.recipients)
        SessionReconciler._mirror(document.id, version, data)
        SessionReconciler._commit(db)
        save_outcomes_total.labels(outcome=outcome).inc()
        logger.info(
            "Saved document %s v%d in place (%s)", document.id, version.version_number, outcome
        )
        return SessionReconciler._response(document, version, message)

    # ------------------------------------------------------------------
    # Closed session: fork a new version
    # ------------------------------------------------------------------

    @staticmethod
    def _fork(
        db: Session,
        ctx: SessionContext,
        document: Document,
        prior: DocumentVersion,
        request: SaveRequest,
    ) -> SaveResponse:
        directory = store.user_dir(ctx.owner_id)
        data = request.pdf_bytes
        new_number = document.current_version + 1
        target = directory / store.deterministic_name(document.id, new_number)

        # Seed the new file from the newest known-good source so a failed
        # write of the incoming bytes still leaves a usable file behind.
        seeded: WriteResult | None = None
        sources = [prior.file_path]
        if document.original_file_name:
            sources.append(str(directory / document.original_file_name))
        for source in sources:
            if not source or not Path(source).is_file():
                continue
            try:
                seeded = store.copy(Path(source), target)
                break
            except OSError as exc:
                logger.warning("Could not copy %s for fork: %s", source, exc)

        try:
            result = store.write_deterministic(directory, document.id, new_number, data)
        except OSError as exc:
            storage_fallbacks_total.labels(stage="fork").inc()
            if seeded is not None:
                logger.warning(
                    "Write of v%d for document %s failed (%s); keeping copy of prior file",
                    new_number,
                    document.id,
                    exc,
                )
                result = seeded
            else:
                logger.warning(
                    "Write of v%d for document %s failed (%s); using stable writer",
                    new_number,
                    document.id,
                    exc,
                )
                try:
                    result = store.write_stable(
                        directory,
                        str(document.id),
                        data,
                        preferred_version=new_number,
                        owned=target,
                    )
                except OSError as final_exc:
                    raise HTTPException(
                        status_code=500, detail="Unable to persist document"
                    ) from final_exc

        now = datetime.now(timezone.utc)
        version = DocumentVersion(
            version_number=new_number,
            file_path=str(result.path),
            file_name=result.file_name,
            fields=_field_dicts(request.fields),
            pdf_data=data,
            status=VersionStatus.draft,
            change_log=request.change_log
            or f"Version {new_number} created from v{prior.version_number}",
            checksum_sha256=sha256_hex(data),
            file_size=len(data),
            created_at=now,
            updated_at=now,
        )
        document.versions.append(version)
        document.current_version = new_number
        document.file_name = result.file_name
        document.document_name = request.document_name
        document.updated_at = now
        Documents.sync_recipients(document, request.recipients)
        SessionReconciler._mirror(document.id, version, data)
        SessionReconciler._commit(db)
        save_outcomes_total.labels(outcome="forked").inc()
        logger.info(
            "Forked document %s from v%d to v%d",
            document.id,
            prior.version_number,
            new_number,
        )
        return SessionReconciler._response(
            document, version, f"Document updated to new version {new_number}."
        )


reconciler = SessionReconciler()
