import json

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.api.deps import client_ip, get_db, get_session_context
from app.schemas.signing import (
    DocumentListResponse,
    DocumentRead,
    FieldPayload,
    RecipientPayload,
    SaveResponse,
    SendResponse,
    SignRequest,
    VersionRead,
)
from app.services.common import SessionContext
from app.services.session_reconciler import SaveRequest, reconciler
from app.services.signed_document import content_disposition, signed_documents
from app.services.signing_document import documents

router = APIRouter(prefix="/documents", tags=["documents"])


def _parse_json_list(raw: str | None, model: type[BaseModel], label: str) -> list:
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} JSON: {exc.msg}")
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail=f"{label} must be a JSON array")
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={
                "code": f"invalid_{label}",
                "message": f"Invalid {label}",
                "details": exc.errors(include_url=False, include_context=False),
            },
        )


# ------------------------------------------------------------------
# Save / download
# ------------------------------------------------------------------


@router.post("/save-with-fields", response_model=SaveResponse)
def save_with_fields(
    file: UploadFile = File(...),
    document_name: str = Form(alias="documentName"),
    fields: str | None = Form(default=None),
    recipients: str | None = Form(default=None),
    document_id: str | None = Form(default=None, alias="documentId"),
    file_name: str | None = Form(default=None, alias="fileName"),
    change_log: str | None = Form(default=None, alias="changeLog"),
    expected_version: int | None = Form(default=None, alias="expectedVersion"),
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    request = SaveRequest(
        pdf_bytes=file.file.read(),
        document_name=document_name,
        fields=_parse_json_list(fields, FieldPayload, "fields"),
        recipients=_parse_json_list(recipients, RecipientPayload, "recipients"),
        document_id=document_id or None,
        file_name=file_name or None,
        upload_file_name=file.filename,
        change_log=change_log or None,
        expected_version=expected_version,
    )
    return reconciler.save(db, ctx, request)


@router.get("/download-signed")
def download_signed(
    document_id: str = Query(alias="documentId"),
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    artifact = signed_documents.build(db, ctx, document_id)
    return Response(
        content=artifact.content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": content_disposition(artifact.file_name),
            "Content-Length": str(len(artifact.content)),
        },
    )


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------


@router.get("", response_model=DocumentListResponse)
def list_documents(
    status_filter: str | None = Query(default=None, alias="status"),
    order_by: str = Query(default="updated_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    items = documents.list(db, ctx, status_filter, order_by, order_dir, limit, offset)
    return {
        "items": [documents.to_read(d) for d in items],
        "count": len(items),
        "limit": limit,
        "offset": offset,
    }


@router.get("/{document_id}", response_model=DocumentRead)
def get_document(
    document_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    return documents.to_read(documents.get_owned(db, ctx, document_id))


@router.get("/{document_id}/versions", response_model=list[VersionRead])
def list_versions(
    document_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    return documents.list_versions(db, ctx, document_id, limit, offset)


# ------------------------------------------------------------------
# Signing lifecycle
# ------------------------------------------------------------------


@router.post("/{document_id}/send", response_model=SendResponse)
def send_document(
    document_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    return documents.send(db, ctx, document_id)


@router.post(
    "/{document_id}/recipients/{recipient_id}/sign", response_model=DocumentRead
)
def sign_document(
    document_id: str,
    recipient_id: str,
    payload: SignRequest,
    request: Request,
    token: str = Query(min_length=1),
    db: Session = Depends(get_db),
):
    document = documents.sign(
        db, document_id, recipient_id, token, payload, client_ip(request)
    )
    return documents.to_read(document)
