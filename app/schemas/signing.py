from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


class PageRect(_CamelModel):
    """Rendered page element rectangle as persisted by the editor."""

    left: float | None = None
    top: float | None = None
    width: float | None = None
    height: float | None = None


class FieldPayload(_CamelModel):
    id: str = Field(min_length=1)
    type: str
    x: float
    y: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)
    page_number: int | None = Field(default=None, ge=1, alias="pageNumber")
    recipient_id: str | None = Field(default=None, alias="recipientId")
    required: bool = True
    value: str | None = None
    page_rect: PageRect | None = Field(default=None, alias="pageRect")


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------


class RecipientPayload(_CamelModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320)
    role: str = "signer"
    status: str = "pending"
    order: int = 0
    signed_at: datetime | None = Field(default=None, alias="signedAt")
    ip_address: str | None = Field(default=None, alias="ipAddress")


class RecipientRead(_CamelModel):
    id: str
    name: str
    email: str
    role: str
    status: str
    order: int
    signed_at: datetime | None = Field(default=None, alias="signedAt")
    ip_address: str | None = Field(default=None, alias="ipAddress")
    field_count: int = Field(default=0, alias="fieldCount")


# ---------------------------------------------------------------------------
# Save
# ---------------------------------------------------------------------------


class SaveResponse(_CamelModel):
    success: bool = True
    document_id: UUID = Field(alias="documentId")
    version: int
    file_url: str | None = Field(default=None, alias="fileUrl")
    file_name: str | None = Field(default=None, alias="fileName")
    message: str


# ---------------------------------------------------------------------------
# Documents & versions (read-only views; PDF bytes are never serialized)
# ---------------------------------------------------------------------------


class VersionRead(_CamelModel):
    version: int
    file_name: str | None = Field(default=None, alias="fileName")
    status: str
    change_log: str | None = Field(default=None, alias="changeLog")
    checksum_sha256: str | None = Field(default=None, alias="checksumSha256")
    file_size: int = Field(default=0, alias="fileSize")
    fields: list[dict] = []
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class DocumentRead(_CamelModel):
    id: UUID
    document_name: str = Field(alias="documentName")
    file_name: str | None = Field(default=None, alias="fileName")
    status: str
    current_version: int = Field(alias="currentVersion")
    recipients: list[RecipientRead] = []
    version: VersionRead | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class DocumentListResponse(BaseModel):
    items: list[DocumentRead]
    count: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Signing lifecycle
# ---------------------------------------------------------------------------


class SendResponse(_CamelModel):
    document_id: UUID = Field(alias="documentId")
    version: int
    status: str
    signing_token: str = Field(alias="signingToken")
    token_expires_at: datetime = Field(alias="tokenExpiresAt")


class SignedFieldValue(_CamelModel):
    id: str = Field(min_length=1)
    value: str | None = None


class SignRequest(_CamelModel):
    fields: list[SignedFieldValue] = []


# ---------------------------------------------------------------------------
# Builder page snapping
# ---------------------------------------------------------------------------


class PageBand(_CamelModel):
    top: float
    height: float = Field(gt=0)


class PageSnapRequest(_CamelModel):
    x: float
    y: float
    height: float = Field(ge=0)
    page_number: int = Field(ge=1, alias="pageNumber")
    previous_x: float | None = Field(default=None, alias="previousX")
    previous_y: float | None = Field(default=None, alias="previousY")
    container_top: float = Field(default=0.0, alias="containerTop")
    pages: list[PageBand | None] = []


class PageSnapResponse(_CamelModel):
    x: float
    y: float
    page_number: int = Field(alias="pageNumber")
    snapped: bool
