import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DocumentStatus(enum.Enum):
    draft = "draft"
    sent = "sent"
    in_progress = "in_progress"
    signed = "signed"
    completed = "completed"
    voided = "voided"
    rejected = "rejected"
    delivery_failed = "delivery_failed"
    expired = "expired"


class VersionStatus(enum.Enum):
    draft = "draft"
    save = "save"
    final = "final"
    sent = "sent"
    error = "error"


class RecipientRole(enum.Enum):
    signer = "signer"
    approver = "approver"
    viewer = "viewer"


class RecipientStatus(enum.Enum):
    pending = "pending"
    sent = "sent"
    viewed = "viewed"
    signed = "signed"
    approved = "approved"
    rejected = "rejected"
    delivery_failed = "delivery_failed"
    expired = "expired"


# A version in one of these states may be overwritten in place.
OPEN_VERSION_STATUSES = frozenset({VersionStatus.draft, VersionStatus.save})

SIGNED_DOCUMENT_STATUSES = frozenset({DocumentStatus.signed, DocumentStatus.completed})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_owner_id", "owner_id"),
        Index("ix_documents_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(120), nullable=False)
    document_name: Mapped[str] = mapped_column(String(500), nullable=False)
    original_file_name: Mapped[str | None] = mapped_column(String(500))
    # Current file-name pointer, follows renames of the current version
    file_name: Mapped[str | None] = mapped_column(String(500))
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus), default=DocumentStatus.draft
    )
    current_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        order_by="DocumentVersion.version_number",
    )
    recipients = relationship(
        "Recipient",
        back_populates="document",
        order_by="Recipient.order",
        cascade="all, delete-orphan",
    )

    def get_version(self, version_number: int) -> "DocumentVersion | None":
        for version in self.versions:
            if version.version_number == version_number:
                return version
        return None


# ---------------------------------------------------------------------------
# Document versions (append-only; only the current one is mutable in place)
# ---------------------------------------------------------------------------


class DocumentVersion(Base):
    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "version_number",
            name="uq_document_versions_doc_version",
        ),
        Index("ix_document_versions_document_id", "document_id"),
        Index("ix_document_versions_signing_token", "signing_token"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id"), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    file_path: Mapped[str | None] = mapped_column(String(2000))
    file_name: Mapped[str | None] = mapped_column(String(500))
    fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    pdf_data: Mapped[bytes | None] = mapped_column(LargeBinary)
    status: Mapped[VersionStatus] = mapped_column(
        Enum(VersionStatus), default=VersionStatus.draft
    )
    change_log: Mapped[str | None] = mapped_column(Text)
    checksum_sha256: Mapped[str | None] = mapped_column(String(64))
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    storage_key: Mapped[str | None] = mapped_column(String(1024))
    signing_token: Mapped[str | None] = mapped_column(String(128))
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    document = relationship("Document", back_populates="versions")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_VERSION_STATUSES


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------


class Recipient(Base):
    __tablename__ = "document_recipients"
    __table_args__ = (
        UniqueConstraint(
            "document_id", "recipient_id", name="uq_document_recipients_doc_recipient"
        ),
        Index("ix_document_recipients_document_id", "document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id"), nullable=False
    )
    # Stable id supplied by the editor; fields reference recipients by it
    recipient_id: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[RecipientRole] = mapped_column(
        Enum(RecipientRole), default=RecipientRole.signer
    )
    status: Mapped[RecipientStatus] = mapped_column(
        Enum(RecipientStatus), default=RecipientStatus.pending
    )
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ip_address: Mapped[str | None] = mapped_column(String(64))
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    document = relationship("Document", back_populates="recipients")


# ---------------------------------------------------------------------------
# Signed field records (insert-if-absent, replayed into the signed artifact)
# ---------------------------------------------------------------------------


class SignedFieldRecord(Base):
    __tablename__ = "signed_field_records"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "version_number",
            "recipient_id",
            "field_id",
            name="uq_signed_field_records_doc_version_recipient_field",
        ),
        Index("ix_signed_field_records_document_id", "document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id"), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(120), nullable=False)
    field_id: Mapped[str] = mapped_column(String(120), nullable=False)
    field_type: Mapped[str] = mapped_column(String(40), nullable=False)
    field_value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    field_value_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
