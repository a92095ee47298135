"""esign documents, versions, recipients and signed fields

Revision ID: 3f9c2a7d41b0
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "3f9c2a7d41b0"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- Enums ---
    documentstatus = sa.Enum(
        "draft",
        "sent",
        "in_progress",
        "signed",
        "completed",
        "voided",
        "rejected",
        "delivery_failed",
        "expired",
        name="documentstatus",
    )
    versionstatus = sa.Enum(
        "draft", "save", "final", "sent", "error", name="versionstatus"
    )
    recipientrole = sa.Enum("signer", "approver", "viewer", name="recipientrole")
    recipientstatus = sa.Enum(
        "pending",
        "sent",
        "viewed",
        "signed",
        "approved",
        "rejected",
        "delivery_failed",
        "expired",
        name="recipientstatus",
    )
    for enum_type in (documentstatus, versionstatus, recipientrole, recipientstatus):
        enum_type.create(op.get_bind(), checkfirst=True)

    # --- Documents ---
    op.create_table(
        "documents",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("owner_id", sa.String(length=120), nullable=False),
        sa.Column("document_name", sa.String(length=500), nullable=False),
        sa.Column("original_file_name", sa.String(length=500), nullable=True),
        sa.Column("file_name", sa.String(length=500), nullable=True),
        sa.Column("status", documentstatus, nullable=False),
        sa.Column("current_version", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_owner_id", "documents", ["owner_id"])
    op.create_index("ix_documents_status", "documents", ["status"])

    # --- Document versions ---
    op.create_table(
        "document_versions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("file_path", sa.String(length=2000), nullable=True),
        sa.Column("file_name", sa.String(length=500), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False),
        sa.Column("pdf_data", sa.LargeBinary(), nullable=True),
        sa.Column("status", versionstatus, nullable=False),
        sa.Column("change_log", sa.Text(), nullable=True),
        sa.Column("checksum_sha256", sa.String(length=64), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=True),
        sa.Column("signing_token", sa.String(length=128), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_id",
            "version_number",
            name="uq_document_versions_doc_version",
        ),
    )
    op.create_index(
        "ix_document_versions_document_id", "document_versions", ["document_id"]
    )
    op.create_index(
        "ix_document_versions_signing_token", "document_versions", ["signing_token"]
    )

    # --- Recipients ---
    op.create_table(
        "document_recipients",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("recipient_id", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", recipientrole, nullable=False),
        sa.Column("status", recipientstatus, nullable=False),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_id",
            "recipient_id",
            name="uq_document_recipients_doc_recipient",
        ),
    )
    op.create_index(
        "ix_document_recipients_document_id", "document_recipients", ["document_id"]
    )

    # --- Signed field records ---
    op.create_table(
        "signed_field_records",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("recipient_id", sa.String(length=120), nullable=False),
        sa.Column("field_id", sa.String(length=120), nullable=False),
        sa.Column("field_type", sa.String(length=40), nullable=False),
        sa.Column("field_value", sa.Text(), nullable=False),
        sa.Column("field_value_hash", sa.String(length=64), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_id",
            "version_number",
            "recipient_id",
            "field_id",
            name="uq_signed_field_records_doc_version_recipient_field",
        ),
    )
    op.create_index(
        "ix_signed_field_records_document_id", "signed_field_records", ["document_id"]
    )


def downgrade() -> None:
    op.drop_index(
        "ix_signed_field_records_document_id", table_name="signed_field_records"
    )
    op.drop_table("signed_field_records")

    op.drop_index(
        "ix_document_recipients_document_id", table_name="document_recipients"
    )
    op.drop_table("document_recipients")

    op.drop_index(
        "ix_document_versions_signing_token", table_name="document_versions"
    )
    op.drop_index("ix_document_versions_document_id", table_name="document_versions")
    op.drop_table("document_versions")

    op.drop_index("ix_documents_status", table_name="documents")
    op.drop_index("ix_documents_owner_id", table_name="documents")
    op.drop_table("documents")

    for name in ("recipientstatus", "recipientrole", "versionstatus", "documentstatus"):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
