from app.models.signing import (  # noqa: F401
    Document,
    DocumentStatus,
    DocumentVersion,
    Recipient,
    RecipientRole,
    RecipientStatus,
    SignedFieldRecord,
    VersionStatus,
)
