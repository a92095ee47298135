import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    environment = os.getenv("ENVIRONMENT", "").strip().lower()
    if environment == "development":
        return "sqlite:///./dotmac_esign.db"

    raise ValueError(
        "DATABASE_URL is not set. Set DATABASE_URL for non-development "
        "environments or set ENVIRONMENT=development for local defaults."
    )


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Local version storage; each owner gets <storage_root>/<owner_id>/
    storage_root: str = os.getenv("STORAGE_ROOT", "uploads")
    file_url_prefix: str = os.getenv("FILE_URL_PREFIX", "/api/documents/file")
    max_name_candidates: int = int(os.getenv("MAX_NAME_CANDIDATES", "100"))

    # Signing
    signing_token_ttl_days: int = int(os.getenv("SIGNING_TOKEN_TTL_DAYS", "30"))
    audit_page_min_y: float = float(os.getenv("AUDIT_PAGE_MIN_Y", "100"))

    # S3 / MinIO mirror (optional)
    s3_endpoint_url: str = os.getenv("S3_ENDPOINT_URL", "")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "")
    s3_bucket_name: str = os.getenv("S3_BUCKET_NAME", "esign-documents")
    s3_region: str = os.getenv("S3_REGION", "us-east-1")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Branding
    brand_name: str = os.getenv("BRAND_NAME", "DotMac eSign")


settings = Settings()
