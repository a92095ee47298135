import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Optional S3/MinIO mirror of persisted version bytes."""

    @staticmethod
    def is_configured() -> bool:
        return bool(
            settings.s3_endpoint_url
            and settings.s3_access_key
            and settings.s3_secret_key
        )

    @staticmethod
    def _get_client():  # type: ignore[return]
        if not ObjectStorage.is_configured():
            raise RuntimeError(
                "S3 storage is not configured. "
                "Set S3_ENDPOINT_URL, S3_ACCESS_KEY, and S3_SECRET_KEY."
            )
        return boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4"),
        )

    @staticmethod
    def generate_storage_key(document_id, version: int, file_name: str) -> str:
        return f"documents/{document_id}/v{version}/{file_name}"

    @staticmethod
    def mirror(storage_key: str, data: bytes) -> bool:
        """Upload a copy of version bytes; failures are logged, never raised."""
        if not ObjectStorage.is_configured():
            return False
        try:
            client = ObjectStorage._get_client()
            client.put_object(
                Bucket=settings.s3_bucket_name,
                Key=storage_key,
                Body=data,
                ContentType="application/pdf",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Failed to mirror %s to object storage: %s", storage_key, exc)
            return False
        logger.info("Mirrored %s (%d bytes)", storage_key, len(data))
        return True

    @staticmethod
    def fetch(storage_key: str) -> bytes | None:
        if not ObjectStorage.is_configured():
            return None
        try:
            client = ObjectStorage._get_client()
            response = client.get_object(Bucket=settings.s3_bucket_name, Key=storage_key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Failed to fetch %s from object storage: %s", storage_key, exc)
            return None


object_storage = ObjectStorage()
