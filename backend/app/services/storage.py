from __future__ import annotations

import logging
import uuid

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings
from app.core.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)

DOCUMENT_PREFIX = "outpass-documents"

ALLOWED_DOCUMENT_TYPES = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
}


def public_base_url(settings: Settings) -> str:
    if settings.storage_public_base_url:
        return settings.storage_public_base_url
    if settings.storage_endpoint_url:
        return f"{settings.storage_endpoint_url.rstrip('/')}/{settings.storage_bucket}"
    return f"https://{settings.storage_bucket}.s3.{settings.storage_region}.amazonaws.com"


class DocumentStorage:
    """Uploads supporting documents to an S3-compatible bucket and hands back their URL.

    ``client`` is any boto3 S3 client; when omitted one is built from settings on
    first upload, path-style so MinIO endpoints work the same as AWS.
    """

    def __init__(
        self,
        bucket: str,
        base_url: str,
        max_bytes: int,
        client=None,
        settings: Settings | None = None,
    ) -> None:
        self._bucket = bucket
        self._base_url = base_url.rstrip("/")
        self._max_bytes = max_bytes
        self._client = client
        self._settings = settings

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentStorage":
        return cls(
            settings.storage_bucket,
            public_base_url(settings),
            settings.max_upload_bytes,
            settings=settings,
        )

    def _get_client(self):
        if self._client is None:
            settings = self._settings
            if settings is None:
                raise StorageError("Document storage is not configured")
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.storage_endpoint_url,
                region_name=settings.storage_region,
                aws_access_key_id=settings.storage_access_key_id,
                aws_secret_access_key=settings.storage_secret_access_key,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        return self._client

    def save(self, *, filename: str | None, content_type: str | None, data: bytes) -> str:
        extension = ALLOWED_DOCUMENT_TYPES.get((content_type or "").lower())
        if extension is None:
            raise ValidationError(
                "Supporting document must be a PDF, JPEG or PNG file",
                details={"content_type": content_type},
            )
        if not data:
            raise ValidationError("Supporting document is empty")
        if len(data) > self._max_bytes:
            raise ValidationError(
                "Supporting document is too large",
                details={"max_bytes": self._max_bytes, "size": len(data)},
            )

        key = f"{DOCUMENT_PREFIX}/{uuid.uuid4().hex}{extension}"
        try:
            self._get_client().put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type.lower(),
                Metadata={"original-filename": filename or ""},
            )
        except (ClientError, BotoCoreError) as exc:
            logger.exception("Failed to upload supporting document %s to bucket %s", filename, self._bucket)
            raise StorageError("Could not store supporting document") from exc
        logger.info("Uploaded supporting document %s as %s", filename, key)
        return f"{self._base_url}/{key}"
