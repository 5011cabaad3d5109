"""Cloudflare R2 archive for generated covers (S3-compatible API via boto3)."""

import logging
import os
import uuid
from datetime import datetime
from typing import Any

import boto3
from botocore.client import Config

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an R2 read or write fails."""


def _required(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise StorageError(f"{name} environment variable is not set")
    return value


def generation_key(user_id: uuid.UUID, spotify_playlist_id: str, when: datetime) -> str:
    """Object key for an archived cover: generations/{user}/{playlist}/{epoch_ms}.png."""
    return f"generations/{user_id}/{spotify_playlist_id}/{int(when.timestamp() * 1000)}.png"


class R2Storage:
    """Stores and reads cover PNGs in the configured R2 bucket."""

    def __init__(self, client: Any = None, bucket: str | None = None) -> None:
        self._client = client
        self._bucket = bucket

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name="auto",
                endpoint_url=_required("R2_ENDPOINT_URL"),
                aws_access_key_id=_required("R2_ACCESS_KEY_ID"),
                aws_secret_access_key=_required("R2_SECRET_ACCESS_KEY"),
                config=Config(signature_version="s3v4"),
            )
        return self._client

    @property
    def bucket(self) -> str:
        if self._bucket is None:
            self._bucket = _required("R2_BUCKET")
        return self._bucket

    def put(self, key: str, content: bytes, content_type: str = "image/png") -> None:
        """Write *content* under *key*. Raises StorageError on failure."""
        try:
            self._get_client().put_object(
                Bucket=self.bucket, Key=key, Body=content, ContentType=content_type
            )
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"R2 upload failed for {key}: {exc}") from exc
        logger.info("archived %d bytes to r2://%s/%s", len(content), self.bucket, key)

    def get(self, key: str) -> bytes:
        """Read the object at *key*. Raises StorageError on failure."""
        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=key)
            return bytes(response["Body"].read())
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"R2 download failed for {key}: {exc}") from exc
