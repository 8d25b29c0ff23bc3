"""Abstraction over remote object storage for staged and exported files."""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from table_importer.core.config import Settings

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per call
DELETE_BATCH_SIZE = 1000


class ObjectStoreError(RuntimeError):
    """List/remove/upload against the remote store failed."""


class ObjectStore(Protocol):
    def list(self, prefix: str) -> list[str]:
        """Return every key under ``prefix``."""
        ...

    def remove(self, keys: Iterable[str]) -> None:
        ...

    def upload(
        self, key: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> None:
        ...

    def public_url(self, key: str) -> str:
        ...


class S3ObjectStore:
    """S3 (or S3-compatible) bucket keyed by ``{tenant_id}/{filename}``."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        public_base_url: str | None = None,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url
        self._client = client or boto3.client(
            "s3", endpoint_url=endpoint_url, region_name=region
        )

    def list(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Failed to list {prefix!r}: {e}") from e
        return keys

    def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response = self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                raise ObjectStoreError(f"Failed to delete objects: {e}") from e
            errors = response.get("Errors") or []
            if errors:
                first = errors[0]
                raise ObjectStoreError(
                    f"Failed to delete {len(errors)} object(s), first: "
                    f"{first.get('Key')} ({first.get('Message')})"
                )

    def upload(
        self, key: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Failed to upload {key!r}: {e}") from e

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return self._client.generate_presigned_url(
            "get_object", Params={"Bucket": self.bucket, "Key": key}, ExpiresIn=3600
        )


def build_object_store(settings: Settings) -> ObjectStore | None:
    """Return the configured store, or None when no bucket is set."""
    if not settings.s3_bucket:
        logger.info("No S3_BUCKET configured, remote staging cleanup disabled")
        return None
    return S3ObjectStore(
        settings.s3_bucket,
        endpoint_url=settings.s3_endpoint_url,
        region=settings.s3_region,
        public_base_url=settings.s3_public_base_url,
    )
