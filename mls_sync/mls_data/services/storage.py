import logging
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from django.core.files.base import ContentFile
from django.core.files.storage import FileSystemStorage, Storage

from mls_api.config import settings
from mls_api.exceptions import MediaError

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    def put_object(self, key: str, data: bytes, content_type: str) -> str: ...

    def public_url(self, key: str) -> str: ...


class DjangoObjectStorage:
    """Any Django storage backend, with overwrite-on-put semantics."""

    def __init__(self, storage: Storage | None = None) -> None:
        self.storage = storage or FileSystemStorage(
            location=str(Path(settings.storage.local_root).expanduser()),
            base_url=settings.storage.local_base_url,
        )

    def put_object(self, key: str, data: bytes, content_type: str) -> str:
        try:
            if self.storage.exists(key):
                self.storage.delete(key)
            saved_key = self.storage.save(key, ContentFile(data))
        except OSError as exc:
            raise MediaError("upload", f"could not store {key}: {exc}") from exc
        if saved_key != key:
            raise MediaError("upload", f"storage renamed {key} to {saved_key}")
        return saved_key

    def public_url(self, key: str) -> str:
        return self.storage.url(key)


class S3ObjectStorage:
    def __init__(
        self,
        bucket: str,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        cdn_base_url: str | None = None,
        client=None,
    ) -> None:
        if not bucket:
            raise ValueError("S3 storage requires a bucket")
        self.bucket = bucket
        self.region = region or "us-east-1"
        self.endpoint_url = endpoint_url or None
        self.cdn_base_url = cdn_base_url or None
        if client is None:
            timeout = settings.sync.request_timeout_seconds
            client = boto3.client(
                "s3",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
                config=Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": settings.sync.max_retries, "mode": "standard"},
                ),
            )
        self.client = client

    def put_object(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000",
            )
        except (BotoCoreError, ClientError) as exc:
            raise MediaError("upload", f"s3://{self.bucket}/{key}: {exc}") from exc
        return key

    def public_url(self, key: str) -> str:
        if self.cdn_base_url:
            return f"{self.cdn_base_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


def get_object_storage() -> ObjectStorage:
    backend = (settings.storage.backend or "local").lower()
    if backend == "local":
        return DjangoObjectStorage()
    if backend == "s3":
        return S3ObjectStorage(
            settings.storage.bucket,
            region=settings.storage.region,
            endpoint_url=settings.storage.endpoint_url,
            access_key_id=settings.storage.access_key_id,
            secret_access_key=settings.storage.secret_access_key,
            cdn_base_url=settings.storage.cdn_base_url,
        )
    raise ValueError(f"Unknown storage backend {settings.storage.backend!r}")
