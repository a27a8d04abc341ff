"""S3-compatible object storage client and bucket provisioning."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from app.config import Settings
from app.services.storage_errors import (
    FileValidationError,
    ObjectNotFoundError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 1024 * 1024
DELETE_BATCH_SIZE = 1000
NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
MISSING_BUCKET_CODES = frozenset({"404", "NoSuchBucket", "NotFound"})
BUCKET_SUFFIXES = ("images", "documents", "videos", "temp")
PUBLIC_READ_SUFFIX = "temp"


@dataclass
class StreamResult:
    """Streaming metadata for download responses."""

    chunks: Iterator[bytes]
    content_type: str | None
    content_length: int | None


@dataclass(frozen=True)
class ObjectStat:
    size: int
    etag: str | None
    content_type: str | None = None
    last_modified: datetime | None = None


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    etag: str | None = None
    last_modified: datetime | None = None
    is_prefix: bool = False


@dataclass
class BucketRegistry:
    """Bucket names derived from the configured base name.

    Built once at process start and handed to the object store. ``ensured``
    caches buckets confirmed to exist; recomputing it is harmless.
    """

    default_bucket: str
    suffixes: tuple[str, ...] = BUCKET_SUFFIXES
    ensured: set[str] = field(default_factory=set)

    def bucket_for(self, suffix: str | None) -> str:
        if not suffix:
            return self.default_bucket
        if suffix not in self.suffixes:
            raise FileValidationError(f"Unknown bucket suffix: {suffix}")
        return f"{self.default_bucket}-{suffix}"

    def all_buckets(self) -> list[str]:
        return [self.default_bucket] + [self.bucket_for(suffix) for suffix in self.suffixes]

    def is_public_read(self, bucket: str) -> bool:
        return bucket == self.bucket_for(PUBLIC_READ_SUFFIX)


class ObjectStore(Protocol):
    """Storage provider interface."""

    buckets: BucketRegistry

    def put(
        self, bucket: str, key: str, data: bytes, size: int, content_type: str | None
    ) -> None: ...
    def get(self, bucket: str, key: str) -> StreamResult: ...
    def delete(self, bucket: str, key: str) -> None: ...
    def delete_many(self, bucket: str, keys: list[str]) -> None: ...
    def stat(self, bucket: str, key: str) -> ObjectStat: ...
    def presign_get(self, bucket: str, key: str, ttl_seconds: int) -> str: ...
    def presign_put(self, bucket: str, key: str, ttl_seconds: int) -> str: ...


def public_read_policy(bucket: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"AWS": ["*"]},
                    "Action": ["s3:GetObject"],
                    "Resource": [f"arn:aws:s3:::{bucket}/*"],
                }
            ],
        }
    )


class S3ObjectStore:
    """S3/MinIO/R2-backed object store spanning the registry's buckets."""

    def __init__(
        self,
        buckets: BucketRegistry,
        endpoint_url: str,
        access_key: str | None,
        secret_key: str | None,
        region: str,
        client: Any | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
    ) -> None:
        self.buckets = buckets
        self.region = region
        if client is not None:
            self.client = client
            return
        try:
            import boto3
            from botocore.config import Config
        except ImportError as exc:
            raise StorageUnavailableError("boto3 is required for S3 storage") from exc
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": 1, "mode": "standard"},
                signature_version="s3v4",
            ),
        )

    @staticmethod
    def _error_code(exc: Exception) -> str:
        response = getattr(exc, "response", None)
        if isinstance(response, dict):
            err = response.get("Error", {})
            if isinstance(err, dict):
                return str(err.get("Code", ""))
        return ""

    def _translate(self, exc: Exception, action: str, bucket: str, key: str | None = None):
        code = self._error_code(exc)
        if key is not None and code in NOT_FOUND_CODES:
            return ObjectNotFoundError(f"Object not found: {bucket}/{key}", bucket=bucket, key=key)
        logger.error(
            "object_storage_failure action=%s bucket=%s key=%s code=%s",
            action,
            bucket,
            key,
            code or type(exc).__name__,
        )
        return StorageUnavailableError(
            f"Failed to {action} object", bucket=bucket, key=key, code=code
        )

    def ensure_bucket(self, bucket: str) -> bool:
        """Create bucket if missing (safe to call repeatedly).

        Returns True when the bucket was created by this call.
        """
        if bucket in self.buckets.ensured:
            return False
        try:
            self.client.head_bucket(Bucket=bucket)
            self.buckets.ensured.add(bucket)
            return False
        except Exception as exc:
            code = self._error_code(exc)
            if code not in MISSING_BUCKET_CODES:
                raise StorageUnavailableError(
                    "Unable to check storage bucket", bucket=bucket, code=code
                ) from exc

        kwargs: dict = {"Bucket": bucket}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**kwargs)
            if self.buckets.is_public_read(bucket):
                self.client.put_bucket_policy(Bucket=bucket, Policy=public_read_policy(bucket))
        except Exception as exc:
            raise StorageUnavailableError(
                "Unable to create storage bucket", bucket=bucket, code=self._error_code(exc)
            ) from exc
        self.buckets.ensured.add(bucket)
        logger.info("Created storage bucket: %s", bucket)
        return True

    def ensure_buckets(self) -> dict[str, bool]:
        """Provision every registry bucket; one failure does not stop the rest."""
        results: dict[str, bool] = {}
        for bucket in self.buckets.all_buckets():
            try:
                self.ensure_bucket(bucket)
                results[bucket] = True
            except StorageUnavailableError:
                logger.exception("bucket_provision_failed bucket=%s", bucket)
                results[bucket] = False
        logger.info(
            "storage_buckets_initialized ok=%s failed=%s",
            sum(results.values()),
            len(results) - sum(results.values()),
        )
        return results

    def put(
        self, bucket: str, key: str, data: bytes, size: int, content_type: str | None
    ) -> None:
        if size != len(data):
            raise FileValidationError(
                f"Declared size {size} does not match payload length {len(data)}"
            )
        kwargs: dict = {
            "Bucket": bucket,
            "Key": key,
            "Body": data,
            "ContentLength": size,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except Exception as exc:
            raise self._translate(exc, "upload", bucket) from exc

    def get(self, bucket: str, key: str) -> StreamResult:
        try:
            obj = self.client.get_object(Bucket=bucket, Key=key)
        except Exception as exc:
            raise self._translate(exc, "download", bucket, key) from exc

        body = obj["Body"]
        return StreamResult(
            chunks=iter(lambda: body.read(STREAM_CHUNK_SIZE), b""),
            content_type=obj.get("ContentType"),
            content_length=obj.get("ContentLength"),
        )

    def delete(self, bucket: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
        except Exception as exc:
            raise self._translate(exc, "delete", bucket) from exc
        logger.info("object_deleted bucket=%s key=%s", bucket, key)

    def delete_many(self, bucket: str, keys: list[str]) -> None:
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except Exception as exc:
                raise self._translate(exc, "delete", bucket) from exc
            errors = response.get("Errors") or []
            if errors:
                failed = [err.get("Key") for err in errors]
                logger.error("object_batch_delete_failed bucket=%s keys=%s", bucket, failed)
                raise StorageUnavailableError(
                    "Failed to delete objects", bucket=bucket, keys=failed
                )
        logger.info("objects_deleted bucket=%s count=%s", bucket, len(keys))

    def stat(self, bucket: str, key: str) -> ObjectStat:
        try:
            head = self.client.head_object(Bucket=bucket, Key=key)
        except Exception as exc:
            raise self._translate(exc, "stat", bucket, key) from exc
        return ObjectStat(
            size=int(head.get("ContentLength", 0)),
            etag=(head.get("ETag") or "").strip('"') or None,
            content_type=head.get("ContentType"),
            last_modified=head.get("LastModified"),
        )

    def exists(self, bucket: str, key: str) -> bool:
        try:
            self.stat(bucket, key)
            return True
        except ObjectNotFoundError:
            return False

    def _presign(self, method: str, bucket: str, key: str, ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise FileValidationError("Presigned URL lifetime must be positive")
        try:
            return self.client.generate_presigned_url(
                method,
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except Exception as exc:
            raise self._translate(exc, "presign", bucket) from exc

    def presign_get(self, bucket: str, key: str, ttl_seconds: int) -> str:
        return self._presign("get_object", bucket, key, ttl_seconds)

    def presign_put(self, bucket: str, key: str, ttl_seconds: int) -> str:
        return self._presign("put_object", bucket, key, ttl_seconds)

    def copy(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> None:
        try:
            self.client.copy_object(
                Bucket=dst_bucket,
                Key=dst_key,
                CopySource={"Bucket": src_bucket, "Key": src_key},
            )
        except Exception as exc:
            raise self._translate(exc, "copy", src_bucket, src_key) from exc

    def list(self, bucket: str, prefix: str = "", recursive: bool = False) -> list[ObjectInfo]:
        kwargs: dict = {"Bucket": bucket, "Prefix": prefix}
        if not recursive:
            kwargs["Delimiter"] = "/"
        objects: list[ObjectInfo] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(**kwargs):
                for item in page.get("Contents", []):
                    objects.append(
                        ObjectInfo(
                            key=item["Key"],
                            size=int(item.get("Size", 0)),
                            etag=(item.get("ETag") or "").strip('"') or None,
                            last_modified=item.get("LastModified"),
                        )
                    )
                for common in page.get("CommonPrefixes", []):
                    objects.append(ObjectInfo(key=common["Prefix"], size=0, is_prefix=True))
        except Exception as exc:
            raise self._translate(exc, "list", bucket) from exc
        return objects

    def bucket_size(self, bucket: str) -> int:
        return sum(item.size for item in self.list(bucket, "", recursive=True))


def build_object_store(settings: Settings, client: Any | None = None) -> S3ObjectStore:
    if client is None:
        settings.validate_s3_config()
    return S3ObjectStore(
        buckets=BucketRegistry(default_bucket=settings.s3_bucket_name),
        endpoint_url=settings.s3_endpoint_url,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        region=settings.s3_region,
        client=client,
        connect_timeout=settings.s3_connect_timeout,
        read_timeout=settings.s3_read_timeout,
    )
