from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

UPLOAD_PREFIX = "uploads"
OBJECTS_ROUTE_PREFIX = "/objects/"


class StorageError(RuntimeError):
    pass


class ObjectNotFound(StorageError):
    pass


class InvalidObjectKey(StorageError):
    pass


@dataclass(frozen=True)
class StoredObject:
    body: BinaryIO
    content_type: str
    size: int | None


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> StoredObject:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def presigned_put_url(self, key: str, *, expires_in: int = 900) -> str | None:
        """Direct-to-storage upload URL, or None when the backend has none."""
        return None

    def public_url(self, key: str) -> str:
        return f"{OBJECTS_ROUTE_PREFIX}{key.lstrip('/')}"

    def normalize_key(self, raw: str) -> str:
        return normalize_object_key(raw)


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents and p != self.root.resolve():
            raise InvalidObjectKey(f"Invalid storage key: {key!r}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> StoredObject:
        p = self._path(key)
        if not p.is_file():
            raise ObjectNotFound(key)
        content_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        return StoredObject(body=p.open("rb"), content_type=content_type, size=p.stat().st_size)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        p = self._path(key)
        if not p.is_file():
            raise ObjectNotFound(key)
        p.unlink()


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_domain: str = ""

    def _client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload object {key}") from e

    def open(self, key: str) -> StoredObject:
        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise ObjectNotFound(key) from e
            raise StorageError(f"Failed to read object {key}") from e
        return StoredObject(
            body=obj["Body"],  # type: ignore[arg-type]
            content_type=obj.get("ContentType") or "application/octet-stream",
            size=obj.get("ContentLength"),
        )

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> None:
        try:
            self._client().delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete object {key}") from e

    def presigned_put_url(self, key: str, *, expires_in: int = 900) -> str | None:
        try:
            return self._client().generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": "application/octet-stream"},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError("Failed to generate upload URL") from e

    def public_url(self, key: str) -> str:
        if self.public_domain:
            return f"https://{self.public_domain}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def normalize_key(self, raw: str) -> str:
        return normalize_object_key(raw, bucket=self.bucket, public_domain=self.public_domain)


def normalize_object_key(raw: str, *, bucket: str = "", public_domain: str = "") -> str:
    """
    Collapse the URL forms clients send back (S3 virtual-host or path-style URLs,
    presigned URLs, CDN URLs, /objects/... paths) to the bare storage key.
    Anything unrecognised is returned unchanged.
    """
    value = (raw or "").strip()
    if not value:
        return value

    if value.startswith(OBJECTS_ROUTE_PREFIX):
        return unquote(value[len(OBJECTS_ROUTE_PREFIX):])

    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https"):
        return value

    host = parsed.netloc.lower()
    path = unquote(parsed.path.lstrip("/"))

    if path.startswith(OBJECTS_ROUTE_PREFIX.lstrip("/")):
        return path[len(OBJECTS_ROUTE_PREFIX) - 1:]
    if public_domain and host == public_domain.lower():
        return path
    if bucket and host.startswith(f"{bucket.lower()}."):
        return path
    if bucket and ".amazonaws.com" in host and path.startswith(f"{bucket}/"):
        return path[len(bucket) + 1:]
    if "X-Amz-Signature=" in parsed.query:
        marker = f"{UPLOAD_PREFIX}/"
        idx = path.find(marker)
        if idx >= 0:
            return path[idx:]
    return value


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "us-east-1").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_domain=(config.get("S3_PUBLIC_DOMAIN") or "").strip(),
        )
    # default local
    root_cfg = (config.get("STORAGE_ROOT") or "").strip()
    root = Path(root_cfg) if root_cfg else Path(os.getcwd()) / "storage"
    return LocalStorage(root=root)
