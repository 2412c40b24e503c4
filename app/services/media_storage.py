from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings
from app.services.errors import PayloadTooLarge, StorageFailure, ValidationError

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>.+?);base64,(?P<data>.+)$", re.DOTALL)
_SCOPE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SCOPE_KINDS = ("requests", "sessions")

_EXTENSION_BY_MIME = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


class MediaStorageConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class StorageScope:
    kind: str
    scope_id: str

    def __post_init__(self) -> None:
        if self.kind not in _SCOPE_KINDS:
            raise ValueError(f"Unknown storage scope kind '{self.kind}'")
        if not _SCOPE_ID_RE.match(str(self.scope_id)):
            raise ValidationError(f"Invalid storage scope id '{self.scope_id}'")

    @classmethod
    def for_request(cls, request_id: str) -> "StorageScope":
        return cls("requests", str(request_id))

    @classmethod
    def for_session(cls, session_id: str) -> "StorageScope":
        return cls("sessions", str(session_id))

    @property
    def path(self) -> str:
        return f"{self.kind}/{self.scope_id}"


@dataclass(frozen=True)
class DecodedImage:
    data: bytes
    content_type: str


@dataclass(frozen=True)
class StoredImage:
    url: str
    key: str
    filename: str
    content_type: str
    size: int


def extension_for_mime(content_type: str) -> str:
    return _EXTENSION_BY_MIME.get((content_type or "").lower(), "png")


def role_segment(role: Optional[str]) -> str:
    """Path segment keeping each image role in its own folder within a scope."""
    if not role:
        return ""
    segment = re.sub(r"[^A-Za-z0-9_-]", "_", str(role)).strip("_")
    return segment or "image"


def sanitize_filename(filename: Optional[str], *, default_ext: str = "png") -> str:
    raw = filename if isinstance(filename, str) else ""
    sanitized = re.sub(r"[^a-zA-Z0-9.\-_]", "_", raw)
    sanitized = re.sub(r"_{2,}", "_", sanitized)
    sanitized = sanitized.lstrip("._").rstrip("_").lower()
    if not sanitized:
        sanitized = "image"
    if "." not in sanitized:
        return f"{sanitized}.{default_ext}"
    return sanitized


def decode_image_payload(
    payload: str,
    *,
    max_bytes: int,
    default_content_type: Optional[str] = None,
) -> DecodedImage:
    """
    Decode a ``data:<mime>;base64,<data>`` URL into bytes.

    When ``default_content_type`` is given, a bare base64 string is accepted and assumed to
    be of that type.
    """
    if not isinstance(payload, str) or not payload.strip():
        raise ValidationError("Image payload is empty")

    match = _DATA_URL_RE.match(payload.strip())
    if match:
        content_type = match.group("mime").strip().lower()
        encoded = match.group("data")
    elif default_content_type:
        content_type = default_content_type
        encoded = payload
    else:
        raise ValidationError("Invalid data URL format")

    if not content_type.startswith("image/"):
        raise ValidationError("Only image files are allowed")

    # A base64 string this long already decodes past the ceiling.
    if len(encoded) > (max_bytes // 3 + 1) * 4 + 1024:
        raise PayloadTooLarge(f"File too large (max {max_bytes // (1024 * 1024)}MB)")

    try:
        data = base64.b64decode("".join(encoded.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Image payload is not valid base64") from exc

    if not data:
        raise ValidationError("Image payload is empty")
    if len(data) > max_bytes:
        raise PayloadTooLarge(f"File too large (max {max_bytes // (1024 * 1024)}MB)")
    return DecodedImage(data=data, content_type=content_type)


class MediaStorage:
    """
    Persists image payloads under scope-partitioned keys and returns stable public URLs.

    Subclasses implement the raw write/delete against a concrete backend.
    """

    def __init__(self, *, max_bytes: Optional[int] = None) -> None:
        self.max_bytes = int(max_bytes or settings.IMAGE_DRAFT_MAX_BYTES)

    @property
    def public_prefix(self) -> str:
        raise NotImplementedError

    def build_key(self, *, scope: StorageScope, filename: str, role: Optional[str] = None) -> str:
        parts = [scope.path, role_segment(role), filename]
        return "/".join(p for p in parts if p)

    def url_for(self, key: str) -> str:
        return f"{self.public_prefix.rstrip('/')}/{key}"

    def is_reference(self, value: str) -> bool:
        prefix = self.public_prefix.rstrip("/") + "/"
        return isinstance(value, str) and value.startswith(prefix)

    def save(
        self,
        payload: str,
        *,
        scope: StorageScope,
        filename: Optional[str],
        role: Optional[str] = None,
        default_content_type: Optional[str] = None,
    ) -> StoredImage:
        decoded = decode_image_payload(
            payload, max_bytes=self.max_bytes, default_content_type=default_content_type
        )
        return self.save_bytes(
            decoded.data, scope=scope, filename=filename, role=role, content_type=decoded.content_type
        )

    def save_bytes(
        self,
        data: bytes,
        *,
        scope: StorageScope,
        filename: Optional[str],
        content_type: str,
        role: Optional[str] = None,
    ) -> StoredImage:
        if not content_type.startswith("image/"):
            raise ValidationError("Only image files are allowed")
        if len(data) > self.max_bytes:
            raise PayloadTooLarge(f"File too large (max {self.max_bytes // (1024 * 1024)}MB)")

        safe_name = sanitize_filename(filename, default_ext=extension_for_mime(content_type))
        key = self.build_key(scope=scope, filename=safe_name, role=role)
        self._write(key=key, data=data, content_type=content_type)
        logger.info(
            "media_storage.saved",
            extra={"key": key, "scope": scope.path, "size": len(data), "content_type": content_type},
        )
        return StoredImage(
            url=self.url_for(key),
            key=key,
            filename=safe_name,
            content_type=content_type,
            size=len(data),
        )

    def cleanup(self, scope: StorageScope) -> None:
        try:
            self._delete_scope(scope)
        except StorageFailure as exc:
            logger.warning(
                "media_storage.cleanup_failed",
                extra={"scope": scope.path, "error": str(exc)},
            )

    def _write(self, *, key: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def _delete_scope(self, scope: StorageScope) -> None:
        raise NotImplementedError


class LocalMediaStorage(MediaStorage):
    """Writes files below a local directory served statically under ``public_prefix``."""

    def __init__(
        self,
        *,
        root_dir: str | Path,
        public_prefix: str = "/uploads",
        max_bytes: Optional[int] = None,
    ) -> None:
        super().__init__(max_bytes=max_bytes)
        self.root_dir = Path(root_dir).resolve()
        self._public_prefix = public_prefix

    @property
    def public_prefix(self) -> str:
        return self._public_prefix

    def path_for(self, key: str) -> Path:
        path = (self.root_dir / key).resolve()
        if self.root_dir not in path.parents:
            raise ValidationError(f"Storage key escapes upload root: {key}")
        return path

    def _write(self, *, key: str, data: bytes, content_type: str) -> None:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise StorageFailure(f"Failed to write {key}: {exc}", context={"key": key}) from exc

    def _delete_scope(self, scope: StorageScope) -> None:
        directory = self.path_for(scope.path)
        if not directory.exists():
            return
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise StorageFailure(f"Failed to remove {scope.path}: {exc}") from exc


class S3MediaStorage(MediaStorage):
    """
    Thin wrapper around S3-compatible storage for image uploads.

    Objects are public-read through ``PUBLIC_ASSET_BASE_URL`` (typically a CDN in front of
    the bucket), so the returned URL is stable and needs no presigning.
    """

    def __init__(self, *, max_bytes: Optional[int] = None) -> None:
        super().__init__(max_bytes=max_bytes)
        if not settings.MEDIA_STORAGE_BUCKET:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_BUCKET is required")
        if not settings.MEDIA_STORAGE_ENDPOINT:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_ENDPOINT is required")
        if not settings.MEDIA_STORAGE_ACCESS_KEY or not settings.MEDIA_STORAGE_SECRET_KEY:
            raise MediaStorageConfigurationError(
                "MEDIA_STORAGE_ACCESS_KEY and MEDIA_STORAGE_SECRET_KEY are required"
            )
        if not settings.PUBLIC_ASSET_BASE_URL:
            raise MediaStorageConfigurationError("PUBLIC_ASSET_BASE_URL is required")

        addressing_style = "path" if settings.MEDIA_STORAGE_FORCE_PATH_STYLE else "auto"
        self.bucket = settings.MEDIA_STORAGE_BUCKET
        self.prefix = (settings.MEDIA_STORAGE_PREFIX or "").strip("/")
        self.public_base_url = settings.PUBLIC_ASSET_BASE_URL.rstrip("/")

        session = boto3.session.Session()
        self.client = session.client(
            "s3",
            endpoint_url=settings.MEDIA_STORAGE_ENDPOINT,
            aws_access_key_id=settings.MEDIA_STORAGE_ACCESS_KEY,
            aws_secret_access_key=settings.MEDIA_STORAGE_SECRET_KEY,
            region_name=settings.MEDIA_STORAGE_REGION or "us-east-1",
            use_ssl=bool(settings.MEDIA_STORAGE_USE_SSL),
            config=Config(
                s3={"addressing_style": addressing_style},
                signature_version="s3v4",
            ),
        )

    @property
    def public_prefix(self) -> str:
        return self.public_base_url

    def build_key(self, *, scope: StorageScope, filename: str, role: Optional[str] = None) -> str:
        parts = [p for p in [self.prefix, scope.path, role_segment(role), filename] if p]
        return "/".join(parts)

    def _scope_prefix(self, scope: StorageScope) -> str:
        parts = [p for p in [self.prefix, scope.path] if p]
        return "/".join(parts) + "/"

    def _write(self, *, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="no-cache",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageFailure(f"Failed to upload {key}: {exc}", context={"key": key}) from exc

    def _delete_scope(self, scope: StorageScope) -> None:
        prefix = self._scope_prefix(scope)
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                objects = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if objects:
                    self.client.delete_objects(Bucket=self.bucket, Delete={"Objects": objects, "Quiet": True})
        except (BotoCoreError, ClientError) as exc:
            raise StorageFailure(f"Failed to remove {prefix}: {exc}") from exc


def get_media_storage() -> MediaStorage:
    backend = (settings.MEDIA_STORAGE_BACKEND or "local").strip().lower()
    if backend == "local":
        return LocalMediaStorage(
            root_dir=settings.MEDIA_STORAGE_LOCAL_ROOT,
            public_prefix=settings.MEDIA_STORAGE_PUBLIC_PREFIX,
        )
    if backend == "s3":
        return S3MediaStorage()
    raise MediaStorageConfigurationError(f"Unsupported MEDIA_STORAGE_BACKEND '{backend}'")
