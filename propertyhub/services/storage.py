from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..core.errors import ApiError, ErrorCodes
from .image_locations import is_local_upload_url, local_upload_prefixes

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    LOCAL = "local"
    S3 = "s3"


@dataclass
class StoredFile:
    relative_path: str
    public_path: str
    local_path: Optional[str] = None


@dataclass
class RetrievedFile:
    content: bytes
    content_type: str


class StorageService:
    """Uploaded files, on local disk or in an S3 bucket.

    Files are addressed by a path relative to the storage root. The public
    path handed to clients is the configured uploads prefix plus that path.
    """

    def __init__(self) -> None:
        backend_name = (settings.file_storage_backend or "local").lower()
        if backend_name.upper() not in StorageBackend.__members__:
            backend_name = "local"
        self.backend = StorageBackend[backend_name.upper()]
        self.upload_root = settings.uploads_root_path
        self.public_prefix = settings.uploads_public_path.rstrip("/")
        self.api_base = settings.api_base_url.rstrip("/")
        self._s3_client = None
        if self.backend == StorageBackend.LOCAL:
            self.upload_root.mkdir(parents=True, exist_ok=True)
        else:
            self._configure_s3_client()

    def _configure_s3_client(self) -> None:
        try:
            import boto3
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("boto3 is required for the S3 storage backend (install propertyhub[s3]).") from exc

        if not settings.s3_bucket:
            raise RuntimeError("S3_BUCKET must be set when using the S3 storage backend.")

        session_kwargs = {
            "region_name": settings.s3_region,
            "aws_access_key_id": settings.s3_access_key,
            "aws_secret_access_key": settings.s3_secret_key,
        }
        if settings.s3_endpoint_url:
            session_kwargs["endpoint_url"] = settings.s3_endpoint_url
        self._s3_client = boto3.client("s3", **{k: v for k, v in session_kwargs.items() if v})

    def _normalize_relative(self, relative_or_public_path: str) -> str:
        candidate = (relative_or_public_path or "").strip()
        if self.public_prefix.startswith("http") and candidate.startswith(self.public_prefix + "/"):
            return candidate[len(self.public_prefix) + 1:]
        if candidate.startswith(self.api_base + "/"):
            candidate = candidate[len(self.api_base):]
        for prefix in local_upload_prefixes():
            if candidate.startswith(prefix + "/"):
                candidate = candidate[len(prefix) + 1:]
                break
        relative = candidate.lstrip("/")
        if ".." in relative.split("/"):
            raise ValueError(f"Refusing path outside the upload root: {relative_or_public_path}")
        return relative

    def _build_public_path(self, relative_path: str) -> str:
        return f"{self.public_prefix}/{relative_path}"

    def is_managed_path(self, value: Optional[str]) -> bool:
        """True when ``value`` points at a file this service stored."""
        if not value:
            return False
        if is_local_upload_url(value):
            return True
        return self.public_prefix.startswith("http") and value.startswith(self.public_prefix + "/")

    def save_file(self, relative_path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        relative = self._normalize_relative(relative_path)
        guessed_type = content_type or mimetypes.guess_type(relative)[0] or "application/octet-stream"
        public_path = self._build_public_path(relative)

        if self.backend == StorageBackend.LOCAL:
            target_path = self.upload_root / relative
            target_path.parent.mkdir(parents=True, exist_ok=True)
            target_path.write_bytes(content)
            return StoredFile(relative_path=relative, public_path=public_path, local_path=str(target_path))

        assert self._s3_client is not None  # for type checkers
        self._s3_client.put_object(
            Bucket=settings.s3_bucket,
            Key=relative,
            Body=content,
            ContentType=guessed_type,
        )
        return StoredFile(relative_path=relative, public_path=public_path, local_path=None)

    def delete_file(self, relative_or_public_path: str) -> None:
        relative = self._normalize_relative(relative_or_public_path)
        if not relative:
            return
        if self.backend == StorageBackend.LOCAL:
            target = self.upload_root / relative
            if target.exists():
                target.unlink()
            return

        assert self._s3_client is not None
        self._s3_client.delete_object(Bucket=settings.s3_bucket, Key=relative)

    async def delete_file_async(self, relative_or_public_path: str) -> None:
        await run_in_threadpool(self.delete_file, relative_or_public_path)

    async def discard_quietly(self, relative_or_public_path: Optional[str]) -> None:
        """Remove a just-stored upload after a failed request; errors are only logged."""
        if not relative_or_public_path:
            return
        try:
            await self.delete_file_async(relative_or_public_path)
        except Exception:
            logger.exception("Failed to clean up uploaded file %s", relative_or_public_path)

    def retrieve_file(self, relative_or_public_path: str) -> RetrievedFile:
        relative = self._normalize_relative(relative_or_public_path)
        not_found = ApiError(404, "File not found.", ErrorCodes.RES_NOT_FOUND)
        if self.backend == StorageBackend.LOCAL:
            target = self.upload_root / relative
            if not target.exists():
                raise not_found
            data = target.read_bytes()
            content_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
            return RetrievedFile(content=data, content_type=content_type)

        assert self._s3_client is not None
        try:
            obj = self._s3_client.get_object(Bucket=settings.s3_bucket, Key=relative)
        except self._s3_client.exceptions.NoSuchKey:  # type: ignore[attr-defined]
            raise not_found from None
        content = obj["Body"].read()
        content_type = obj.get("ContentType") or mimetypes.guess_type(relative)[0] or "application/octet-stream"
        return RetrievedFile(content=content, content_type=content_type)


storage_service = StorageService()
