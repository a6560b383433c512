from __future__ import annotations

import asyncio
import secrets
import string
import time
from pathlib import Path
from typing import Any, Protocol

from .errors import ConfigError

_BASE36 = string.digits + string.ascii_lowercase


def new_object_key(prefix: str, extension: str, *, now_ms: int | None = None) -> str:
    """
    Fresh, collision-resistant object key: `<prefix>/user_post_<epoch-ms>_<6 base36 chars><ext>`.
    """
    ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    ext = (extension or "").strip()
    if ext and not ext.startswith("."):
        ext = "." + ext
    head = (prefix or "").strip().strip("/")
    name = f"user_post_{ms}_{suffix}{ext}"
    return f"{head}/{name}" if head else name


class BlobStore(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        ...

    def public_url(self, key: str) -> str:
        ...


class LocalBlobStore:
    """Filesystem-backed blob store; the CLI default."""

    def __init__(self, root: str | Path, *, public_base_url: str | None = None) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        base = (public_base_url or "").strip().rstrip("/")
        self.public_base_url = base or None

    def _path_for(self, key: str) -> Path:
        rel = (key or "").strip().lstrip("/")
        if not rel or ".." in Path(rel).parts:
            raise ValueError(f"invalid object key: {key!r}")
        return self.root / rel

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(self._write, path, bytes(data))

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        tmp.replace(path)

    def public_url(self, key: str) -> str:
        path = self._path_for(key)
        if self.public_base_url:
            return f"{self.public_base_url}/{key.strip().lstrip('/')}"
        return path.resolve().as_uri()


class S3BlobStore:
    """S3-compatible object storage (AWS S3, MinIO, Supabase storage, ...)."""

    def __init__(
        self,
        *,
        endpoint_url: str,
        bucket: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str = "us-east-1",
        public_base_url: str | None = None,
        client: Any = None,
    ) -> None:
        self.endpoint_url = (endpoint_url or "").strip().rstrip("/")
        self.bucket = (bucket or "").strip()
        if not self.bucket:
            raise ConfigError("S3 bucket name must be non-empty")

        base = (public_base_url or "").strip().rstrip("/")
        self.public_base_url = base or f"{self.endpoint_url}/{self.bucket}"

        if client is None:
            try:
                import boto3
            except ImportError as e:
                raise ConfigError(
                    "boto3 is required for the s3 storage backend. Install with: pip install 'ugc-ingest[s3]'"
                ) from e

            client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name=region,
            )
        self._client = client

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=bytes(data),
            ContentType=content_type,
            ACL="public-read",
        )

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key.strip().lstrip('/')}"
