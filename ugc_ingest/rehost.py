from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from typing import Literal
from urllib.parse import urlsplit

import httpx

from .blob_store import BlobStore, new_object_key
from .config_schema import MediaConfig
from .errors import MediaRehostError
from .http_status import is_retryable_http_exception
from .post import MediaAsset, NormalizedPost
from .retry import RetryConfig, RetryEvent, SleepFn, call_with_retries
from .run_log import RunLogger, ensure_logger

AssetKind = Literal["image", "video"]

_KNOWN_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".heic", ".mp4", ".mov", ".m4v", ".webm"}
_CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
}


def needs_rehost(url: str, patterns: list[str] | tuple[str, ...]) -> bool:
    """True when the URL's host matches a known hotlink-blocking CDN pattern."""
    try:
        host = (urlsplit((url or "").strip()).hostname or "").casefold()
    except ValueError:
        return False
    if not host:
        return False
    return any(p and p.casefold() in host for p in patterns)


def _extension_for(source_url: str, content_type: str | None, kind: AssetKind) -> str:
    try:
        suffix = PurePosixPath(urlsplit(source_url).path or "").suffix.lower()
    except ValueError:
        suffix = ""
    if suffix in _KNOWN_EXTENSIONS:
        return ".jpg" if suffix == ".jpeg" else suffix

    ctype = (content_type or "").split(";", 1)[0].strip().lower()
    if ctype in _CONTENT_TYPE_EXTENSIONS:
        return _CONTENT_TYPE_EXTENSIONS[ctype]
    return ".mp4" if kind == "video" else ".jpg"


def _content_type_for(extension: str, header: str | None) -> str:
    ctype = (header or "").split(";", 1)[0].strip().lower()
    if ctype.startswith(("image/", "video/")):
        return ctype
    guessed, _ = mimetypes.guess_type(f"file{extension}")
    return guessed or "application/octet-stream"


@dataclass(frozen=True)
class RehostOutcome:
    post: NormalizedPost
    media: MediaAsset
    thumbnail: MediaAsset | None = None

    @property
    def rehosted_count(self) -> int:
        n = 1 if self.media.rehosted else 0
        if self.thumbnail is not None and self.thumbnail.rehosted:
            n += 1
        return n


class MediaRehoster:
    """
    Copies CDN-hosted media into owned blob storage through an image proxy.

    `rehost()` never raises: on any fetch or upload failure the asset keeps its
    source URL and a warning is logged.
    """

    def __init__(
        self,
        config: MediaConfig,
        store: BlobStore | None,
        *,
        key_prefix: str = "ugc",
        client: httpx.AsyncClient | None = None,
        logger: RunLogger | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._key_prefix = key_prefix
        self._log = ensure_logger(logger)
        self._sleep_fn = sleep_fn
        self._retry = RetryConfig.with_retries(config.max_retries, base_delay_seconds=0.5)

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.fetch_timeout_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self._config.proxy_url) and self._store is not None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "MediaRehoster":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    def asset_for(self, url: str) -> MediaAsset:
        return MediaAsset.pending(url, needs_rehost=needs_rehost(url, self._config.cdn_patterns))

    async def _fetch_via_proxy(self, proxy_url: str, source_url: str) -> tuple[bytes, str | None]:
        async def _do_get() -> httpx.Response:
            resp = await self._client.get(
                proxy_url,
                params={"url": source_url},
                timeout=self._config.fetch_timeout_seconds,
            )
            resp.raise_for_status()
            return resp

        def _on_retry(ev: RetryEvent) -> None:
            self._log.warning(
                "media_fetch_retry",
                url=source_url,
                attempt=ev.failure_attempt,
                next_attempt=ev.next_attempt,
                max_attempts=ev.max_attempts,
                delay_seconds=round(ev.delay_seconds, 3),
                reason=ev.reason,
                error_type=ev.error_type,
            )

        resp = await call_with_retries(
            _do_get,
            cfg=self._retry,
            is_retryable=is_retryable_http_exception,
            operation="media.proxy_fetch",
            on_retry=_on_retry,
            sleep_fn=self._sleep_fn,
            context_url=source_url,
        )

        data = resp.content
        if not data:
            raise MediaRehostError(f"proxy returned an empty body for {source_url}")
        return data, resp.headers.get("content-type")

    async def _rehost(
        self,
        asset: MediaAsset,
        kind: AssetKind,
        *,
        proxy_url: str,
        store: BlobStore,
    ) -> MediaAsset:
        try:
            data, header_type = await self._fetch_via_proxy(proxy_url, asset.source_url)
        except MediaRehostError:
            raise
        except Exception as e:
            raise MediaRehostError(f"fetch failed: {type(e).__name__}: {e}") from e

        ext = _extension_for(asset.source_url, header_type, kind)
        key = new_object_key(self._key_prefix, ext)
        try:
            await store.upload(key, data, _content_type_for(ext, header_type))
            url = store.public_url(key)
        except Exception as e:
            raise MediaRehostError(f"upload failed for key={key}: {type(e).__name__}: {e}") from e

        self._log.info("media_rehosted", url=asset.source_url, key=key, bytes=len(data))
        return asset.stored_at(url)

    async def rehost(self, asset: MediaAsset, *, kind: AssetKind = "image") -> MediaAsset:
        if not asset.needs_rehost:
            return asset
        proxy_url = self._config.proxy_url
        store = self._store
        if not proxy_url or store is None:
            self._log.debug("media_rehost_skipped", url=asset.source_url, reason="proxy disabled")
            return asset

        try:
            return await self._rehost(asset, kind, proxy_url=proxy_url, store=store)
        except MediaRehostError as e:
            self._log.warning("media_rehost_failed", url=asset.source_url, error=str(e))
            return asset

    async def rehost_post(self, post: NormalizedPost) -> RehostOutcome:
        """Rehost a post's media and thumbnail concurrently and return the updated post."""
        media = self.asset_for(post.media_url)
        media_kind: AssetKind = "video" if post.media_type == "video" else "image"

        if post.thumbnail_url:
            thumb = self.asset_for(post.thumbnail_url)
            media, thumb_out = await asyncio.gather(
                self.rehost(media, kind=media_kind),
                self.rehost(thumb, kind="image"),
            )
        else:
            media = await self.rehost(media, kind=media_kind)
            thumb_out = None

        updated = replace(
            post,
            media_url=media.result_url,
            thumbnail_url=thumb_out.result_url if thumb_out is not None else post.thumbnail_url,
        )
        return RehostOutcome(post=updated, media=media, thumbnail=thumb_out)
