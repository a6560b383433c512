from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping
from urllib.parse import urlsplit, urlunsplit

from .errors import EmptyResultError, PerItemParseError, ProviderItemError
from .post import UNKNOWN_AUTHOR, NormalizedPost
from .run_log import RunLogger, ensure_logger

_HASHTAG_RE = re.compile(r"#(\w+)")
_VIDEO_EXT_RE = re.compile(r"\.(mp4|mov|m4v|webm)$", re.IGNORECASE)
_CDN_HOST_RE = re.compile(r"^instagram\.f[a-z0-9.-]+\.fbcdn\.net$", re.IGNORECASE)

_CDN_THUMBNAIL_PATH = "/v/t51.2885-15/"
_POST_URL_TEMPLATE = "https://www.instagram.com/p/{code}/"

NO_ITEMS_CODE = "no_items"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, str):
        v = value.strip()
        return v if v else None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _coerce_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value > 0 else 0
    if isinstance(value, float):
        if not math.isfinite(value) or value <= 0:
            return 0
        return int(value)
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        return int(s) if s.isdigit() else 0
    return 0


def _first_str(item: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = _coerce_str(item.get(key))
        if value:
            return value
    return None


def _first_count(item: Mapping[str, Any], *keys: str) -> int:
    for key in keys:
        if key in item and item[key] is not None:
            return _coerce_count(item[key])
    return 0


def _first_image(item: Mapping[str, Any]) -> str | None:
    images = item.get("images")
    if isinstance(images, list) and images:
        head = images[0]
        if isinstance(head, Mapping):
            return _coerce_str(head.get("url")) or _coerce_str(head.get("displayUrl"))
        return _coerce_str(head)
    return None


def _explicit_hashtags(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []

    out: list[str] = []
    for raw in value:
        if not isinstance(raw, str):
            continue
        tag = raw.strip()
        if tag.startswith("#"):
            tag = tag[1:].strip()
        if tag:
            out.append(tag)
    return out


def merge_hashtags(caption: str, explicit: Iterable[str]) -> tuple[str, ...]:
    """Caption tags first, then explicit tags; case-sensitive dedupe keeps first occurrence."""
    out: list[str] = []
    seen: set[str] = set()
    for tag in list(_HASHTAG_RE.findall(caption or "")) + list(explicit):
        if tag in seen:
            continue
        seen.add(tag)
        out.append(tag)
    return tuple(out)


def thumbnail_from_video_extension(video_url: str) -> str | None:
    try:
        parts = urlsplit(video_url)
    except ValueError:
        return None
    path = parts.path or ""
    if not _VIDEO_EXT_RE.search(path):
        return None
    return urlunsplit((parts.scheme, parts.netloc, _VIDEO_EXT_RE.sub(".jpg", path), "", ""))


def thumbnail_from_cdn_path(video_url: str) -> str | None:
    try:
        parts = urlsplit(video_url)
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    if not _CDN_HOST_RE.match(host):
        return None

    segments = [s for s in (parts.path or "").split("/") if s]
    if not segments:
        return None
    stem = segments[-1].rsplit(".", 1)[0] if "." in segments[-1] else segments[-1]
    if not stem:
        return None
    return f"https://{host}{_CDN_THUMBNAIL_PATH}{stem}.jpg"


def resolve_video_thumbnail(item: Mapping[str, Any], video_url: str) -> str | None:
    """
    First non-empty candidate wins:
    display/cover field, first auxiliary image, extension swap, CDN path rebuild.
    """
    return (
        _first_str(item, "displayUrl", "display_url", "coverUrl", "thumbnailUrl")
        or _first_image(item)
        or thumbnail_from_video_extension(video_url)
        or thumbnail_from_cdn_path(video_url)
    )


def is_error_sentinel(item: Any) -> bool:
    return isinstance(item, Mapping) and bool(item.get("error"))


def raise_for_sentinel_batch(items: list[Any]) -> None:
    """
    Reject a result set that consists only of provider error sentinels.

    A lone `no_items` sentinel becomes EmptyResultError; any other code becomes
    ProviderItemError. Mixed batches are left to per-item skipping.
    """
    if not items or not all(is_error_sentinel(i) for i in items):
        return

    head = items[0]
    code = str(head.get("error") or "").strip()
    description = _coerce_str(head.get("errorDescription")) or ""

    if code == NO_ITEMS_CODE:
        detail = description or "No posts found"
        raise EmptyResultError(f"no items for given input: {detail}", code=code)
    detail = description or "Unknown error"
    raise ProviderItemError(f"provider error: {code} - {detail}", code=code)


def parse_item(item: Any, *, now: str | None = None) -> NormalizedPost:
    """Extract a NormalizedPost from one raw item or raise PerItemParseError."""
    if not isinstance(item, Mapping):
        raise PerItemParseError(f"item is not an object: {type(item).__name__}")
    if is_error_sentinel(item):
        raise PerItemParseError(f"error sentinel: {item.get('error')}")

    short_code = _first_str(item, "shortCode", "shortcode", "short_code")

    permalink = _first_str(item, "url", "postUrl", "post_url")
    if not permalink and short_code:
        permalink = _POST_URL_TEMPLATE.format(code=short_code)
    if not permalink:
        raise PerItemParseError("missing permalink")

    post_id = (
        _coerce_id(item.get("id"))
        or _coerce_id(item.get("postId"))
        or _coerce_id(item.get("post_id"))
    )
    if not post_id:
        raise PerItemParseError("missing id")

    caption = _first_str(item, "caption", "captionText", "text") or ""

    video_url = _first_str(item, "videoUrl", "video_url")
    if video_url:
        media_type = "video"
        media_url = video_url
        thumbnail_url = resolve_video_thumbnail(item, video_url)
    else:
        media_type = "image"
        media_url = _first_str(item, "displayUrl", "display_url") or _first_image(item) or permalink
        thumbnail_url = None

    explicit = _explicit_hashtags(item.get("hashtags"))
    if not explicit:
        explicit = _explicit_hashtags(item.get("hashTags"))

    author = _first_str(item, "ownerUsername", "owner_username", "username")
    owner = item.get("owner")
    if author is None and isinstance(owner, Mapping):
        author = _coerce_str(owner.get("username"))

    created_at = _first_str(item, "timestamp", "takenAt", "taken_at") or now or _utc_now_iso()

    return NormalizedPost(
        id=post_id,
        permalink=permalink,
        media_url=media_url,
        media_type=media_type,
        author_username=author or UNKNOWN_AUTHOR,
        caption=caption,
        thumbnail_url=thumbnail_url,
        likes_count=_first_count(item, "likesCount", "likes_count", "likes"),
        comments_count=_first_count(item, "commentsCount", "comments_count", "comments"),
        hashtags=merge_hashtags(caption, explicit),
        created_at=created_at,
    )


def normalize_items(
    items: Iterable[Any],
    *,
    logger: RunLogger | None = None,
) -> list[NormalizedPost]:
    """
    Convert a provider result set into NormalizedPosts.

    Raises EmptyResultError / ProviderItemError only when the whole set is
    sentinel items; otherwise malformed items are logged and dropped.
    """
    log = ensure_logger(logger)
    batch = list(items)
    raise_for_sentinel_batch(batch)

    now = _utc_now_iso()
    out: list[NormalizedPost] = []
    for index, item in enumerate(batch):
        try:
            out.append(parse_item(item, now=now))
        except PerItemParseError as e:
            log.debug("item_dropped", index=index, reason=str(e))
        except (TypeError, ValueError, AttributeError) as e:
            log.debug("item_dropped", index=index, reason=f"{type(e).__name__}: {e}")
    return out
