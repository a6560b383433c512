from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

MediaType = Literal["image", "video"]
PostStatus = Literal["new", "approved_for_repost", "weekly_winner", "rejected"]

UNKNOWN_AUTHOR = "unknown"


@dataclass(frozen=True)
class NormalizedPost:
    """A canonical post record; `permalink` is the dedup key across all runs."""

    id: str
    permalink: str
    media_url: str
    media_type: MediaType = "image"
    platform: str = "instagram"
    author_username: str = UNKNOWN_AUTHOR
    caption: str = ""
    thumbnail_url: str | None = None
    likes_count: int = 0
    comments_count: int = 0
    hashtags: Sequence[str] = ()
    status: PostStatus = "new"
    created_at: str = ""


@dataclass(frozen=True)
class MediaAsset:
    """
    One remote media URL on its way into owned storage.

    `result_url` is always populated: either the freshly stored public URL or
    `source_url` unchanged.
    """

    source_url: str
    needs_rehost: bool
    result_url: str
    rehosted: bool = False

    @classmethod
    def pending(cls, source_url: str, *, needs_rehost: bool) -> "MediaAsset":
        return cls(source_url=source_url, needs_rehost=needs_rehost, result_url=source_url)

    def stored_at(self, url: str) -> "MediaAsset":
        return MediaAsset(
            source_url=self.source_url,
            needs_rehost=self.needs_rehost,
            result_url=url,
            rehosted=True,
        )
