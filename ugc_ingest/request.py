from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Literal, Sequence

CollectMode = Literal["hashtag", "hashtags", "urls"]

_POST_URL_RE = re.compile(r"^https://(www\.)?instagram\.com/(p|reel)/[a-zA-Z0-9_-]+/?$")
_PROFILE_URL_RE = re.compile(r"^https://(www\.)?instagram\.com/[a-zA-Z0-9_.]+/?$")

_TAG_URL_TEMPLATE = "https://www.instagram.com/explore/tags/{tag}/"


def normalize_term(value: str) -> str:
    term = (value or "").strip()
    if term.startswith("#"):
        term = term[1:].strip()
    return term


def _normalize_terms(terms: Sequence[str]) -> tuple[str, ...]:
    out: list[str] = []
    seen: set[str] = set()

    for raw in terms:
        term = normalize_term(raw)
        if not term:
            continue
        key = term.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(term)

    return tuple(out)


def _normalize_urls(urls: Sequence[str]) -> tuple[str, ...]:
    out: list[str] = []
    seen: set[str] = set()

    for raw in urls:
        url = (raw or "").strip()
        if not url:
            continue
        key = url.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(url)

    return tuple(out)


def is_valid_instagram_url(url: str) -> bool:
    u = (url or "").strip()
    return bool(_POST_URL_RE.match(u) or _PROFILE_URL_RE.match(u))


def format_freshness_window(window: timedelta | str | None) -> str | None:
    """
    Render a freshness window the way the provider's onlyPostsNewerThan expects.

    Strings are passed through ("1 day", "2 weeks", an ISO date); timedeltas are
    expressed in the largest whole unit.
    """
    if window is None:
        return None
    if isinstance(window, str):
        text = window.strip()
        return text or None

    seconds = int(window.total_seconds())
    if seconds <= 0:
        raise ValueError("freshness_window must be positive")

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds % size == 0:
            n = seconds // size
            return f"{n} {unit}" if n == 1 else f"{n} {unit}s"
    n = max(1, seconds // 60)
    return f"{n} minute" if n == 1 else f"{n} minutes"


@dataclass(frozen=True)
class ScrapeRequest:
    """An immutable collection request: what to scrape and how much."""

    mode: CollectMode
    targets: tuple[str, ...]
    results_limit: int
    freshness_window: timedelta | str | None = None

    def __post_init__(self) -> None:
        if self.mode not in ("hashtag", "hashtags", "urls"):
            raise ValueError(f"unsupported mode: {self.mode!r}")
        if int(self.results_limit) <= 0:
            raise ValueError("results_limit must be > 0")
        if not self.targets:
            raise ValueError("at least one non-empty target is required")
        if self.mode == "hashtag" and len(self.targets) != 1:
            raise ValueError("hashtag mode takes exactly one target")
        if self.mode == "urls":
            for url in self.targets:
                if not is_valid_instagram_url(url):
                    raise ValueError(f"Invalid Instagram URL: {url}")
        format_freshness_window(self.freshness_window)

    @classmethod
    def for_hashtag(
        cls,
        hashtag: str,
        *,
        results_limit: int,
        freshness_window: timedelta | str | None = None,
    ) -> "ScrapeRequest":
        return cls(
            mode="hashtag",
            targets=_normalize_terms([hashtag]),
            results_limit=results_limit,
            freshness_window=freshness_window,
        )

    @classmethod
    def for_hashtags(
        cls,
        hashtags: Sequence[str],
        *,
        results_limit: int,
        freshness_window: timedelta | str | None = None,
    ) -> "ScrapeRequest":
        return cls(
            mode="hashtags",
            targets=_normalize_terms(hashtags),
            results_limit=results_limit,
            freshness_window=freshness_window,
        )

    @classmethod
    def for_urls(
        cls,
        urls: Sequence[str],
        *,
        results_limit: int,
        freshness_window: timedelta | str | None = None,
    ) -> "ScrapeRequest":
        return cls(
            mode="urls",
            targets=_normalize_urls(urls),
            results_limit=results_limit,
            freshness_window=freshness_window,
        )

    @property
    def search_type(self) -> str:
        return "user" if self.mode == "urls" else "hashtag"

    def direct_urls(self) -> list[str]:
        if self.mode == "urls":
            return list(self.targets)
        return [_TAG_URL_TEMPLATE.format(tag=t) for t in self.targets]

    def actor_input(self) -> dict[str, Any]:
        run_input: dict[str, Any] = {
            "addParentData": False,
            "directUrls": self.direct_urls(),
            "enhanceUserSearchWithFacebookPage": False,
            "isUserReelFeedURL": False,
            "isUserTaggedFeedURL": False,
            "resultsLimit": int(self.results_limit),
            "resultsType": "posts",
            "searchType": self.search_type,
        }
        newer_than = format_freshness_window(self.freshness_window)
        if newer_than:
            run_input["onlyPostsNewerThan"] = newer_than
        return run_input
