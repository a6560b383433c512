from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from .errors import DedupLookupError
from .post import NormalizedPost


class PermalinkLookup(Protocol):
    def existing_permalinks(self, permalinks: Iterable[str]) -> set[str]:
        ...


@dataclass(frozen=True)
class DedupResult:
    new: Sequence[NormalizedPost]
    existing: Sequence[NormalizedPost]
    duplicates_in_batch: int = 0


def unique_by_permalink(posts: Iterable[NormalizedPost]) -> tuple[list[NormalizedPost], int]:
    """Collapse repeated permalinks within one batch; the first occurrence wins."""
    out: list[NormalizedPost] = []
    seen: set[str] = set()
    dropped = 0
    for post in posts:
        if post.permalink in seen:
            dropped += 1
            continue
        seen.add(post.permalink)
        out.append(post)
    return out, dropped


def partition(posts: Iterable[NormalizedPost], lookup: PermalinkLookup) -> DedupResult:
    """
    Split posts into already-stored and new using one batched existence lookup.

    A failing lookup raises DedupLookupError; treating everything as new would
    risk duplicate writes.
    """
    unique, dropped = unique_by_permalink(posts)
    if not unique:
        return DedupResult(new=[], existing=[], duplicates_in_batch=dropped)

    permalinks = [p.permalink for p in unique]
    try:
        known = lookup.existing_permalinks(permalinks)
    except DedupLookupError:
        raise
    except Exception as e:
        raise DedupLookupError(f"Existing permalink lookup failed: {e}") from e

    new = [p for p in unique if p.permalink not in known]
    existing = [p for p in unique if p.permalink in known]
    return DedupResult(new=new, existing=existing, duplicates_in_batch=dropped)
