from __future__ import annotations

import copy
from typing import Any, Sequence

from .progress import ProgressReporter
from .request import ScrapeRequest
from .scrape_adapter import ScrapeResult

_OFFLINE_CAPTION_1 = (
    "Sunday loop through the hills with the crew. Fresh tyres, new exhaust. "
    "#ridetothrive #motorcyclespecialist"
)
_OFFLINE_CAPTION_2 = "Service day at the shop, chain and sprockets swapped. #tdr #hpzcrew"
_OFFLINE_CAPTION_3 = "Night ride clip. Sound on. #highperformancezone"

_DEFAULT_OFFLINE_ITEMS: list[dict[str, Any]] = [
    {
        "id": "3300000000000000001",
        "shortCode": "OFFLINE1",
        "url": "https://example.com/p/OFFLINE1/",
        "caption": _OFFLINE_CAPTION_1,
        "hashtags": ["ridetothrive", "oneteamstore"],
        "displayUrl": "https://example.com/media/offline1.jpg",
        "ownerUsername": "weekend_rider",
        "likesCount": 124,
        "commentsCount": 9,
        "timestamp": "2025-01-01T08:00:00Z",
    },
    {
        "id": "3300000000000000002",
        "shortCode": "OFFLINE2",
        "url": "https://example.com/p/OFFLINE2/",
        "caption": _OFFLINE_CAPTION_2,
        "hashtags": ["tdr"],
        "images": ["https://example.com/media/offline2.jpg"],
        "ownerUsername": "shop_floor",
        "likesCount": -1,
        "commentsCount": 3,
        "timestamp": "2025-01-02T10:30:00Z",
    },
    {
        "id": "3300000000000000003",
        "shortCode": "OFFLINE3",
        "url": "https://example.com/p/OFFLINE3/",
        "caption": _OFFLINE_CAPTION_3,
        "videoUrl": "https://example.com/media/offline3.mp4?dl=1",
        "ownerUsername": "night_owl",
        "likesCount": 310,
        "commentsCount": 41,
        "timestamp": "2025-01-03T22:15:00Z",
    },
    {
        # No permalink or short code: dropped by the normalizer.
        "caption": "orphan item",
        "likesCount": 1,
    },
]


class OfflineScrapeAdapter:
    """Scrape adapter that returns canned items without touching the network."""

    def __init__(self, items: Sequence[dict[str, Any]] | None = None) -> None:
        source = _DEFAULT_OFFLINE_ITEMS if items is None else list(items)
        self._items = copy.deepcopy(source)
        self.calls: list[ScrapeRequest] = []

    async def fetch(
        self,
        request: ScrapeRequest,
        progress: ProgressReporter | None = None,
    ) -> ScrapeResult:
        self.calls.append(request)
        if progress is not None:
            await progress.emit("starting", 0, message=f"Starting {request.mode} collection (offline)")
            await progress.emit("fetching results", 50, current=len(self._items), total=len(self._items))
        items = copy.deepcopy(self._items[: int(request.results_limit)])
        return ScrapeResult(items=items)
