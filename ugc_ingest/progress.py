from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Deque

from .run_log import RunLogger, ensure_logger

TERMINAL_PERCENTAGE = 100

Clock = Callable[[], float]


@dataclass(frozen=True)
class ProgressEvent:
    step: str
    percentage: int
    current: int | None = None
    total: int | None = None
    message: str | None = None

    def __post_init__(self) -> None:
        if not (0 <= int(self.percentage) <= 100):
            raise ValueError("percentage must be within [0, 100]")


@dataclass(frozen=True)
class TrackedEvent:
    event: ProgressEvent
    elapsed_seconds: float
    eta_seconds: float


@dataclass(frozen=True)
class ProgressStatus:
    step: str
    percentage: int
    current: int | None
    total: int | None
    message: str | None
    elapsed_seconds: float
    eta_seconds: float
    is_completed: bool


def estimate_remaining(elapsed_seconds: float, percentage: float) -> float:
    """Linear extrapolation; no basis for an estimate at 0%."""
    if percentage <= 0:
        return 0.0
    total_estimate = elapsed_seconds / percentage * 100
    return max(0.0, total_estimate - elapsed_seconds)


class ProgressTracker:
    """Keeps a bounded history of progress events and extrapolates an ETA."""

    def __init__(self, *, history_size: int = 50, clock: Clock | None = None) -> None:
        if history_size <= 0:
            raise ValueError("history_size must be positive")
        self._clock = clock or time.monotonic
        self._history: Deque[TrackedEvent] = deque(maxlen=int(history_size))
        self._start = self._clock()

    def __len__(self) -> int:
        return len(self._history)

    def reset(self) -> None:
        self._history.clear()
        self._start = self._clock()

    def record(self, event: ProgressEvent) -> None:
        elapsed = max(0.0, self._clock() - self._start)
        self._history.append(
            TrackedEvent(
                event=event,
                elapsed_seconds=elapsed,
                eta_seconds=estimate_remaining(elapsed, event.percentage),
            )
        )

    def current(self) -> ProgressEvent | None:
        if not self._history:
            return None
        return self._history[-1].event

    def history(self) -> list[ProgressEvent]:
        return [t.event for t in self._history]

    def estimated_time_remaining(self) -> float:
        if not self._history:
            return 0.0
        return self._history[-1].eta_seconds

    def status(self) -> ProgressStatus | None:
        if not self._history:
            return None
        latest = self._history[-1]
        ev = latest.event
        return ProgressStatus(
            step=ev.step,
            percentage=ev.percentage,
            current=ev.current,
            total=ev.total,
            message=ev.message,
            elapsed_seconds=latest.elapsed_seconds,
            eta_seconds=latest.eta_seconds,
            is_completed=ev.percentage >= TERMINAL_PERCENTAGE,
        )


_CLOSED = object()


class ProgressChannel:
    """
    Ordered stream of ProgressEvents for one run.

    The orchestrator publishes; the caller drains with `async for`. A positive
    maxsize makes publishing wait on a slow consumer.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            raise RuntimeError("progress channel is closed")
        await self._queue.put(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if not isinstance(item, ProgressEvent):
                return
            yield item

    async def collect(self) -> list[ProgressEvent]:
        return [event async for event in self]


class ProgressReporter:
    """
    The single writer of a run's progress.

    Percentages are clamped so the emitted sequence never decreases, and
    non-terminal events stay at 99 or below; 100 is reserved for `finish()`.
    """

    def __init__(
        self,
        *,
        channel: ProgressChannel | None = None,
        tracker: ProgressTracker | None = None,
        logger: RunLogger | None = None,
    ) -> None:
        self._channel = channel
        self._tracker = tracker
        self._log = ensure_logger(logger)
        self._last = 0
        self._finished = False

    async def emit(
        self,
        step: str,
        percentage: float,
        *,
        current: int | None = None,
        total: int | None = None,
        message: str | None = None,
    ) -> ProgressEvent | None:
        if self._finished:
            return None
        pct = min(TERMINAL_PERCENTAGE - 1, max(self._last, int(percentage)))
        event = ProgressEvent(step=step, percentage=pct, current=current, total=total, message=message)
        await self._publish(event)
        return event

    async def finish(self, step: str, *, message: str | None = None) -> ProgressEvent | None:
        if self._finished:
            return None
        event = ProgressEvent(step=step, percentage=TERMINAL_PERCENTAGE, message=message)
        await self._publish(event)
        self._finished = True
        if self._channel is not None:
            await self._channel.close()
        return event

    async def _publish(self, event: ProgressEvent) -> None:
        self._last = event.percentage
        if self._tracker is not None:
            self._tracker.record(event)
        self._log.debug(
            "progress",
            step=event.step,
            percentage=event.percentage,
            current=event.current,
            total=event.total,
            message=event.message,
        )
        if self._channel is not None:
            await self._channel.publish(event)
