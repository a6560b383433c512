from __future__ import annotations

import asyncio
from typing import Protocol

from .collection_run import CollectionRun
from .run_log import RunLogger, ensure_logger
from .storage import CollectionStats, HistoryRecord


class HistorySink(Protocol):
    def append_history(self, run: CollectionRun) -> None:
        ...

    def collection_history(self, *, limit: int = 10) -> list[HistoryRecord]:
        ...

    def recent_stats(self) -> CollectionStats:
        ...


class CollectionHistoryLogger:
    """
    Best-effort, append-only audit trail of sealed runs.

    log() hands the write to a worker thread and returns immediately. Sink
    failures are logged as warnings and discarded; they never reach the caller.
    """

    def __init__(self, sink: HistorySink, *, logger: RunLogger | None = None) -> None:
        self._sink = sink
        self._log = ensure_logger(logger)
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def log(self, run: CollectionRun) -> None:
        task = asyncio.get_running_loop().create_task(self._write(run))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, run: CollectionRun) -> None:
        try:
            await asyncio.to_thread(self._sink.append_history, run)
        except Exception as e:
            self._log.warning("history_write_failed", run_id=run.id, error=f"{type(e).__name__}: {e}")
            return
        self._log.debug("history_written", run_id=run.id)

    async def drain(self) -> None:
        """Wait for every scheduled write to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_collection_history(self, limit: int = 10) -> list[HistoryRecord]:
        return self._sink.collection_history(limit=limit)

    def recent_stats(self) -> CollectionStats:
        return self._sink.recent_stats()
