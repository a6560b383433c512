from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Protocol, Sequence

from .collection_run import CollectionRun, RunRecorder, RunState
from .dedupe import PermalinkLookup, partition
from .errors import ConfigError, PersistenceError, ScrapeError, StorageError
from .history import CollectionHistoryLogger
from .normalize import normalize_items
from .post import NormalizedPost
from .progress import ProgressChannel, ProgressReporter, ProgressTracker
from .rehost import MediaRehoster, RehostOutcome
from .request import ScrapeRequest
from .run_log import RunLogger, ensure_logger
from .scrape_adapter import ScrapeAdapter

NO_POSTS_MESSAGE = "no posts found"


class ContentStore(PermalinkLookup, Protocol):
    def insert_post(self, post: NormalizedPost, *, row_id: str | None = None) -> str:
        ...


class CollectionOrchestrator:
    """
    Runs one collection request end to end:
    fetch -> normalize -> dedupe -> rehost and persist -> seal.

    Fatal errors seal the run as failed with the counts gathered so far;
    per-post persistence errors are recorded and the remaining posts still run.
    """

    def __init__(
        self,
        adapter: ScrapeAdapter,
        store: ContentStore,
        rehoster: MediaRehoster,
        *,
        history: CollectionHistoryLogger | None = None,
        logger: RunLogger | None = None,
        batch_size: int = 3,
        default_hashtags: Sequence[str] = (),
        results_limit: int = 20,
        freshness_window: timedelta | str | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._adapter = adapter
        self._store = store
        self._rehoster = rehoster
        self._history = history
        self._log = ensure_logger(logger)
        self._batch_size = int(batch_size)
        self._default_hashtags = tuple(default_hashtags)
        self._results_limit = int(results_limit)
        self._freshness_window = freshness_window

    async def collect_hashtag(
        self,
        hashtag: str,
        *,
        limit: int | None = None,
        progress_channel: ProgressChannel | None = None,
    ) -> CollectionRun:
        request = ScrapeRequest.for_hashtag(
            hashtag,
            results_limit=limit if limit is not None else self._results_limit,
            freshness_window=self._freshness_window,
        )
        return await self.collect(request, progress_channel=progress_channel)

    async def collect_hashtags(
        self,
        hashtags: Sequence[str],
        *,
        limit: int | None = None,
        progress_channel: ProgressChannel | None = None,
    ) -> CollectionRun:
        request = ScrapeRequest.for_hashtags(
            hashtags,
            results_limit=limit if limit is not None else self._results_limit,
            freshness_window=self._freshness_window,
        )
        return await self.collect(request, progress_channel=progress_channel)

    async def collect_urls(
        self,
        urls: Sequence[str],
        *,
        limit: int | None = None,
        progress_channel: ProgressChannel | None = None,
    ) -> CollectionRun:
        request = ScrapeRequest.for_urls(
            urls,
            results_limit=limit if limit is not None else self._results_limit,
            freshness_window=self._freshness_window,
        )
        return await self.collect(request, progress_channel=progress_channel)

    async def collect_default(
        self,
        *,
        limit: int | None = None,
        progress_channel: ProgressChannel | None = None,
    ) -> CollectionRun:
        if not self._default_hashtags:
            raise ConfigError("No default hashtags configured")
        return await self.collect_hashtags(
            self._default_hashtags,
            limit=limit,
            progress_channel=progress_channel,
        )

    async def collect(
        self,
        request: ScrapeRequest,
        *,
        progress_channel: ProgressChannel | None = None,
        tracker: ProgressTracker | None = None,
    ) -> CollectionRun:
        """
        Execute one run. Each run gets its own recorder, reporter and log
        binding, so runs started concurrently on one orchestrator stay apart.
        """
        recorder = RunRecorder(request)
        log = self._log.bind(run_id=recorder.id)
        reporter = ProgressReporter(channel=progress_channel, tracker=tracker, logger=log)

        log.info(
            "run_started",
            mode=request.mode,
            targets=list(request.targets),
            results_limit=request.results_limit,
        )

        try:
            await self._run_pipeline(recorder, reporter, log)
        except (ScrapeError, StorageError) as e:
            recorder.fail(str(e))
            log.error(
                "run_failed",
                state=recorder.state.value,
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception as e:
            recorder.fail(f"unexpected error: {type(e).__name__}: {e}")
            log.exception("run_failed", exc=e, state=recorder.state.value)

        run = recorder.seal()
        log.info(
            "run_state",
            state=RunState.SEALED.value,
            success=run.success,
            items_fetched=run.items_fetched,
            items_stored=run.items_stored,
            errors=len(run.errors),
        )

        if run.success:
            summary = f"Collected {run.items_fetched} posts, stored {run.items_stored} new"
            if run.message:
                summary = f"{summary} ({run.message})"
            await reporter.finish("completed", message=summary)
        else:
            await reporter.finish("failed", message=run.errors[-1] if run.errors else None)

        if self._history is not None:
            self._history.log(run)
        return run

    @staticmethod
    def _advance(recorder: RunRecorder, state: RunState, log: RunLogger) -> None:
        recorder.advance(state)
        log.info("run_state", state=state.value)

    async def _run_pipeline(
        self,
        recorder: RunRecorder,
        reporter: ProgressReporter,
        log: RunLogger,
    ) -> None:
        self._advance(recorder, RunState.FETCHING, log)
        result = await self._adapter.fetch(recorder.request, reporter)

        self._advance(recorder, RunState.NORMALIZING, log)
        await reporter.emit("normalizing", 55, total=len(result.items), message="Normalizing results")
        posts = normalize_items(result.items, logger=log)
        recorder.items_fetched = len(posts)
        if not posts:
            recorder.message = NO_POSTS_MESSAGE

        self._advance(recorder, RunState.DEDUPING, log)
        await reporter.emit("deduplicating", 60, total=len(posts), message="Checking for existing posts")
        dedup = await asyncio.to_thread(partition, posts, self._store)
        log.info(
            "dedup_done",
            new=len(dedup.new),
            existing=len(dedup.existing),
            duplicates_in_batch=dedup.duplicates_in_batch,
        )

        self._advance(recorder, RunState.PERSISTING, log)
        await self._persist(list(dedup.new), recorder, reporter, log)

    async def _persist(
        self,
        posts: list[NormalizedPost],
        recorder: RunRecorder,
        reporter: ProgressReporter,
        log: RunLogger,
    ) -> None:
        total = len(posts)
        if total == 0:
            await reporter.emit("storing", 95, current=0, total=0, message="No new posts to store")
            return

        for start in range(0, total, self._batch_size):
            batch = posts[start : start + self._batch_size]
            outcomes = await asyncio.gather(
                *(self._store_one(post) for post in batch),
                return_exceptions=True,
            )

            for post, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    msg = str(outcome) if isinstance(outcome, PersistenceError) else (
                        f"{post.permalink}: {type(outcome).__name__}: {outcome}"
                    )
                    recorder.errors.append(msg)
                    log.error("post_store_failed", url=post.permalink, error=msg)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    recorder.items_stored += 1

            done = min(start + len(batch), total)
            await reporter.emit(
                "storing",
                60 + int(done / total * 35),
                current=done,
                total=total,
                message=f"Stored {recorder.items_stored} of {done} new posts",
            )

    async def _store_one(self, post: NormalizedPost) -> RehostOutcome:
        outcome = await self._rehoster.rehost_post(post)
        await asyncio.to_thread(self._store.insert_post, outcome.post)
        return outcome
