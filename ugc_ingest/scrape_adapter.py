from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, TypeVar

import httpx
from apify_client import ApifyClientAsync
from apify_client.errors import ApifyApiError

from .config_schema import ApifyConfig
from .errors import (
    ConfigError,
    NotFoundError,
    RunFailedError,
    RunTimeoutError,
    ScrapeError,
    TransientError,
)
from .http_status import provider_status_error, raise_for_provider_status
from .progress import ProgressReporter
from .request import ScrapeRequest
from .retry import SleepFn
from .run_log import RunLogger, ensure_logger

SUCCEEDED = "SUCCEEDED"
FAILED_STATUSES = frozenset({"FAILED", "ABORTED", "TIMED_OUT", "TIMED-OUT"})

Clock = Callable[[], float]
T = TypeVar("T")


@dataclass(frozen=True)
class ScrapeResult:
    items: list[Any] = field(default_factory=list)
    run_id: str | None = None
    dataset_id: str | None = None
    used_fallback: bool = False


@dataclass(frozen=True)
class ActorRunSummary:
    run_id: str
    status: str
    started_at: str | None
    finished_at: str | None
    dataset_id: str | None


class ScrapeAdapter(Protocol):
    async def fetch(
        self,
        request: ScrapeRequest,
        progress: ProgressReporter | None = None,
    ) -> ScrapeResult:
        ...


def actor_path(actor_id: str) -> str:
    """`owner/name` is addressed as `owner~name` in API paths."""
    return (actor_id or "").strip().replace("/", "~")


def api_root(base_url: str) -> str:
    """The API client appends the version segment itself."""
    root = (base_url or "").strip().rstrip("/")
    if root.endswith("/v2"):
        root = root[: -len("/v2")]
    return root


def _str_field(data: Any, key: str) -> str | None:
    value = data.get(key) if isinstance(data, dict) else None
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _stamp(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    s = str(value).strip()
    return s or None


def _from_api_error(e: ApifyApiError, *, operation: str) -> ScrapeError:
    code = getattr(e, "status_code", None)
    message = str(getattr(e, "message", None) or e)
    if not isinstance(code, int):
        return TransientError(f"{operation}: {message}")
    payload = {"error": {"type": getattr(e, "type", None), "message": message}}
    return provider_status_error(code, operation=operation, payload=payload)


class ApifyScrapeAdapter:
    """
    Client for the scraping provider's actor API.

    fetch() tries the synchronous run-and-return endpoint first. A transient
    failure there starts an asynchronous run once, polls it to a terminal
    status, then reads its dataset. Auth, not-found and bad-request responses
    are fatal on either path.

    The run-and-return call goes through httpx; starting, polling, dataset
    reads and run listing go through the provider's async API client.
    """

    def __init__(
        self,
        config: ApifyConfig,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        apify: ApifyClientAsync | None = None,
        logger: RunLogger | None = None,
        sleep_fn: SleepFn | None = None,
        clock: Clock | None = None,
    ) -> None:
        tok = (token or "").strip()
        if not tok:
            raise ConfigError("Scrape provider token must be non-empty")

        self._config = config
        self._token = tok
        self._log = ensure_logger(logger)
        self._sleep = sleep_fn or asyncio.sleep
        self._clock = clock or time.monotonic

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._apify = apify or ApifyClientAsync(token=tok, api_url=api_root(config.base_url))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ApifyScrapeAdapter":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    async def _send(self, method: str, url: str, *, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransientError(f"{operation}: network error: {type(e).__name__}: {e}") from e
        raise_for_provider_status(response, operation=operation)
        return response

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except ApifyApiError as e:
            raise _from_api_error(e, operation=operation) from e
        except ScrapeError:
            raise
        except Exception as e:
            raise TransientError(f"{operation}: {type(e).__name__}: {e}") from e

    async def fetch(
        self,
        request: ScrapeRequest,
        progress: ProgressReporter | None = None,
    ) -> ScrapeResult:
        await _emit(progress, "starting", 0, message=f"Starting {request.mode} collection")
        await _emit(progress, "connecting", 10, message="Connecting to scraping provider")

        try:
            items = await self._run_sync(request)
        except TransientError as e:
            self._log.warning(
                "provider_sync_failed",
                actor_id=self._config.actor_id,
                error=str(e),
                status_code=e.status_code,
            )
            return await self._run_async(request, progress)

        await _emit(progress, "fetching results", 50, current=len(items), total=len(items))
        self._log.info("provider_sync_succeeded", actor_id=self._config.actor_id, items=len(items))
        return ScrapeResult(items=items)

    async def _run_sync(self, request: ScrapeRequest) -> list[Any]:
        op = "sync run"
        timeout = float(self._config.sync_timeout_seconds)
        self._log.info("provider_sync_started", actor_id=self._config.actor_id, targets=list(request.targets))

        response = await self._send(
            "POST",
            f"{self._config.base_url}/acts/{actor_path(self._config.actor_id)}/run-sync-get-dataset-items",
            operation=op,
            params={"token": self._token, "timeout": int(timeout)},
            json=request.actor_input(),
            timeout=timeout + float(self._config.request_timeout_seconds),
        )

        try:
            body = response.json()
        except ValueError as e:
            raise TransientError(f"{op}: provider returned invalid JSON") from e
        if not isinstance(body, list):
            raise TransientError(f"{op}: expected a list of items, got {type(body).__name__}")
        return body

    async def _run_async(
        self,
        request: ScrapeRequest,
        progress: ProgressReporter | None,
    ) -> ScrapeResult:
        await _emit(progress, "connecting", 20, message="Starting asynchronous provider run")

        op = "start run"
        actor = self._apify.actor(self._config.actor_id)
        run = await self._call(op, lambda: actor.start(run_input=request.actor_input()))
        run_id = _str_field(run, "id")
        if not run_id:
            raise ScrapeError(f"{op}: provider response is missing the run id")
        dataset_id = _str_field(run, "defaultDatasetId")

        self._log.info("provider_run_started", run_id=run_id, dataset_id=dataset_id)

        dataset_id = await self._wait_for_run(run_id, dataset_id, progress)

        await _emit(progress, "fetching results", 50, message="Fetching run results")
        items = await self.fetch_dataset_items(dataset_id)
        self._log.info("provider_dataset_fetched", run_id=run_id, dataset_id=dataset_id, items=len(items))
        return ScrapeResult(items=items, run_id=run_id, dataset_id=dataset_id, used_fallback=True)

    async def _wait_for_run(
        self,
        run_id: str,
        dataset_id: str | None,
        progress: ProgressReporter | None,
    ) -> str:
        interval = float(self._config.poll_interval_seconds)
        limit = float(self._config.poll_timeout_seconds)
        run_client = self._apify.run(run_id)
        started = self._clock()
        polls = 0

        while True:
            polls += 1
            data = await self._call("run status", run_client.get)
            if data is None:
                raise NotFoundError(f"run status: provider run {run_id} not found")

            status = (_str_field(data, "status") or "").upper()
            dataset_id = _str_field(data, "defaultDatasetId") or dataset_id
            elapsed = self._clock() - started

            self._log.debug("provider_run_status", run_id=run_id, status=status, poll=polls, elapsed=round(elapsed, 3))

            if status == SUCCEEDED:
                if not dataset_id:
                    raise ScrapeError(f"run {run_id} succeeded without a dataset id")
                return dataset_id

            if status in FAILED_STATUSES:
                detail = _str_field(data, "statusMessage")
                suffix = f": {detail}" if detail else ""
                raise RunFailedError(f"provider run {run_id} finished with status {status}{suffix}", status=status)

            if elapsed + interval > limit:
                raise RunTimeoutError(
                    f"provider run {run_id} did not finish within {int(limit)}s (last status {status or 'unknown'})"
                )

            pct = 30 + min(19, int(elapsed / limit * 19))
            await _emit(progress, "running", pct, message=f"Provider run {status.lower() or 'pending'}")
            await self._sleep(interval)

    async def fetch_dataset_items(self, dataset_id: str) -> list[Any]:
        ds = (dataset_id or "").strip()
        if not ds:
            raise ScrapeError("dataset_id must be a non-empty string")

        dataset = self._apify.dataset(ds)
        page = await self._call("dataset fetch", lambda: dataset.list_items(clean=True))
        return list(page.items)

    async def list_runs(self, *, limit: int = 10) -> list[ActorRunSummary]:
        runs = self._apify.actor(self._config.actor_id).runs()
        page = await self._call("list runs", lambda: runs.list(limit=max(1, int(limit)), desc=True))

        out: list[ActorRunSummary] = []
        for raw in page.items:
            if not isinstance(raw, dict):
                continue
            rid = _str_field(raw, "id")
            if not rid:
                continue
            out.append(
                ActorRunSummary(
                    run_id=rid,
                    status=(_str_field(raw, "status") or "").upper(),
                    started_at=_stamp(raw.get("startedAt")),
                    finished_at=_stamp(raw.get("finishedAt")),
                    dataset_id=_str_field(raw, "defaultDatasetId"),
                )
            )
        return out


async def _emit(
    progress: ProgressReporter | None,
    step: str,
    percentage: int,
    *,
    current: int | None = None,
    total: int | None = None,
    message: str | None = None,
) -> None:
    if progress is not None:
        await progress.emit(step, percentage, current=current, total=total, message=message)
