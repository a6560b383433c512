from __future__ import annotations

import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, TextIO

_LEVELS: dict[str, int] = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


class RunLogger:
    """
    JSONL event logger shared by every stage of a collection run.

    Each log line is a single JSON object, making it easy to parse for audits.
    Writes are serialized with a lock because storage and history sinks run on
    worker threads.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        stream: TextIO | None = None,
        overwrite: bool = True,
        run_id: str | None = None,
        session_id: str | None = None,
        min_level: str = "DEBUG",
    ) -> None:
        if path is None and stream is None:
            raise ValueError("either path or stream is required")
        self._path = Path(path) if path is not None else None
        self._overwrite = bool(overwrite)
        self._run_id = (run_id or "").strip() or None
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._min_level = _LEVELS.get((min_level or "").strip().upper(), 10)
        self._fp: TextIO | None = stream
        self._owns_fp = stream is None
        self._lock = Lock()
        self._opened = stream is not None

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        overwrite: bool = True,
        run_id: str | None = None,
        session_id: str | None = None,
        min_level: str = "DEBUG",
    ) -> "RunLogger":
        logger = cls(
            path,
            overwrite=overwrite,
            run_id=run_id,
            session_id=session_id,
            min_level=min_level,
        )
        logger._ensure_open()
        return logger

    def close(self) -> None:
        with self._lock:
            if self._fp is not None and self._owns_fp:
                try:
                    self._fp.flush()
                finally:
                    self._fp.close()
                self._fp = None

    def __enter__(self) -> "RunLogger":
        self._ensure_open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def run_id(self) -> str | None:
        return self._run_id

    def bind(self, *, run_id: str | None) -> "RunLogger":
        """
        Return a view that stamps every record with `run_id`.

        The view writes through this logger, so concurrent runs can share one
        file without overwriting each other's run id.
        """
        return BoundRunLogger(self, run_id=run_id)

    def debug(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("DEBUG", event, url=url, **data)

    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("INFO", event, url=url, **data)

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("WARN", event, url=url, **data)

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, **data)

    def exception(
        self,
        event: str,
        *,
        exc: BaseException,
        url: str | None = None,
        **data: Any,
    ) -> None:
        err = {
            "type": type(exc).__name__,
            "message": _truncate(str(exc), limit=2000),
            "traceback": _truncate(
                "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                limit=12000,
            ),
        }
        self.log("ERROR", event, url=url, error=err, **data)

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        lvl = (level or "").strip().upper() or "INFO"
        if _LEVELS.get(lvl, 20) < self._min_level:
            return

        ev = (event or "").strip() or "event"

        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": lvl,
            "event": ev,
            "session_id": self._session_id,
        }

        if self._run_id:
            record["run_id"] = self._run_id

        u = (url or "").strip()
        if u:
            record["url"] = u

        if data:
            record["data"] = data

        self._write(record)

    def _ensure_open(self) -> None:
        if self._fp is not None or self._path is None:
            return

        with self._lock:
            if self._fp is not None:
                return

            self._path.parent.mkdir(parents=True, exist_ok=True)
            mode = "w" if self._overwrite and not self._opened else "a"

            self._fp = self._path.open(mode, encoding="utf-8", newline="\n")
            self._opened = True

    def _write(self, record: dict[str, Any]) -> None:
        self._ensure_open()

        payload = json.dumps(
            record,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )

        with self._lock:
            if self._fp is None:
                return
            self._fp.write(payload + "\n")
            self._fp.flush()


class BoundRunLogger(RunLogger):
    """Per-run view of a parent RunLogger; owns no file of its own."""

    def __init__(self, parent: RunLogger, *, run_id: str | None) -> None:
        self._parent = parent
        self._run_id = (run_id or "").strip() or None
        self._session_id = parent._session_id
        self._min_level = parent._min_level
        self._path = None
        self._fp = None
        self._owns_fp = False
        self._opened = True
        self._overwrite = False
        self._lock = Lock()

    def close(self) -> None:
        return None

    def _ensure_open(self) -> None:
        self._parent._ensure_open()

    def _write(self, record: dict[str, Any]) -> None:
        self._parent._write(record)


class NullRunLogger(RunLogger):
    """Discards every event. Default for components constructed without a logger."""

    def __init__(self) -> None:
        self._run_id = None
        self._session_id = ""
        self._min_level = 100
        self._fp = None
        self._path = None
        self._owns_fp = False
        self._opened = False
        self._overwrite = False
        self._lock = Lock()

    def bind(self, *, run_id: str | None) -> RunLogger:
        return self

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        return None

    def close(self) -> None:
        return None


def ensure_logger(logger: RunLogger | None) -> RunLogger:
    return logger if logger is not None else NullRunLogger()
