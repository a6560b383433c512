from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Iterable

from .collection_run import CollectionRun
from .errors import DedupLookupError, PersistenceError, StorageError
from .post import NormalizedPost
from .storage_schema import initialize_sqlite


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def _json_list(raw: Any) -> list[str]:
    try:
        value = json.loads(raw or "[]")
    except ValueError:
        return []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


@dataclass(frozen=True)
class HistoryRecord:
    run_id: str
    mode: str
    targets: list[str]
    success: bool
    items_fetched: int
    items_stored: int
    errors: list[str]
    message: str | None
    requested_at: str
    finished_at: str


@dataclass(frozen=True)
class CollectionStats:
    total_collections: int
    successful_collections: int
    failed_collections: int
    total_posts_collected: int
    total_new_posts_added: int
    last_collection_time: str | None


class SQLiteContentStore:
    """
    Persistent content store: collected posts keyed by permalink plus the
    append-only collection history.

    One connection is shared across worker threads; a lock serializes access.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._lock = Lock()

    @classmethod
    def open(cls, path: str | Path) -> "SQLiteContentStore":
        db_path = str(path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except Exception as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SQLiteContentStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def existing_permalinks(self, permalinks: Iterable[str]) -> set[str]:
        wanted = sorted({(p or "").strip() for p in permalinks} - {""})
        if not wanted:
            return set()

        placeholders = ",".join("?" for _ in wanted)
        sql = f"SELECT permalink FROM ugc_content WHERE permalink IN ({placeholders})"
        try:
            with self._lock:
                rows = self._conn.execute(sql, tuple(wanted)).fetchall()
        except sqlite3.DatabaseError as e:
            raise DedupLookupError(f"Failed to look up existing permalinks: {e}") from e
        return {str(r["permalink"]) for r in rows}

    def insert_post(self, post: NormalizedPost, *, row_id: str | None = None) -> str:
        permalink = (post.permalink or "").strip()
        if not permalink:
            raise PersistenceError(f"{post.id}: permalink must be non-empty")

        rid = (row_id or uuid.uuid4().hex).strip()
        now = _utc_now_iso()

        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO ugc_content(
                      id, external_id, platform, author_username, permalink, caption,
                      media_type, media_url, thumbnail_url, likes_count, comments_count,
                      hashtags_json, status, created_at, inserted_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """.strip(),
                    (
                        rid,
                        post.id,
                        post.platform,
                        post.author_username,
                        permalink,
                        post.caption,
                        post.media_type,
                        post.media_url,
                        post.thumbnail_url,
                        int(post.likes_count),
                        int(post.comments_count),
                        _json_dumps(list(post.hashtags)),
                        post.status,
                        post.created_at or now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise PersistenceError(f"{post.id}: {e}") from e
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"{post.id}: failed to insert post: {e}") from e
        return rid

    def get_post(self, permalink: str) -> NormalizedPost | None:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT external_id, platform, author_username, permalink, caption, media_type,
                       media_url, thumbnail_url, likes_count, comments_count, hashtags_json,
                       status, created_at
                FROM ugc_content WHERE permalink = ?
                """.strip(),
                ((permalink or "").strip(),),
            ).fetchone()
        if row is None:
            return None

        return NormalizedPost(
            id=str(row["external_id"]),
            permalink=str(row["permalink"]),
            media_url=str(row["media_url"]),
            media_type=str(row["media_type"]),  # type: ignore[arg-type]
            platform=str(row["platform"]),
            author_username=str(row["author_username"]),
            caption=str(row["caption"]),
            thumbnail_url=str(row["thumbnail_url"]) if row["thumbnail_url"] is not None else None,
            likes_count=int(row["likes_count"]),
            comments_count=int(row["comments_count"]),
            hashtags=tuple(_json_list(row["hashtags_json"])),
            status=str(row["status"]),  # type: ignore[arg-type]
            created_at=str(row["created_at"]),
        )

    def post_count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(1) AS n FROM ugc_content").fetchone()
        return int(row["n"]) if row is not None else 0

    def append_history(self, run: CollectionRun) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO collection_history(
                      run_id, mode, targets_json, success, items_fetched, items_stored,
                      errors_json, message, requested_at, finished_at, logged_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """.strip(),
                    (
                        run.id,
                        run.mode,
                        _json_dumps(list(run.targets)),
                        1 if run.success else 0,
                        int(run.items_fetched),
                        int(run.items_stored),
                        _json_dumps(list(run.errors)),
                        run.message,
                        run.requested_at,
                        run.finished_at,
                        _utc_now_iso(),
                    ),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to append collection history: {e}") from e

    def collection_history(self, *, limit: int = 10) -> list[HistoryRecord]:
        if limit <= 0:
            return []

        with self._lock:
            rows = self._conn.execute(
                """
                SELECT run_id, mode, targets_json, success, items_fetched, items_stored,
                       errors_json, message, requested_at, finished_at
                FROM collection_history
                ORDER BY requested_at DESC, id DESC
                LIMIT ?
                """.strip(),
                (int(limit),),
            ).fetchall()

        return [
            HistoryRecord(
                run_id=str(r["run_id"]),
                mode=str(r["mode"]),
                targets=_json_list(r["targets_json"]),
                success=bool(r["success"]),
                items_fetched=int(r["items_fetched"]),
                items_stored=int(r["items_stored"]),
                errors=_json_list(r["errors_json"]),
                message=str(r["message"]) if r["message"] is not None else None,
                requested_at=str(r["requested_at"]),
                finished_at=str(r["finished_at"]),
            )
            for r in rows
        ]

    def recent_stats(self) -> CollectionStats:
        with self._lock:
            row = self._conn.execute("SELECT * FROM recent_collection_stats").fetchone()
        if row is None:
            return CollectionStats(0, 0, 0, 0, 0, None)
        last = row["last_collection_time"]
        return CollectionStats(
            total_collections=int(row["total_collections"] or 0),
            successful_collections=int(row["successful_collections"] or 0),
            failed_collections=int(row["failed_collections"] or 0),
            total_posts_collected=int(row["total_posts_collected"] or 0),
            total_new_posts_added=int(row["total_new_posts_added"] or 0),
            last_collection_time=str(last) if last is not None else None,
        )
