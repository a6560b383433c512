from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Sequence

from .blob_store import BlobStore, LocalBlobStore, S3BlobStore
from .collection_run import CollectionRun
from .config import RuntimeSecrets, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, ScrapeError, StorageError
from .history import CollectionHistoryLogger
from .orchestrator import CollectionOrchestrator
from .progress import ProgressChannel, ProgressTracker
from .rehost import MediaRehoster
from .request import ScrapeRequest
from .run_log import RunLogger
from .scrape_adapter import ApifyScrapeAdapter, ScrapeAdapter
from .storage import SQLiteContentStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ugc-ingest")

    subparsers = parser.add_subparsers(dest="command", required=True)

    collect = subparsers.add_parser(
        "collect",
        help="Run one collection: fetch, dedupe, rehost media and store new posts.",
    )
    collect.add_argument(
        "--config",
        required=True,
        help="Path to YAML config file.",
    )
    collect.add_argument(
        "--out",
        required=True,
        help="Output directory for the content database, media and logs.",
    )
    target = collect.add_mutually_exclusive_group()
    target.add_argument("--hashtag", help="Collect a single hashtag.")
    target.add_argument("--hashtags", nargs="+", help="Collect several hashtags in one run.")
    target.add_argument("--urls", nargs="+", help="Collect explicit post or profile URLs.")
    collect.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Results limit for this run (defaults to the configured value).",
    )
    collect.add_argument(
        "--newer-than",
        default=None,
        help="Only collect posts newer than this window, e.g. '1 day' or '2 weeks'.",
    )
    collect.add_argument(
        "--offline",
        action="store_true",
        help="Run without network calls using a small stub dataset.",
    )
    collect.set_defaults(_handler=_cmd_collect)

    history = subparsers.add_parser(
        "history",
        help="Show recent collection runs and 7-day stats.",
    )
    history.add_argument(
        "--config",
        required=True,
        help="Path to YAML config file.",
    )
    history.add_argument(
        "--out",
        required=True,
        help="Output directory holding content.sqlite.",
    )
    history.add_argument("--limit", type=int, default=10, help="Number of runs to show.")
    history.set_defaults(_handler=_cmd_history)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _build_blob_store(cfg: AppConfig, secrets: RuntimeSecrets, default_root: Path) -> BlobStore:
    storage = cfg.storage
    if storage.backend == "s3":
        return S3BlobStore(
            endpoint_url=storage.s3_endpoint_url or "",
            bucket=storage.bucket,
            access_key_id=secrets.s3_access_key,
            secret_access_key=secrets.s3_secret_key,
            region=storage.s3_region,
            public_base_url=storage.public_base_url,
        )
    root = Path(storage.local_root) if storage.local_root else default_root
    return LocalBlobStore(root, public_base_url=storage.public_base_url)


def _build_request(cfg: AppConfig, args: argparse.Namespace) -> ScrapeRequest:
    newer_than = args.newer_than if args.newer_than is not None else cfg.apify.freshness_window
    try:
        if args.hashtag:
            return ScrapeRequest.for_hashtag(
                args.hashtag,
                results_limit=args.limit if args.limit is not None else cfg.collection.posts_per_hashtag,
                freshness_window=newer_than,
            )
        if args.hashtags:
            return ScrapeRequest.for_hashtags(
                args.hashtags,
                results_limit=args.limit if args.limit is not None else cfg.apify.results_limit,
                freshness_window=newer_than,
            )
        if args.urls:
            return ScrapeRequest.for_urls(
                args.urls,
                results_limit=args.limit if args.limit is not None else cfg.apify.results_limit,
                freshness_window=newer_than,
            )
        return ScrapeRequest.for_hashtags(
            cfg.collection.default_hashtags,
            results_limit=args.limit if args.limit is not None else cfg.apify.results_limit,
            freshness_window=newer_than,
        )
    except ValueError as e:
        raise ConfigError(f"Invalid collection request: {e}") from e


async def _print_progress(channel: ProgressChannel) -> None:
    async for ev in channel:
        counts = f" ({ev.current}/{ev.total})" if ev.current is not None and ev.total is not None else ""
        message = f" {ev.message}" if ev.message else ""
        _eprint(f"[{ev.percentage:3d}%] {ev.step}{counts}{message}")


async def _run_collection(
    cfg: AppConfig,
    secrets: RuntimeSecrets,
    request: ScrapeRequest,
    *,
    store: SQLiteContentStore,
    out_dir: Path,
    offline: bool,
    log: RunLogger,
) -> CollectionRun:
    adapter: ScrapeAdapter
    if offline:
        from .offline import OfflineScrapeAdapter

        adapter = OfflineScrapeAdapter()
    else:
        adapter = ApifyScrapeAdapter(cfg.apify, secrets.apify_token, logger=log)

    blob_store = _build_blob_store(cfg, secrets, out_dir / "media")
    history = CollectionHistoryLogger(store, logger=log)
    channel = ProgressChannel()

    async with MediaRehoster(cfg.media, blob_store, key_prefix=cfg.storage.key_prefix, logger=log) as rehoster:
        log.info("media_rehost_mode", enabled=rehoster.enabled, backend=cfg.storage.backend)
        orchestrator = CollectionOrchestrator(
            adapter,
            store,
            rehoster,
            history=history,
            logger=log,
            batch_size=cfg.media.batch_size,
        )
        printer = asyncio.create_task(_print_progress(channel))
        try:
            run = await orchestrator.collect(
                request,
                progress_channel=channel,
                tracker=ProgressTracker(history_size=cfg.progress.history_size),
            )
        finally:
            if isinstance(adapter, ApifyScrapeAdapter):
                await adapter.aclose()
        await printer
        await history.drain()
    return run


def _cmd_collect(args: argparse.Namespace) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    offline = bool(getattr(args, "offline", False))

    log_path = out_dir / "run.log"
    with RunLogger.open(log_path, overwrite=True) as log:
        log.info(
            "collect_command_started",
            config_path=str(args.config),
            out_dir=str(out_dir),
            offline=offline,
        )

        try:
            cfg = load_config(args.config)
            secrets = resolve_runtime_secrets(cfg, require_apify=not offline)
            request = _build_request(cfg, args)

            log.info(
                "config_loaded",
                config_path=str(args.config),
                apify_token_env=cfg.apify.token_env,
                actor_id=cfg.apify.actor_id,
                storage_backend=cfg.storage.backend,
            )

            db_path = out_dir / "content.sqlite"
            with SQLiteContentStore.open(db_path) as store:
                run = asyncio.run(
                    _run_collection(
                        cfg,
                        secrets,
                        request,
                        store=store,
                        out_dir=out_dir,
                        offline=offline,
                        log=log,
                    )
                )

            print(f"run_id={run.id}")
            print(f"success={str(run.success).lower()}")
            print(f"items_fetched={run.items_fetched}")
            print(f"items_stored={run.items_stored}")
            print(f"errors={len(run.errors)}")
            if run.message:
                print(f"message={run.message}")
            for err in run.errors:
                _eprint(f"error: {err}")
            print(f"content_db={db_path}")
            print(f"run_log={log_path}")

            return 0 if run.success else 4
        except Exception as e:
            log.exception("collect_command_failed", exc=e)
            raise


def _cmd_history(args: argparse.Namespace) -> int:
    load_config(args.config)
    db_path = Path(args.out) / "content.sqlite"
    if not db_path.exists():
        raise StorageError(f"No content database found at {db_path}")

    with SQLiteContentStore.open(db_path) as store:
        records = store.collection_history(limit=int(args.limit))
        stats = store.recent_stats()

    for rec in records:
        status = "ok" if rec.success else "failed"
        print(
            f"{rec.requested_at} {status} mode={rec.mode} targets={','.join(rec.targets)} "
            f"fetched={rec.items_fetched} stored={rec.items_stored} errors={len(rec.errors)}"
        )

    print(f"total_collections={stats.total_collections}")
    print(f"successful_collections={stats.successful_collections}")
    print(f"failed_collections={stats.failed_collections}")
    print(f"total_posts_collected={stats.total_posts_collected}")
    print(f"total_new_posts_added={stats.total_new_posts_added}")
    print(f"last_collection_time={stats.last_collection_time or ''}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (ScrapeError, StorageError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
