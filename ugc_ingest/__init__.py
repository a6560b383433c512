from __future__ import annotations

from .collection_run import CollectionRun
from .config import load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, ScrapeError, StorageError
from .orchestrator import CollectionOrchestrator
from .post import NormalizedPost
from .progress import ProgressChannel, ProgressEvent, ProgressTracker
from .request import ScrapeRequest

__all__ = [
    "AppConfig",
    "CollectionOrchestrator",
    "CollectionRun",
    "ConfigError",
    "NormalizedPost",
    "ProgressChannel",
    "ProgressEvent",
    "ProgressTracker",
    "ScrapeError",
    "ScrapeRequest",
    "StorageError",
    "load_config",
    "resolve_runtime_secrets",
]
