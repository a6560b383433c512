from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig
from .errors import ConfigError


@dataclass(frozen=True)
class RuntimeSecrets:
    apify_token: str
    s3_access_key: str | None = None
    s3_secret_key: str | None = None


def load_config(path: str | Path) -> AppConfig:
    """
    Load a YAML config file and validate it into a typed AppConfig.

    Raises ConfigError with a readable validation message on failure.
    """
    p = Path(path)

    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")

    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {p}") from e

    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML in {p}: {e}") from e

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML in {p} must be a mapping/object")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_pydantic_errors(e, p)) from e


def resolve_runtime_secrets(
    config: AppConfig,
    *,
    environ: Mapping[str, str] | None = None,
    require_apify: bool = True,
) -> RuntimeSecrets:
    """
    Validate that required environment variables are present and non-empty.

    The Apify token is always required unless require_apify is False (offline runs);
    S3 credentials are required only for the s3 storage backend.
    """
    env = os.environ if environ is None else environ

    def _get(name: str) -> str:
        return (env.get(name) or "").strip()

    required: list[str] = []
    if require_apify:
        required.append(config.apify.token_env)
    if config.storage.backend == "s3":
        required.append(config.storage.s3_access_key_env)
        required.append(config.storage.s3_secret_key_env)

    missing = [name for name in required if not _get(name)]
    if missing:
        joined = ", ".join(missing)
        raise ConfigError(f"Missing required environment variables: {joined}")

    s3_access = _get(config.storage.s3_access_key_env) or None
    s3_secret = _get(config.storage.s3_secret_key_env) or None

    return RuntimeSecrets(
        apify_token=_get(config.apify.token_env),
        s3_access_key=s3_access if config.storage.backend == "s3" else None,
        s3_secret_key=s3_secret if config.storage.backend == "s3" else None,
    )


def _format_pydantic_errors(err: ValidationError, path: Path) -> str:
    lines: list[str] = [f"Invalid configuration in {path}:"]
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", [])) or "<root>"
        msg = item.get("msg", "invalid value")
        lines.append(f"- {loc}: {msg}")
    return "\n".join(lines)
