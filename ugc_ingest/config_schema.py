from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _normalize_term_list(values: list[str], *, allow_empty: bool) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()

    for item in values:
        term = (item or "").strip()
        if term.startswith("#"):
            term = term[1:].strip()
        if not term:
            continue
        key = term.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(term)

    if not allow_empty and not out:
        raise ValueError("must contain at least one non-empty term")
    return out


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


def _strip_trailing_slash(value: str) -> str:
    url = (value or "").strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return url


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]
PositiveFloat = Annotated[float, Field(gt=0)]


class ApifyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    token_env: str = "APIFY_TOKEN"
    base_url: str = "https://api.apify.com/v2"
    actor_id: str = "apify/instagram-scraper"
    results_limit: PositiveInt = 50
    freshness_window: str | None = "1 day"
    sync_timeout_seconds: PositiveFloat = 300.0
    request_timeout_seconds: PositiveFloat = 30.0
    poll_interval_seconds: PositiveFloat = 3.0
    poll_timeout_seconds: PositiveFloat = 300.0

    @field_validator("token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("base_url")
    @classmethod
    def _base_url_must_be_http(cls, v: str) -> str:
        return _strip_trailing_slash(v)

    @field_validator("actor_id")
    @classmethod
    def _actor_id_must_be_set(cls, v: str) -> str:
        actor = (v or "").strip()
        if not actor:
            raise ValueError("must be non-empty")
        return actor

    @model_validator(mode="after")
    def _poll_interval_within_timeout(self) -> "ApifyConfig":
        if self.poll_interval_seconds > self.poll_timeout_seconds:
            raise ValueError("poll_interval_seconds must be <= poll_timeout_seconds")
        return self


class MediaConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    proxy_url: str | None = None
    cdn_patterns: list[str] = Field(
        default_factory=lambda: ["instagram.f", "fbcdn.net", "cdninstagram.com"]
    )
    fetch_timeout_seconds: PositiveFloat = 20.0
    max_retries: NonNegativeInt = 2
    batch_size: PositiveInt = 3

    @field_validator("proxy_url")
    @classmethod
    def _proxy_url_must_be_http(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return _strip_trailing_slash(v)

    @field_validator("cdn_patterns")
    @classmethod
    def _normalize_patterns(cls, v: list[str]) -> list[str]:
        return [p.strip().casefold() for p in v if p and p.strip()]


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    backend: Literal["local", "s3"] = "local"
    local_root: str | None = None
    public_base_url: str | None = None
    bucket: str = "ugc-images"
    key_prefix: str = "ugc"

    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key_env: str = "UGC_S3_ACCESS_KEY"
    s3_secret_key_env: str = "UGC_S3_SECRET_KEY"

    @field_validator("key_prefix")
    @classmethod
    def _normalize_prefix(cls, v: str) -> str:
        prefix = (v or "").strip().strip("/")
        if not prefix:
            raise ValueError("must be non-empty")
        return prefix

    @field_validator("s3_access_key_env", "s3_secret_key_env")
    @classmethod
    def _env_names_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @model_validator(mode="after")
    def _s3_requires_endpoint(self) -> "StorageConfig":
        if self.backend == "s3" and not (self.s3_endpoint_url or "").strip():
            raise ValueError("s3_endpoint_url is required when backend is 's3'")
        return self


class CollectionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    default_hashtags: list[str] = Field(
        default_factory=lambda: [
            "ridetothrive",
            "mitra2000",
            "motorcyclespecialist",
            "tdr",
            "oneteamstore",
            "highperformancezone",
            "hpzcrew",
            "hpz",
        ]
    )
    posts_per_hashtag: PositiveInt = 20

    @field_validator("default_hashtags")
    @classmethod
    def _normalize_default_hashtags(cls, v: list[str]) -> list[str]:
        return _normalize_term_list(v, allow_empty=False)


class ProgressConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    history_size: PositiveInt = 50


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    apify: ApifyConfig = Field(default_factory=ApifyConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
