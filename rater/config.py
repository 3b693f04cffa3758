"""
Run configuration for the feed sampler.

Values come from environment variables (a local .env file is loaded first)
and may be overridden field by field from the command line.
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from dotenv import load_dotenv

from rater.exceptions import ConfigError

DEFAULT_CATALOG_URL = "https://api.mobilitydatabase.org"


@dataclass(frozen=True)
class Config:
    output_dir: str = "feeds"
    concurrency: int = 5
    sample_interval_seconds: float = 60.0
    sample_count: int = 1  # 0 = run until cancelled

    # gs://bucket[/prefix] or a local directory; None disables upload
    destination: Optional[str] = None
    gzip: bool = False
    upload_workers: int = 4
    aggregate_on_upload: bool = True
    delete_after_upload: bool = False

    request_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    max_retries: int = 1
    retry_backoff_seconds: float = 1.0

    catalog_url: str = DEFAULT_CATALOG_URL
    refresh_token: Optional[str] = None
    feeds_file: Optional[str] = None
    key_config: Optional[str] = None

    def validate(self) -> "Config":
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.sample_interval_seconds < 0:
            raise ConfigError(f"sample interval must be >= 0, got {self.sample_interval_seconds}")
        if self.sample_count < 0:
            raise ConfigError(f"sample count must be >= 0, got {self.sample_count}")
        if self.request_timeout_seconds <= 0 or self.connect_timeout_seconds <= 0:
            raise ConfigError("timeouts must be positive")
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.upload_workers < 1:
            raise ConfigError(f"upload_workers must be >= 1, got {self.upload_workers}")
        return self

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes).validate()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigError(f"{name}={value!r} is not a valid {cast.__name__}") from e


def get_config(dotenv_path: Optional[str] = None) -> Config:
    """Build a Config from the environment."""
    load_dotenv(dotenv_path=dotenv_path)

    config = Config(
        output_dir=os.getenv("RATER_OUTPUT_DIR", Config.output_dir),
        concurrency=_env_number("RATER_CONCURRENCY", Config.concurrency, int),
        sample_interval_seconds=_env_number(
            "RATER_SAMPLE_INTERVAL", Config.sample_interval_seconds, float
        ),
        sample_count=_env_number("RATER_SAMPLE_COUNT", Config.sample_count, int),
        destination=os.getenv("RATER_DESTINATION") or None,
        gzip=_env_bool("RATER_GZIP", Config.gzip),
        upload_workers=_env_number("RATER_UPLOAD_WORKERS", Config.upload_workers, int),
        aggregate_on_upload=_env_bool("RATER_AGGREGATE_ON_UPLOAD", Config.aggregate_on_upload),
        delete_after_upload=_env_bool("RATER_DELETE_AFTER_UPLOAD", Config.delete_after_upload),
        request_timeout_seconds=_env_number(
            "RATER_REQUEST_TIMEOUT", Config.request_timeout_seconds, float
        ),
        connect_timeout_seconds=_env_number(
            "RATER_CONNECT_TIMEOUT", Config.connect_timeout_seconds, float
        ),
        max_retries=_env_number("RATER_MAX_RETRIES", Config.max_retries, int),
        retry_backoff_seconds=_env_number(
            "RATER_RETRY_BACKOFF", Config.retry_backoff_seconds, float
        ),
        catalog_url=os.getenv("MOBILITYDATA_API_URL", DEFAULT_CATALOG_URL),
        refresh_token=os.getenv("MOBILITYDATA_REFRESH_TOKEN") or None,
        feeds_file=os.getenv("RATER_FEEDS_FILE") or None,
        key_config=os.getenv("RATER_KEY_CONFIG") or None,
    )
    return config.validate()
