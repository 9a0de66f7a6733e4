"""Configuration models for the loader.

Pydantic v2 models for the admission controller: the concurrency ceiling,
running-jobs cache TTL, backoff shape, retry-cycle circuit breaker and the
ambient logging / dead-letter settings.  Loaded from YAML.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from bqloader.core.errors import ConfigError
from bqloader.core.logging import get_logger

_logger = get_logger("core.config")

# Below this the retry-cycle ceiling stops behaving like a circuit breaker
# and starts dead-lettering requests during ordinary backend slowness.
RECOMMENDED_MIN_RETRY_CYCLES = 10_000


class LogConfig(BaseModel):
    """Structured logging settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console", "both"] = Field(
        default="console",
        description="Output format: json for structured, console for human-readable, "
        "both for console to stderr and JSON to file",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path for log file output (required if format='both')",
    )
    max_file_size_mb: int = Field(
        default=50,
        gt=0,
        le=1000,
        description="Maximum log file size before rotation (MB)",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of rotated log files to keep",
    )

    @model_validator(mode="after")
    def _require_file_for_both(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("logging.file_path is required when logging.format='both'")
        return self


class LoaderConfig(BaseModel):
    """Top-level configuration for the load-job admission controller."""

    bq_project: str = Field(
        min_length=1,
        description="Target BigQuery project that destination tables live in.",
    )
    concurrent_load_jobs_threshold: int = Field(
        default=50,
        ge=1,
        description="Ceiling on running BigQuery jobs. A submission is only "
        "attempted while fewer jobs than this are running.",
    )
    concurrent_load_jobs_cache_ttl_minutes: float = Field(
        default=1.0,
        ge=0.0,
        description="How long a running-jobs listing is reused before it is "
        "fetched again. 0 refreshes on every capacity check.",
    )
    initial_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="First wait when the job queue is full.",
    )
    backoff_exponent: float = Field(
        default=1.5,
        ge=1.0,
        description="Multiplier applied to the wait after every full-queue check.",
    )
    max_retries: int = Field(
        default=5,
        ge=0,
        description="Backoff waits allowed per submission attempt before the "
        "request is sent back through the stream.",
    )
    max_backoff_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Upper bound on a single backoff wait. None means uncapped.",
    )
    backoff_jitter: float = Field(
        default=0.0,
        ge=0.0,
        lt=1.0,
        description="Randomization fraction applied to each wait (0 = deterministic).",
    )
    max_load_job_retry_cycles: int = Field(
        default=RECOMMENDED_MIN_RETRY_CYCLES,
        ge=1,
        description="External retry cycles a request may consume before it is "
        "dead-lettered. Acts as a circuit breaker; keep it >= 10000.",
    )
    workers: int = Field(
        default=8,
        ge=1,
        le=1000,
        description="Messages processed concurrently by the service.",
    )
    dead_letter_path: Path = Field(
        default=Path("~/.bqloader/dead-letter.jsonl"),
        description="JSONL file receiving dead-lettered requests. Tilde is expanded.",
    )
    logging: LogConfig = Field(
        default_factory=LogConfig,
        description="Structured logging settings.",
    )

    @property
    def cache_ttl_seconds(self) -> float:
        return self.concurrent_load_jobs_cache_ttl_minutes * 60.0

    @model_validator(mode="after")
    def _warn_low_retry_cycles(self) -> LoaderConfig:
        if self.max_load_job_retry_cycles < RECOMMENDED_MIN_RETRY_CYCLES:
            _logger.warning(
                "config.low_retry_cycles",
                max_load_job_retry_cycles=self.max_load_job_retry_cycles,
                recommended_min=RECOMMENDED_MIN_RETRY_CYCLES,
                message="requests may be dead-lettered during transient backend degradation",
            )
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> LoaderConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigError: If the file is missing, is not valid YAML, or fails validation.
        """
        try:
            with open(path) as f:
                text = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        return cls.from_yaml_string(text)

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> LoaderConfig:
        """Load configuration from a YAML string."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("Config must be a YAML mapping")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(str(e)) from e


__all__ = ["LoaderConfig", "LogConfig", "RECOMMENDED_MIN_RETRY_CYCLES"]
