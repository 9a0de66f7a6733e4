"""Tests for bqloader.core.config module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from bqloader.core.config import RECOMMENDED_MIN_RETRY_CYCLES, LoaderConfig, LogConfig
from bqloader.core.errors import ConfigError


class TestLoaderConfigDefaults:
    """Tests for LoaderConfig default values."""

    def test_defaults(self):
        """Only the project is required; everything else has a default."""
        config = LoaderConfig(bq_project="p")
        assert config.concurrent_load_jobs_threshold == 50
        assert config.concurrent_load_jobs_cache_ttl_minutes == 1.0
        assert config.initial_backoff_seconds == 1.0
        assert config.backoff_exponent == 1.5
        assert config.max_retries == 5
        assert config.max_load_job_retry_cycles == RECOMMENDED_MIN_RETRY_CYCLES
        assert config.max_backoff_seconds is None
        assert config.backoff_jitter == 0.0
        assert config.workers == 8
        assert config.logging.level == "INFO"

    def test_project_required(self):
        with pytest.raises(ValidationError):
            LoaderConfig()

    def test_cache_ttl_seconds(self):
        config = LoaderConfig(bq_project="p", concurrent_load_jobs_cache_ttl_minutes=2.5)
        assert config.cache_ttl_seconds == 150.0


class TestLoaderConfigValidation:
    """Tests for LoaderConfig field constraints."""

    @pytest.mark.parametrize(
        "field,value",
        [
            ("concurrent_load_jobs_threshold", 0),
            ("concurrent_load_jobs_cache_ttl_minutes", -1),
            ("initial_backoff_seconds", -0.5),
            ("backoff_exponent", 0.9),
            ("max_retries", -1),
            ("max_backoff_seconds", 0),
            ("backoff_jitter", 1.0),
            ("max_load_job_retry_cycles", 0),
            ("workers", 0),
        ],
    )
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            LoaderConfig(bq_project="p", **{field: value})

    def test_empty_project_rejected(self):
        with pytest.raises(ValidationError):
            LoaderConfig(bq_project="")

    def test_low_retry_cycles_allowed(self):
        """Values below the recommended floor validate (with a warning)."""
        config = LoaderConfig(bq_project="p", max_load_job_retry_cycles=3)
        assert config.max_load_job_retry_cycles == 3


class TestLogConfig:
    """Tests for LogConfig model."""

    def test_both_requires_file(self):
        with pytest.raises(ValidationError):
            LogConfig(format="both")

    def test_both_with_file(self, tmp_path: Path):
        config = LogConfig(format="both", file_path=tmp_path / "loader.log")
        assert config.file_path == tmp_path / "loader.log"

    def test_invalid_level(self):
        with pytest.raises(ValidationError):
            LogConfig(level="TRACE")


class TestYamlLoading:
    """Tests for from_yaml / from_yaml_string."""

    def test_from_yaml_string(self):
        config = LoaderConfig.from_yaml_string(
            "bq_project: my-project\n"
            "concurrent_load_jobs_threshold: 10\n"
            "logging:\n"
            "  level: DEBUG\n"
        )
        assert config.bq_project == "my-project"
        assert config.concurrent_load_jobs_threshold == 10
        assert config.logging.level == "DEBUG"

    def test_from_yaml_file(self, sample_yaml_config: Path):
        config = LoaderConfig.from_yaml(sample_yaml_config)
        assert config.bq_project == "test-project"
        assert config.concurrent_load_jobs_threshold == 3
        assert config.cache_ttl_seconds == 0.0

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Cannot read config file"):
            LoaderConfig.from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            LoaderConfig.from_yaml_string("bq_project: [unclosed")

    def test_non_mapping(self):
        with pytest.raises(ConfigError, match="mapping"):
            LoaderConfig.from_yaml_string("- just\n- a list\n")

    def test_validation_error_wrapped(self):
        with pytest.raises(ConfigError):
            LoaderConfig.from_yaml_string("bq_project: p\nmax_retries: -3\n")
