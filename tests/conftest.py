"""Pytest fixtures for bqloader tests."""

import logging
from pathlib import Path
from typing import Generator

import pytest
import structlog

import bqloader.cli as cli_module


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    overrides = cli_module._log_overrides
    original = (overrides.level, overrides.format, overrides.file)
    overrides.level = overrides.format = overrides.file = None

    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    overrides.level, overrides.format, overrides.file = original
    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a loader configuration that never actually sleeps."""
    return {
        "bq_project": "test-project",
        "concurrent_load_jobs_threshold": 3,
        "concurrent_load_jobs_cache_ttl_minutes": 0,
        "initial_backoff_seconds": 0.0,
        "backoff_exponent": 1.5,
        "max_retries": 2,
        "max_load_job_retry_cycles": 10000,
        "workers": 2,
    }


@pytest.fixture
def sample_yaml_config(tmp_path: Path, sample_config_dict: dict) -> Path:
    """Create a sample YAML config file with a temp dead-letter path."""
    import yaml

    config_path = tmp_path / "loader.yaml"
    data = {**sample_config_dict, "dead_letter_path": str(tmp_path / "dead-letter.jsonl")}
    with open(config_path, "w") as f:
        yaml.dump(data, f)
    return config_path
