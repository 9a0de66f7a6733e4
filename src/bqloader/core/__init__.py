"""Core models, configuration, errors and logging."""

from bqloader.core.config import LoaderConfig, LogConfig
from bqloader.core.errors import (
    BackendError,
    BackoffExhaustedError,
    BackoffInterruptedError,
    ConfigError,
    LoaderError,
    MalformedRequestError,
    RefreshError,
    ThresholdExceededError,
)
from bqloader.core.models import (
    LoadRequest,
    LoaderEnvelope,
    StreamMessage,
    TableDestination,
)

__all__ = [
    "BackendError",
    "BackoffExhaustedError",
    "BackoffInterruptedError",
    "ConfigError",
    "LoadRequest",
    "LoaderConfig",
    "LoaderEnvelope",
    "LoaderError",
    "LogConfig",
    "MalformedRequestError",
    "RefreshError",
    "StreamMessage",
    "TableDestination",
    "ThresholdExceededError",
]
