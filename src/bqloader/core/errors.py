"""Exception hierarchy for the loader.

Every loader-specific exception inherits from ``LoaderError`` so callers
can catch broadly or narrowly.  The admission path raises these
internally; the router converts all of them except configuration errors
into a routing decision, so none escape a routed message.
"""

from __future__ import annotations


class LoaderError(Exception):
    """Base exception for all loader errors."""


class ConfigError(LoaderError):
    """Raised when a loader configuration file cannot be read or validated."""


class RefreshError(LoaderError):
    """Raised when the running-jobs listing could not be fetched.

    The admission gate treats this like a full queue: the submission
    backs off instead of assuming free capacity.
    """


class ThresholdExceededError(LoaderError):
    """Raised when the running-job count is at or above the threshold."""

    def __init__(self, running: int, threshold: int) -> None:
        self.running = running
        self.threshold = threshold
        super().__init__(
            f"BigQuery job queue is beyond the set threshold of {threshold} "
            f"({running} running)"
        )


class BackoffExhaustedError(LoaderError):
    """Raised when capacity never freed up within the backoff budget."""


class BackoffInterruptedError(LoaderError):
    """Raised when a backoff sleep was interrupted or failed."""


class BackendError(LoaderError):
    """Raised when the warehouse rejected or failed a job-creation call.

    Not a capacity signal: the orchestrator reports it immediately
    without entering the backoff loop.
    """


class MalformedRequestError(LoaderError):
    """Raised when an inbound payload cannot be decoded as a load request."""


__all__ = [
    "BackoffExhaustedError",
    "BackoffInterruptedError",
    "BackendError",
    "ConfigError",
    "LoaderError",
    "MalformedRequestError",
    "RefreshError",
    "ThresholdExceededError",
]
