"""Retry-cycle tracker: bounds how often a request may come back.

A request that could not be submitted is re-published to the input
stream with its ``loadJobSubmissionAttempts`` counter incremented, so the
counter survives any number of trips through the transport.  Once the
counter reaches ``max_load_job_retry_cycles`` the request is expired and
goes to the dead-letter store instead of being attempted again.

The ceiling is a circuit breaker for systemic failure (BigQuery down,
jobs never finishing), not an everyday retry limit.  Each cycle already
includes a full backoff run, so a low ceiling turns ordinary slowness
into permanent failures.
"""

from __future__ import annotations

from enum import Enum

from bqloader.core.models import LoadRequest


class Eligibility(str, Enum):
    ELIGIBLE = "eligible"
    EXPIRED = "expired"


class RetryCycleTracker:
    """Reads and advances the retry-cycle counter of a load request."""

    def __init__(self, max_load_job_retry_cycles: int) -> None:
        if max_load_job_retry_cycles < 0:
            raise ValueError(
                f"max_load_job_retry_cycles must be >= 0, got {max_load_job_retry_cycles}"
            )
        self._max_cycles = max_load_job_retry_cycles

    @property
    def max_cycles(self) -> int:
        return self._max_cycles

    def admit(self, request: LoadRequest) -> Eligibility:
        """``ELIGIBLE`` while fewer than the allowed cycles have been used."""
        if request.submission_attempts < self._max_cycles:
            return Eligibility.ELIGIBLE
        return Eligibility.EXPIRED

    def record_attempt(self, request: LoadRequest) -> LoadRequest:
        """Return a copy of ``request`` with one more cycle recorded.

        Absent counters count as 0, so the first retry writes 1.
        """
        return request.with_attempts(request.submission_attempts + 1)


__all__ = ["Eligibility", "RetryCycleTracker"]
