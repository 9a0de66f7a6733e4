"""Admission gate: may one more load job start right now?

Compares the running-jobs snapshot against the configured threshold.
The gate is advisory: two workers can both see a free slot and both
submit, briefly overshooting the threshold; nothing serializes
submissions.

A failed running-jobs listing is answered as if the queue were full.
Not knowing the running count biases toward submitting less, never
toward flooding BigQuery during a listing outage.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bqloader.core.errors import RefreshError, ThresholdExceededError
from bqloader.core.logging import get_logger
from bqloader.throttle.snapshot import RunningJobSnapshot

_logger = get_logger("throttle.gate")


class GateReason(str, Enum):
    """Why the gate answered the way it did."""

    UNDER_THRESHOLD = "under_threshold"
    THRESHOLD_EXCEEDED = "threshold_exceeded"
    REFRESH_FAILED = "refresh_failed"


@dataclass(frozen=True)
class GateDecision:
    """Result of one capacity check."""

    allowed: bool
    reason: GateReason
    threshold: int
    running: int | None = None
    error: RefreshError | None = None

    def raise_for_capacity(self) -> None:
        """Raise if the decision was not ``allowed``.

        Raises:
            ThresholdExceededError: The queue is at or above the threshold.
            RefreshError: The running count could not be determined.
        """
        if self.allowed:
            return
        if self.error is not None:
            raise self.error
        raise ThresholdExceededError(self.running or 0, self.threshold)

    def describe(self) -> str:
        if self.reason is GateReason.REFRESH_FAILED:
            return f"running jobs unknown ({self.error})"
        return f"{self.running} running, threshold {self.threshold}"


def has_capacity(running: int, threshold: int) -> bool:
    """Admission rule: a job may start iff fewer than ``threshold`` are running."""
    return running < threshold


class AdmissionGate:
    """Checks running-job count against the concurrency threshold."""

    def __init__(self, snapshot: RunningJobSnapshot, threshold: int) -> None:
        if threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {threshold}")
        self._snapshot = snapshot
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    async def check_capacity(self) -> GateDecision:
        """Decide whether a submission may proceed now."""
        try:
            running = await self._snapshot.running_count()
        except RefreshError as e:
            return GateDecision(
                allowed=False,
                reason=GateReason.REFRESH_FAILED,
                threshold=self._threshold,
                error=e,
            )

        if has_capacity(running, self._threshold):
            return GateDecision(
                allowed=True,
                reason=GateReason.UNDER_THRESHOLD,
                threshold=self._threshold,
                running=running,
            )

        _logger.debug("gate.threshold_exceeded", running=running, threshold=self._threshold)
        return GateDecision(
            allowed=False,
            reason=GateReason.THRESHOLD_EXCEEDED,
            threshold=self._threshold,
            running=running,
        )


__all__ = ["AdmissionGate", "GateDecision", "GateReason", "has_capacity"]
