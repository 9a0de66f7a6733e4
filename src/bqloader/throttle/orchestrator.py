"""Job submission orchestrator: the gate + backoff loop for one load job.

Each call to ``submit()`` repeatedly asks the admission gate for a free
slot, sleeping on an exponential backoff between refusals, and submits
the load job as soon as the gate allows it.  The call always returns a
``SubmissionOutcome``; failures are classified, never raised:

- ``SUBMITTED``: BigQuery accepted the load job.
- ``BACKEND_REJECTED``: the job-creation call itself failed.  Returned
  immediately since it says nothing about capacity.
- ``BACKOFF_EXHAUSTED``: every backoff wait passed without a free slot.
- ``INTERRUPTED``: a backoff wait was interrupted (e.g. shutdown).

Only ``SUBMITTED`` is a success; the router sends everything else back
through the stream for another cycle.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from bqloader.backends.base import JobHandle, WarehouseBackend
from bqloader.core.errors import (
    BackendError,
    BackoffExhaustedError,
    BackoffInterruptedError,
    LoaderError,
    RefreshError,
    ThresholdExceededError,
)
from bqloader.core.logging import get_logger
from bqloader.core.models import TableDestination
from bqloader.metrics import LoaderMetrics
from bqloader.throttle.backoff import BackoffPolicy
from bqloader.throttle.gate import AdmissionGate

_logger = get_logger("throttle.orchestrator")


class OutcomeKind(str, Enum):
    SUBMITTED = "submitted"
    BACKEND_REJECTED = "backend_rejected"
    BACKOFF_EXHAUSTED = "backoff_exhausted"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class SubmissionOutcome:
    """Terminal result of one ``submit()`` call.

    Attributes:
        kind: Which of the four outcomes this is.
        job: The created job (``SUBMITTED`` only).
        latency_ms: First capacity check to submission (``SUBMITTED`` only).
        cause: The error behind a non-success outcome.
        backoff_waits: Backoff waits drawn before the outcome.
    """

    kind: OutcomeKind
    job: JobHandle | None = None
    latency_ms: float | None = None
    cause: LoaderError | None = None
    backoff_waits: int = 0

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUBMITTED

    @classmethod
    def submitted(cls, job: JobHandle, latency_ms: float, backoff_waits: int) -> SubmissionOutcome:
        return cls(OutcomeKind.SUBMITTED, job=job, latency_ms=latency_ms, backoff_waits=backoff_waits)

    @classmethod
    def backend_rejected(cls, cause: BackendError, backoff_waits: int) -> SubmissionOutcome:
        return cls(OutcomeKind.BACKEND_REJECTED, cause=cause, backoff_waits=backoff_waits)

    @classmethod
    def backoff_exhausted(cls, cause: BackoffExhaustedError, backoff_waits: int) -> SubmissionOutcome:
        return cls(OutcomeKind.BACKOFF_EXHAUSTED, cause=cause, backoff_waits=backoff_waits)

    @classmethod
    def interrupted(cls, cause: BackoffInterruptedError, backoff_waits: int) -> SubmissionOutcome:
        return cls(OutcomeKind.INTERRUPTED, cause=cause, backoff_waits=backoff_waits)


class Sleeper(Protocol):
    """Waits out one backoff delay.

    Implementations raise ``BackoffInterruptedError`` if the wait did not
    complete normally.
    """

    async def sleep(self, seconds: float) -> None: ...


class InterruptibleSleeper:
    """Asyncio sleeper that an ``asyncio.Event`` can cut short.

    Setting the event ends every in-progress and future wait with
    ``BackoffInterruptedError``; workers then classify their request as
    ``INTERRUPTED`` instead of blocking shutdown for a full backoff.
    """

    def __init__(self, interrupt: asyncio.Event | None = None) -> None:
        self._interrupt = interrupt or asyncio.Event()

    @property
    def interrupt(self) -> asyncio.Event:
        return self._interrupt

    async def sleep(self, seconds: float) -> None:
        if self._interrupt.is_set():
            raise BackoffInterruptedError("Backoff interrupted before waiting")
        try:
            await asyncio.wait_for(self._interrupt.wait(), timeout=seconds)
        except TimeoutError:
            return
        raise BackoffInterruptedError(f"Backoff interrupted during a {seconds:.2f}s wait")


class JobSubmissionOrchestrator:
    """Drives the admission gate and backoff loop to submit one load job."""

    def __init__(
        self,
        backend: WarehouseBackend,
        gate: AdmissionGate,
        policy: BackoffPolicy,
        sleeper: Sleeper | None = None,
        metrics: LoaderMetrics | None = None,
    ) -> None:
        self._backend = backend
        self._gate = gate
        self._policy = policy
        self._sleeper = sleeper or InterruptibleSleeper()
        self._metrics = metrics

    async def submit(self, destination: TableDestination, source_uri: str) -> SubmissionOutcome:
        """Submit a load of ``source_uri`` into ``destination`` once capacity allows."""
        started = time.monotonic()
        backoff = self._policy.sequence()

        while True:
            decision = await self._gate.check_capacity()
            if decision.allowed:
                try:
                    job = await self._backend.create_load_job(destination, source_uri)
                except BackendError as e:
                    _logger.warning(
                        "orchestrator.backend_rejected",
                        destination=str(destination),
                        error=str(e),
                    )
                    return SubmissionOutcome.backend_rejected(e, backoff.attempts)

                latency_ms = (time.monotonic() - started) * 1000.0
                if self._metrics is not None:
                    self._metrics.observe_latency(latency_ms)
                _logger.info(
                    "orchestrator.submitted",
                    job_id=job.job_id,
                    destination=str(destination),
                    latency_ms=round(latency_ms, 1),
                    backoff_waits=backoff.attempts,
                )
                return SubmissionOutcome.submitted(job, latency_ms, backoff.attempts)

            delay = backoff.next()
            if delay is None:
                cause = BackoffExhaustedError(
                    f"No free load job slot after {backoff.attempts} backoff waits: "
                    f"{decision.describe()}"
                )
                # Chain the last refusal (threshold exceeded or listing failed)
                try:
                    decision.raise_for_capacity()
                except (ThresholdExceededError, RefreshError) as refusal:
                    cause.__cause__ = refusal
                _logger.info(
                    "orchestrator.backoff_exhausted",
                    destination=str(destination),
                    backoff_waits=backoff.attempts,
                    reason=decision.reason.value,
                )
                return SubmissionOutcome.backoff_exhausted(cause, backoff.attempts)

            _logger.debug(
                "orchestrator.backoff",
                destination=str(destination),
                delay_seconds=round(delay, 3),
                attempt=backoff.attempts,
                reason=decision.reason.value,
            )
            try:
                await self._sleeper.sleep(delay)
            except BackoffInterruptedError as e:
                _logger.info(
                    "orchestrator.backoff_interrupted",
                    destination=str(destination),
                    error=str(e),
                )
                return SubmissionOutcome.interrupted(e, backoff.attempts)


__all__ = [
    "InterruptibleSleeper",
    "JobSubmissionOrchestrator",
    "OutcomeKind",
    "Sleeper",
    "SubmissionOutcome",
]
