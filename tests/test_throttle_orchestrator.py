"""Tests for bqloader.throttle.orchestrator module."""

from __future__ import annotations

import asyncio

import pytest

from bqloader.core.errors import (
    BackendError,
    BackoffExhaustedError,
    BackoffInterruptedError,
    RefreshError,
    ThresholdExceededError,
)
from bqloader.core.models import TableDestination
from bqloader.metrics import LoaderMetrics
from bqloader.throttle.backoff import BackoffPolicy
from bqloader.throttle.gate import AdmissionGate
from bqloader.throttle.orchestrator import (
    InterruptibleSleeper,
    JobSubmissionOrchestrator,
    OutcomeKind,
)
from bqloader.throttle.snapshot import RunningJobSnapshot
from tests.helpers import FakeWarehouseBackend, RecordingSleeper

DESTINATION = TableDestination("proj", "analytics", "events")
SOURCE = "gs://bucket/bundle/*.avro"


def _orchestrator(
    backend: FakeWarehouseBackend,
    threshold: int = 3,
    max_retries: int = 3,
    sleeper=None,
    metrics=None,
) -> JobSubmissionOrchestrator:
    snapshot = RunningJobSnapshot(backend, max_size=threshold, ttl_seconds=0)
    return JobSubmissionOrchestrator(
        backend,
        AdmissionGate(snapshot, threshold),
        BackoffPolicy(initial_delay=1.0, exponent=2.0, max_retries=max_retries),
        sleeper=sleeper or RecordingSleeper(),
        metrics=metrics,
    )


class TestSubmitted:
    @pytest.mark.asyncio
    async def test_immediate_submission(self):
        backend = FakeWarehouseBackend(running=0)
        sleeper = RecordingSleeper()
        metrics = LoaderMetrics()
        outcome = await _orchestrator(backend, sleeper=sleeper, metrics=metrics).submit(
            DESTINATION, SOURCE,
        )

        assert outcome.kind is OutcomeKind.SUBMITTED
        assert outcome.is_success
        assert outcome.job is not None
        assert outcome.latency_ms is not None and outcome.latency_ms >= 0
        assert outcome.backoff_waits == 0
        assert sleeper.delays == []
        assert backend.created == [(DESTINATION, SOURCE)]
        assert metrics.snapshot()["latency_count"] == 1.0

    @pytest.mark.asyncio
    async def test_submits_once_capacity_frees(self):
        backend = FakeWarehouseBackend(running=3)

        class FreeingSleeper(RecordingSleeper):
            async def sleep(self, seconds: float) -> None:
                await super().sleep(seconds)
                if len(self.delays) == 2:
                    backend.set_running(1)

        sleeper = FreeingSleeper()
        outcome = await _orchestrator(backend, sleeper=sleeper).submit(DESTINATION, SOURCE)

        assert outcome.kind is OutcomeKind.SUBMITTED
        assert outcome.backoff_waits == 2
        assert sleeper.delays == [1.0, 2.0]


class TestFailures:
    @pytest.mark.asyncio
    async def test_backoff_exhausted(self):
        backend = FakeWarehouseBackend(running=5)
        sleeper = RecordingSleeper()
        outcome = await _orchestrator(backend, max_retries=3, sleeper=sleeper).submit(
            DESTINATION, SOURCE,
        )

        assert outcome.kind is OutcomeKind.BACKOFF_EXHAUSTED
        assert isinstance(outcome.cause, BackoffExhaustedError)
        assert sleeper.delays == [1.0, 2.0, 4.0]
        assert outcome.backoff_waits == 3
        # one capacity check per wait plus the final one
        assert backend.list_calls == 4
        assert backend.created == []

    @pytest.mark.asyncio
    async def test_refresh_failure_backs_off(self):
        backend = FakeWarehouseBackend(list_error=RefreshError("down"))
        outcome = await _orchestrator(backend, max_retries=2).submit(DESTINATION, SOURCE)
        assert outcome.kind is OutcomeKind.BACKOFF_EXHAUSTED
        assert "unknown" in str(outcome.cause)
        assert backend.created == []

    @pytest.mark.asyncio
    async def test_exhaustion_chains_threshold_refusal(self):
        backend = FakeWarehouseBackend(running=5)
        outcome = await _orchestrator(backend, max_retries=1).submit(DESTINATION, SOURCE)

        refusal = outcome.cause.__cause__
        assert isinstance(refusal, ThresholdExceededError)
        assert refusal.threshold == 3
        assert refusal.running >= 3

    @pytest.mark.asyncio
    async def test_exhaustion_chains_listing_failure(self):
        listing_error = RefreshError("down")
        backend = FakeWarehouseBackend(list_error=listing_error)
        outcome = await _orchestrator(backend, max_retries=1).submit(DESTINATION, SOURCE)

        assert isinstance(outcome.cause, BackoffExhaustedError)
        assert isinstance(outcome.cause.__cause__, RefreshError)
        assert "down" in str(outcome.cause.__cause__)

    @pytest.mark.asyncio
    async def test_backend_rejected_without_backoff(self):
        backend = FakeWarehouseBackend(running=0, create_error=BackendError("bad schema"))
        sleeper = RecordingSleeper()
        outcome = await _orchestrator(backend, sleeper=sleeper).submit(DESTINATION, SOURCE)

        assert outcome.kind is OutcomeKind.BACKEND_REJECTED
        assert isinstance(outcome.cause, BackendError)
        assert not outcome.is_success
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_interrupted(self):
        backend = FakeWarehouseBackend(running=5)
        sleeper = RecordingSleeper(interrupt_after=1)
        outcome = await _orchestrator(backend, sleeper=sleeper).submit(DESTINATION, SOURCE)

        assert outcome.kind is OutcomeKind.INTERRUPTED
        assert isinstance(outcome.cause, BackoffInterruptedError)
        assert outcome.backoff_waits == 2


class TestInterruptibleSleeper:
    @pytest.mark.asyncio
    async def test_completes_normally(self):
        await InterruptibleSleeper().sleep(0.01)

    @pytest.mark.asyncio
    async def test_interrupt_during_wait(self):
        sleeper = InterruptibleSleeper()
        task = asyncio.create_task(sleeper.sleep(30))
        await asyncio.sleep(0.01)
        sleeper.interrupt.set()
        with pytest.raises(BackoffInterruptedError):
            await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_already_interrupted(self):
        event = asyncio.Event()
        event.set()
        with pytest.raises(BackoffInterruptedError):
            await InterruptibleSleeper(event).sleep(30)

    @pytest.mark.asyncio
    async def test_interrupt_ends_orchestrator_wait(self):
        event = asyncio.Event()
        backend = FakeWarehouseBackend(running=5)
        orchestrator = _orchestrator(backend, sleeper=InterruptibleSleeper(event))

        task = asyncio.create_task(orchestrator.submit(DESTINATION, SOURCE))
        await asyncio.sleep(0.01)
        event.set()
        outcome = await asyncio.wait_for(task, timeout=1)
        assert outcome.kind is OutcomeKind.INTERRUPTED
