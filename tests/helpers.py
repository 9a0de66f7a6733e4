"""Shared test helpers for bqloader tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from bqloader.backends.base import JobHandle, WarehouseBackend
from bqloader.core.errors import BackoffInterruptedError
from bqloader.core.models import StreamMessage, TableDestination


class FakeWarehouseBackend(WarehouseBackend):
    """In-memory warehouse with scriptable running jobs and failures.

    ``running`` is the number of jobs reported as running.  Every created
    job is added to the running set unless ``created_jobs_run`` is False.
    """

    def __init__(
        self,
        running: int = 0,
        *,
        list_error: Exception | None = None,
        create_error: Exception | None = None,
        list_delay: float = 0.0,
        created_jobs_run: bool = False,
    ) -> None:
        self.running_jobs = [JobHandle(job_id=f"fake:US.running-{i}") for i in range(running)]
        self.list_error = list_error
        self.create_error = create_error
        self.list_delay = list_delay
        self.created_jobs_run = created_jobs_run
        self.list_calls = 0
        self.created: list[tuple[TableDestination, str]] = []

    @property
    def name(self) -> str:
        return "fake"

    def set_running(self, count: int) -> None:
        self.running_jobs = [JobHandle(job_id=f"fake:US.running-{i}") for i in range(count)]

    async def list_running_jobs(self) -> list[JobHandle]:
        self.list_calls += 1
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_error is not None:
            raise self.list_error
        return list(self.running_jobs)

    async def create_load_job(self, destination: TableDestination, source_uri: str) -> JobHandle:
        if self.create_error is not None:
            raise self.create_error
        self.created.append((destination, source_uri))
        handle = JobHandle(
            job_id=f"fake:US.load-{len(self.created)}",
            created_at=1_700_000_000_000 + len(self.created),
        )
        if self.created_jobs_run:
            self.running_jobs.append(handle)
        return handle


class RecordingSleeper:
    """Sleeper that records requested delays without waiting.

    With ``interrupt_after`` set, the sleep call at that index raises
    ``BackoffInterruptedError`` instead of returning.
    """

    def __init__(self, interrupt_after: int | None = None) -> None:
        self.delays: list[float] = []
        self.interrupt_after = interrupt_after

    async def sleep(self, seconds: float) -> None:
        if self.interrupt_after is not None and len(self.delays) >= self.interrupt_after:
            raise BackoffInterruptedError("interrupted by test")
        self.delays.append(seconds)
        await asyncio.sleep(0)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def request_payload(
    dataset: str = "analytics",
    table: str = "events",
    prefix: str = "gs://bucket/bundles/2024-01-01/*.avro",
    attempts: int | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Wire-format load request as a dict."""
    payload: dict[str, Any] = {
        "loadRequestPayload": {
            "bundlePrefixPath": prefix,
            "bundleDataset": dataset,
            "bundleTable": table,
        },
        **extra,
    }
    if attempts is not None:
        payload["loadRequestAttributes"] = {"loadJobSubmissionAttempts": attempts}
    return payload


def request_message(attempts: int | None = None, **kwargs: Any) -> StreamMessage:
    """Inbound StreamMessage carrying a load request."""
    return StreamMessage(
        data=json.dumps(request_payload(attempts=attempts, **kwargs)).encode("utf-8"),
        attributes={"uniqueMessageId": "inbound-1"},
    )

