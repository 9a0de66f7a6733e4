"""Loader service: wires the admission controller to a message source.

Builds the shared running-jobs snapshot, gate, backoff policy,
orchestrator, tracker and router from a ``LoaderConfig`` and runs
``config.workers`` asyncio workers that pull messages from an inbound
source, route them, and acknowledge them.

Workers share one snapshot (so one listing serves every worker per TTL
window) but nothing else: a worker sleeping through backoff never blocks
the others.

Shutdown is cooperative.  ``stop()`` sets the interrupt event, which ends
every backoff wait with an ``INTERRUPTED`` outcome, so in-flight requests
are still routed (to the retry channel) before the workers exit.  A
message whose routing raised is left unacknowledged for the transport to
redeliver.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from bqloader.backends.base import WarehouseBackend
from bqloader.backends.bigquery import BigQueryBackend
from bqloader.core.config import LoaderConfig
from bqloader.core.logging import get_logger
from bqloader.metrics import LoaderMetrics
from bqloader.routing.channels import InboundSource, JsonlFileChannel, OutputChannel
from bqloader.routing.router import RequestRouter, Route
from bqloader.routing.tracker import RetryCycleTracker
from bqloader.throttle.backoff import BackoffPolicy
from bqloader.throttle.gate import AdmissionGate
from bqloader.throttle.orchestrator import (
    InterruptibleSleeper,
    JobSubmissionOrchestrator,
    Sleeper,
)
from bqloader.throttle.snapshot import RunningJobSnapshot

_logger = get_logger("service")


@dataclass
class RouteCounts:
    """Messages routed per channel since the service started."""

    submitted: int = 0
    retry: int = 0
    dead_letter: int = 0
    failed: int = 0

    def record(self, route: Route) -> None:
        if route is Route.SUBMITTED:
            self.submitted += 1
        elif route is Route.RETRY:
            self.retry += 1
        else:
            self.dead_letter += 1

    @property
    def total(self) -> int:
        return self.submitted + self.retry + self.dead_letter


class LoaderService:
    """Runs concurrent routing workers over an inbound source."""

    def __init__(
        self,
        config: LoaderConfig,
        backend: WarehouseBackend,
        source: InboundSource,
        submitted: OutputChannel,
        retry: OutputChannel,
        dead_letter: OutputChannel,
        *,
        metrics: LoaderMetrics | None = None,
        sleeper: Sleeper | None = None,
    ) -> None:
        self._config = config
        self._source = source
        self.metrics = metrics or LoaderMetrics()
        self._interrupt = asyncio.Event()

        threshold = config.concurrent_load_jobs_threshold
        self.snapshot = RunningJobSnapshot(
            backend,
            max_size=threshold,
            ttl_seconds=config.cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.gate = AdmissionGate(self.snapshot, threshold)
        self.orchestrator = JobSubmissionOrchestrator(
            backend,
            self.gate,
            BackoffPolicy.from_config(config),
            sleeper=sleeper or InterruptibleSleeper(self._interrupt),
            metrics=self.metrics,
        )
        self.tracker = RetryCycleTracker(config.max_load_job_retry_cycles)
        self.router = RequestRouter(
            config.bq_project,
            self.tracker,
            self.orchestrator,
            submitted=submitted,
            retry=retry,
            dead_letter=dead_letter,
            metrics=self.metrics,
        )

        self.counts = RouteCounts()
        self._workers: list[asyncio.Task[None]] = []
        self._idle: set[asyncio.Task[None]] = set()
        self._stopping = False

    @classmethod
    def for_bigquery(
        cls,
        config: LoaderConfig,
        source: InboundSource,
        submitted: OutputChannel,
        retry: OutputChannel,
        dead_letter: OutputChannel | None = None,
    ) -> LoaderService:
        """Service against BigQuery, dead-lettering to ``config.dead_letter_path``."""
        return cls(
            config,
            BigQueryBackend(config.bq_project),
            source,
            submitted,
            retry,
            dead_letter or JsonlFileChannel("dead-letter", config.dead_letter_path),
        )

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._workers)

    # ─── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn the routing workers."""
        if self._workers:
            return
        self._stopping = False
        self._interrupt.clear()
        for index in range(self._config.workers):
            task = asyncio.create_task(self._worker(index), name=f"loader-worker-{index}")
            task.add_done_callback(
                lambda t: _logger.task_failure(t, "service.worker_died"),
            )
            self._workers.append(task)
        _logger.info(
            "service.started",
            workers=self._config.workers,
            threshold=self._config.concurrent_load_jobs_threshold,
        )

    async def wait(self) -> RouteCounts:
        """Block until every worker has exited (source drained or stopped)."""
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        return self.counts

    async def run_until_empty(self) -> RouteCounts:
        """Route every message of a finite source, then return the counts."""
        await self.start()
        counts = await self.wait()
        self._workers.clear()
        _logger.info(
            "service.drained",
            submitted=counts.submitted,
            retry=counts.retry,
            dead_letter=counts.dead_letter,
            failed=counts.failed,
        )
        return counts

    async def stop(self, timeout: float = 30.0) -> None:
        """Interrupt backoff waits, let in-flight messages route, then exit.

        Workers idle in ``receive()`` are cancelled at once; busy workers
        get up to ``timeout`` seconds before being cancelled.
        """
        self._stopping = True
        self._interrupt.set()
        for task in list(self._idle):
            task.cancel(msg="loader stopping")

        pending_workers = [t for t in self._workers if not t.done()]
        if pending_workers:
            _, pending = await asyncio.wait(pending_workers, timeout=timeout)
            for task in pending:
                task.cancel(msg="loader stop timeout exceeded")
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        _logger.info("service.stopped", routed=self.counts.total)

    # ─── Worker ────────────────────────────────────────────────────

    async def _worker(self, index: int) -> None:
        current = asyncio.current_task()
        assert current is not None
        while not self._stopping:
            self._idle.add(current)
            try:
                message = await self._source.receive()
            finally:
                self._idle.discard(current)
            if message is None:
                return

            try:
                result = await self.router.route(message)
            except Exception:
                self.counts.failed += 1
                _logger.exception("service.route_failed", worker=index)
                continue
            await self._source.ack(message)
            self.counts.record(result.route)


__all__ = ["LoaderService", "RouteCounts"]
