"""Running-jobs snapshot: a TTL-bounded view of BigQuery concurrency.

Listing running jobs is comparatively slow and counts against API quota,
so every worker shares one cached listing that is refetched once it is
older than the configured TTL.

The snapshot is a single slot, not a keyed cache: the loader only tracks
one global pool of running jobs.  Refreshes are single-flight.  When the
slot is stale, the first caller starts a refresh task and every caller
arriving while it runs awaits that same task, so a burst of workers
hitting an expired snapshot issues one listing call, not one per worker.

Staleness is bounded by the TTL in both directions: jobs that started or
finished since the last listing are invisible until the next refresh.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from bqloader.backends.base import JobHandle, WarehouseBackend
from bqloader.core.errors import RefreshError
from bqloader.core.logging import get_logger
from bqloader.metrics import LoaderMetrics

_logger = get_logger("throttle.snapshot")


class RunningJobSnapshot:
    """Shared, single-flight cache of the jobs currently running.

    Args:
        backend: Warehouse to list running jobs from.
        max_size: Maximum number of job handles kept (the concurrency
            threshold; holding more cannot change an admission decision).
        ttl_seconds: Age after which the listing is refetched. ``0``
            refetches on every call, still single-flight.
        metrics: Optional metrics sink for refresh counters.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        backend: WarehouseBackend,
        max_size: int,
        ttl_seconds: float,
        metrics: LoaderMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 0:
            raise ValueError(f"max_size must be >= 0, got {max_size}")
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")
        self._backend = backend
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._metrics = metrics
        self._clock = clock

        self._jobs: frozenset[JobHandle] = frozenset()
        self._observed_count = 0
        self._refreshed_at: float | None = None
        self._generation = 0
        self._inflight: asyncio.Task[frozenset[JobHandle]] | None = None

    # ─── Introspection ─────────────────────────────────────────────

    @property
    def generation(self) -> int:
        """Number of successful refreshes so far."""
        return self._generation

    @property
    def observed_count(self) -> int:
        """Running jobs seen by the last listing, before the size bound."""
        return self._observed_count

    @property
    def is_fresh(self) -> bool:
        if self._refreshed_at is None:
            return False
        return (self._clock() - self._refreshed_at) < self._ttl

    @property
    def refresh_in_flight(self) -> bool:
        return self._inflight is not None

    def invalidate(self) -> None:
        """Mark the snapshot stale so the next lookup refetches it."""
        self._refreshed_at = None

    # ─── Lookup ────────────────────────────────────────────────────

    async def get_running_jobs(self) -> frozenset[JobHandle]:
        """Return the running jobs, refreshing the listing if it is stale.

        Raises:
            RefreshError: If the listing this caller waited on failed.
        """
        # No await between the freshness check and publishing the
        # in-flight task, so concurrent callers cannot both start one.
        if self.is_fresh:
            return self._jobs
        task = self._inflight
        if task is None:
            task = asyncio.create_task(
                self._refresh(), name=f"snapshot-refresh-{self._generation + 1}",
            )
            task.add_done_callback(
                lambda t: _logger.task_failure(t, "snapshot.refresh_task_failed", level="debug"),
            )
            self._inflight = task
        # A cancelled waiter must not cancel the refresh other waiters share
        return await asyncio.shield(task)

    async def running_count(self) -> int:
        """Size of the running-jobs set (bounded by ``max_size``)."""
        return len(await self.get_running_jobs())

    async def _refresh(self) -> frozenset[JobHandle]:
        try:
            handles = await self._backend.list_running_jobs()
        except Exception as e:
            if self._metrics is not None:
                self._metrics.inc("snapshot_refresh_failures")
            _logger.warning("snapshot.refresh_failed", backend=self._backend.name, error=str(e))
            if isinstance(e, RefreshError):
                raise
            raise RefreshError(f"Listing running jobs failed: {e}") from e
        finally:
            self._inflight = None

        unique = list(dict.fromkeys(handles))
        self._jobs = frozenset(unique[: self._max_size])
        self._observed_count = len(unique)
        self._refreshed_at = self._clock()
        self._generation += 1
        if self._metrics is not None:
            self._metrics.inc("snapshot_refreshes")
        _logger.debug(
            "snapshot.refreshed",
            running=self._observed_count,
            kept=len(self._jobs),
            generation=self._generation,
        )
        return self._jobs


__all__ = ["RunningJobSnapshot"]
