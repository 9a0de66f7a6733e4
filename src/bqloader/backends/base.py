"""Abstract base for warehouse backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from bqloader.core.models import TableDestination


@dataclass(frozen=True)
class JobHandle:
    """A job as reported by the warehouse.

    Equality and hashing use ``job_id`` only, so the same job listed twice
    (e.g. across pages) is counted once.
    """

    job_id: str
    """Fully qualified job id (``project:location.job_id``)."""

    created_at: int | None = field(default=None, compare=False)
    """Creation time in epoch milliseconds, when the backend reports it."""

    state: str = field(default="RUNNING", compare=False)


class WarehouseBackend(ABC):
    """Abstract base class for the warehouse the loader submits jobs to.

    Implementations must not apply their own retry loop to
    ``create_load_job``; rejection is classified by the orchestrator.
    """

    @abstractmethod
    async def list_running_jobs(self) -> list[JobHandle]:
        """List every job currently in the running state, for all users.

        The listing must be fully drained before returning.

        Raises:
            RefreshError: If the listing could not be completed.
        """
        ...

    @abstractmethod
    async def create_load_job(
        self,
        destination: TableDestination,
        source_uri: str,
    ) -> JobHandle:
        """Start a load job appending ``source_uri`` into ``destination``.

        Raises:
            BackendError: If the warehouse rejected the request.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""
        ...
