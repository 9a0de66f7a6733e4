"""BigQuery backend.

Lists running jobs across all users of the project and submits Avro load
jobs through ``google-cloud-bigquery``.  The client library is blocking,
so every call runs in the event loop's default executor.
"""

from __future__ import annotations

import asyncio
import functools
from datetime import datetime
from typing import Any

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import bigquery

from bqloader.backends.base import JobHandle, WarehouseBackend
from bqloader.core.errors import BackendError, RefreshError
from bqloader.core.logging import get_logger
from bqloader.core.models import TableDestination

_logger = get_logger("backends.bigquery")

# Failed client calls, including credential errors from building the client
_CLIENT_ERRORS = (
    api_exceptions.GoogleAPIError,
    auth_exceptions.GoogleAuthError,
    OSError,
    ValueError,
)


def load_job_config() -> bigquery.LoadJobConfig:
    """The fixed configuration every load job is submitted with.

    Append-only writes of Avro bundles, honouring Avro logical types, and
    letting the destination schema gain columns or relax REQUIRED columns
    to NULLABLE as bundles evolve.
    """
    return bigquery.LoadJobConfig(
        source_format=bigquery.SourceFormat.AVRO,
        use_avro_logical_types=True,
        write_disposition=bigquery.WriteDisposition.WRITE_APPEND,
        schema_update_options=[
            bigquery.SchemaUpdateOption.ALLOW_FIELD_ADDITION,
            bigquery.SchemaUpdateOption.ALLOW_FIELD_RELAXATION,
        ],
    )


def _to_epoch_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _job_handle(job: Any) -> JobHandle:
    """Build a JobHandle from a google.cloud.bigquery job object."""
    location = job.location or ""
    qualified = f"{job.project}:{location}.{job.job_id}" if location else f"{job.project}:{job.job_id}"
    return JobHandle(
        job_id=qualified,
        created_at=_to_epoch_ms(job.created),
        state=job.state or "UNKNOWN",
    )


class BigQueryBackend(WarehouseBackend):
    """WarehouseBackend backed by the BigQuery jobs API."""

    def __init__(
        self,
        project: str,
        client: bigquery.Client | None = None,
    ) -> None:
        self._project = project
        self._client = client

    @property
    def name(self) -> str:
        return f"bigquery:{self._project}"

    @property
    def client(self) -> bigquery.Client:
        # Created lazily so constructing the backend never needs credentials
        if self._client is None:
            self._client = bigquery.Client(project=self._project)
        return self._client

    async def _run(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _drain_running_jobs(self) -> list[JobHandle]:
        jobs = self.client.list_jobs(
            project=self._project,
            all_users=True,
            state_filter="running",
        )
        return [_job_handle(job) for job in jobs]

    async def list_running_jobs(self) -> list[JobHandle]:
        try:
            handles = await self._run(self._drain_running_jobs)
        except _CLIENT_ERRORS as e:
            raise RefreshError(f"Listing running jobs failed: {e}") from e
        _logger.debug("bigquery.jobs_listed", project=self._project, running=len(handles))
        return handles

    async def create_load_job(
        self,
        destination: TableDestination,
        source_uri: str,
    ) -> JobHandle:
        table_ref = bigquery.TableReference(
            bigquery.DatasetReference(destination.project, destination.dataset),
            destination.table,
        )
        try:
            job = await self._run(
                self.client.load_table_from_uri,
                source_uri,
                table_ref,
                job_config=load_job_config(),
            )
        except _CLIENT_ERRORS as e:
            raise BackendError(f"Load job creation for {destination} failed: {e}") from e
        handle = _job_handle(job)
        _logger.info(
            "bigquery.load_job_created",
            job_id=handle.job_id,
            destination=str(destination),
            source_uri=source_uri,
        )
        return handle


__all__ = ["BigQueryBackend", "load_job_config"]
