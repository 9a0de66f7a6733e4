"""Warehouse backends the loader submits load jobs to."""

from bqloader.backends.base import JobHandle, WarehouseBackend
from bqloader.backends.bigquery import BigQueryBackend

__all__ = ["BigQueryBackend", "JobHandle", "WarehouseBackend"]
