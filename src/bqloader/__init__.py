"""Concurrency-throttled BigQuery load job submission."""

__version__ = "0.1.0"
