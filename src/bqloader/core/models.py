"""Wire models for load requests and the envelopes the loader emits.

JSON field names follow the producers' camelCase format; Python code uses
the snake_case attribute names.  Unknown fields sent by a producer are
kept so a request re-queued for retry or dead-lettered loses nothing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bqloader.core.errors import MalformedRequestError

# Attribute carrying the per-message dedup token on every emitted message
UNIQUE_MESSAGE_ID = "uniqueMessageId"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class LoadRequestPayload(_WireModel):
    """Where to load from and into."""

    bundle_prefix_path: str = Field(
        alias="bundlePrefixPath",
        min_length=1,
        description="Source data location (gs:// URI, wildcards allowed)",
    )
    bundle_dataset: str = Field(alias="bundleDataset", min_length=1)
    bundle_table: str = Field(alias="bundleTable", min_length=1)


class RetryAttributes(_WireModel):
    """Retry bookkeeping carried inside the request envelope."""

    load_job_submission_attempts: int | None = Field(
        default=None,
        alias="loadJobSubmissionAttempts",
        ge=0,
        description="Retry cycles consumed so far. Absent means never attempted.",
    )

    @property
    def attempts(self) -> int:
        return self.load_job_submission_attempts or 0


class LoadRequest(_WireModel):
    """One unit of work: a bundle to load into one destination table."""

    load_request_payload: LoadRequestPayload = Field(alias="loadRequestPayload")
    load_request_attributes: RetryAttributes = Field(
        default_factory=RetryAttributes,
        alias="loadRequestAttributes",
    )

    @property
    def submission_attempts(self) -> int:
        return self.load_request_attributes.attempts

    @property
    def source_uri(self) -> str:
        return self.load_request_payload.bundle_prefix_path

    def with_attempts(self, attempts: int) -> LoadRequest:
        """Return a copy with the retry counter set to ``attempts``."""
        attributes = self.load_request_attributes.model_copy(
            update={"load_job_submission_attempts": attempts},
        )
        return self.model_copy(update={"load_request_attributes": attributes})

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_bytes(cls, data: bytes) -> LoadRequest:
        """Decode a message payload.

        Raises:
            MalformedRequestError: If the payload is not a valid load request.
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise MalformedRequestError(str(e)) from e


class LoaderEnvelopeAttributes(_WireModel):
    job_id: str = Field(alias="jobId")
    job_created_timestamp: int | None = Field(
        default=None,
        alias="jobCreatedTimestamp",
        description="Job creation time in epoch milliseconds",
    )


class LoaderEnvelope(_WireModel):
    """Emitted once a load job has been submitted, for downstream monitoring."""

    load_request: LoadRequest = Field(alias="loadRequest")
    loader_envelope_attributes: LoaderEnvelopeAttributes = Field(
        alias="loaderEnvelopeAttributes",
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class TableDestination:
    """Fully qualified destination table."""

    project: str
    dataset: str
    table: str

    @classmethod
    def for_request(cls, project: str, request: LoadRequest) -> TableDestination:
        payload = request.load_request_payload
        return cls(project=project, dataset=payload.bundle_dataset, table=payload.bundle_table)

    def __str__(self) -> str:
        return f"{self.project}.{self.dataset}.{self.table}"


@dataclass
class StreamMessage:
    """Transport record: opaque payload plus string attributes."""

    data: bytes
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def message_id(self) -> str | None:
        return self.attributes.get(UNIQUE_MESSAGE_ID)

    @classmethod
    def outgoing(cls, payload: str | bytes, **attributes: str) -> StreamMessage:
        """Build an outgoing message tagged with a fresh dedup token."""
        return cls(
            data=payload.encode("utf-8") if isinstance(payload, str) else payload,
            attributes={**attributes, UNIQUE_MESSAGE_ID: str(uuid.uuid4())},
        )


__all__ = [
    "LoadRequest",
    "LoadRequestPayload",
    "LoaderEnvelope",
    "LoaderEnvelopeAttributes",
    "RetryAttributes",
    "StreamMessage",
    "TableDestination",
    "UNIQUE_MESSAGE_ID",
]
