"""Request router: sends every inbound request to exactly one channel.

Per message the router walks ``RECEIVED → ELIGIBILITY_CHECK → SUBMITTING
→ ROUTED``:

1. Decode the payload.  Undecodable payloads are dead-lettered as-is.
2. Ask the retry-cycle tracker whether the request may be attempted.
   Expired requests are dead-lettered before any BigQuery call, so a
   request at the ceiling never consumes a submission attempt.
3. Submit through the orchestrator and route on the outcome:
   ``SUBMITTED`` goes to the submitted channel wrapped in a
   ``LoaderEnvelope``; anything else goes to the retry channel with its
   retry-cycle counter incremented.

Every emitted message carries a fresh ``uniqueMessageId``.  Nothing is
dropped: each call publishes exactly one message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bqloader.core.errors import MalformedRequestError
from bqloader.core.logging import RequestContext, get_logger, with_context
from bqloader.core.models import (
    LoaderEnvelope,
    LoaderEnvelopeAttributes,
    LoadRequest,
    StreamMessage,
    TableDestination,
)
from bqloader.metrics import LoaderMetrics
from bqloader.routing.channels import OutputChannel
from bqloader.routing.tracker import Eligibility, RetryCycleTracker
from bqloader.throttle.orchestrator import (
    JobSubmissionOrchestrator,
    OutcomeKind,
    SubmissionOutcome,
)

_logger = get_logger("routing.router")

# Attribute naming why a message was dead-lettered
DEAD_LETTER_REASON = "deadLetterReason"

# Counter bumped for each non-success outcome, alongside the retry counter
_RETRY_COUNTERS: dict[OutcomeKind, str] = {
    OutcomeKind.BACKEND_REJECTED: "bigquery_exception",
    OutcomeKind.BACKOFF_EXHAUSTED: "backoff_exhausted",
    OutcomeKind.INTERRUPTED: "backoff_interrupted",
}


class Route(str, Enum):
    SUBMITTED = "submitted"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


class RouteState(str, Enum):
    RECEIVED = "received"
    ELIGIBILITY_CHECK = "eligibility_check"
    SUBMITTING = "submitting"
    ROUTED = "routed"


@dataclass
class RoutingResult:
    """What the router did with one inbound message."""

    route: Route
    emitted: StreamMessage
    request: LoadRequest | None = None
    outcome: SubmissionOutcome | None = None
    states: list[RouteState] = field(default_factory=list)


class RequestRouter:
    """Routes load requests to the submitted, retry or dead-letter channel."""

    def __init__(
        self,
        project: str,
        tracker: RetryCycleTracker,
        orchestrator: JobSubmissionOrchestrator,
        submitted: OutputChannel,
        retry: OutputChannel,
        dead_letter: OutputChannel,
        metrics: LoaderMetrics | None = None,
    ) -> None:
        self._project = project
        self._tracker = tracker
        self._orchestrator = orchestrator
        self._channels = {
            Route.SUBMITTED: submitted,
            Route.RETRY: retry,
            Route.DEAD_LETTER: dead_letter,
        }
        self._metrics = metrics

    def _inc(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.inc(name)

    async def route(self, message: StreamMessage) -> RoutingResult:
        """Route one inbound message and return what was emitted."""
        ctx = RequestContext(message_id=message.message_id or "-")
        with with_context(ctx):
            states = [RouteState.RECEIVED]
            try:
                request = LoadRequest.from_bytes(message.data)
            except MalformedRequestError as e:
                _logger.warning("router.malformed", error=str(e))
                self._inc("malformed")
                emitted = StreamMessage.outgoing(
                    message.data, **{**message.attributes, DEAD_LETTER_REASON: "malformed"},
                )
                return await self._emit(Route.DEAD_LETTER, emitted, states)

            destination = TableDestination.for_request(self._project, request)
            with with_context(ctx.with_destination(str(destination), request.submission_attempts)):
                return await self._route_request(message, request, destination, states)

    async def _route_request(
        self,
        message: StreamMessage,
        request: LoadRequest,
        destination: TableDestination,
        states: list[RouteState],
    ) -> RoutingResult:
        states.append(RouteState.ELIGIBILITY_CHECK)
        if self._tracker.admit(request) is Eligibility.EXPIRED:
            _logger.warning(
                "router.retry_cycles_exhausted",
                attempts=request.submission_attempts,
                max_cycles=self._tracker.max_cycles,
            )
            self._inc("dead_lettered")
            # Dead-lettered byte for byte as received
            emitted = StreamMessage.outgoing(
                message.data, **{DEAD_LETTER_REASON: "retry_cycles_exhausted"},
            )
            return await self._emit(Route.DEAD_LETTER, emitted, states, request=request)

        states.append(RouteState.SUBMITTING)
        outcome = await self._orchestrator.submit(destination, request.source_uri)

        if outcome.is_success and outcome.job is not None:
            self._inc("submitted")
            envelope = LoaderEnvelope(
                load_request=request,
                loader_envelope_attributes=LoaderEnvelopeAttributes(
                    job_id=outcome.job.job_id,
                    job_created_timestamp=outcome.job.created_at,
                ),
            )
            emitted = StreamMessage.outgoing(envelope.to_json())
            return await self._emit(Route.SUBMITTED, emitted, states, request, outcome)

        self._inc(_RETRY_COUNTERS[outcome.kind])
        self._inc("submitted_for_retry_cycles")
        retried = self._tracker.record_attempt(request)
        _logger.info(
            "router.sent_for_retry",
            outcome=outcome.kind.value,
            next_attempt=retried.submission_attempts,
            cause=str(outcome.cause),
        )
        emitted = StreamMessage.outgoing(retried.to_json())
        return await self._emit(Route.RETRY, emitted, states, retried, outcome)

    async def _emit(
        self,
        route: Route,
        emitted: StreamMessage,
        states: list[RouteState],
        request: LoadRequest | None = None,
        outcome: SubmissionOutcome | None = None,
    ) -> RoutingResult:
        await self._channels[route].publish(emitted)
        states.append(RouteState.ROUTED)
        _logger.debug("router.routed", route=route.value, channel=self._channels[route].name)
        return RoutingResult(
            route=route,
            emitted=emitted,
            request=request,
            outcome=outcome,
            states=states,
        )


__all__ = ["DEAD_LETTER_REASON", "RequestRouter", "Route", "RouteState", "RoutingResult"]
