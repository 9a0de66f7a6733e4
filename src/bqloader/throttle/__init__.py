"""Admission control: running-jobs snapshot, gate, backoff and submission loop."""

from bqloader.throttle.backoff import BackoffPolicy, BackoffSequence
from bqloader.throttle.gate import AdmissionGate, GateDecision, GateReason
from bqloader.throttle.orchestrator import (
    InterruptibleSleeper,
    JobSubmissionOrchestrator,
    OutcomeKind,
    SubmissionOutcome,
)
from bqloader.throttle.snapshot import RunningJobSnapshot

__all__ = [
    "AdmissionGate",
    "BackoffPolicy",
    "BackoffSequence",
    "GateDecision",
    "GateReason",
    "InterruptibleSleeper",
    "JobSubmissionOrchestrator",
    "OutcomeKind",
    "RunningJobSnapshot",
    "SubmissionOutcome",
]
