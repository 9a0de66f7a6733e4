"""Routing of load requests: retry-cycle tracking, channels and the router."""

from bqloader.routing.channels import (
    InboundSource,
    JsonlFileChannel,
    JsonlFileSource,
    MemoryChannel,
    MemorySource,
    OutputChannel,
)
from bqloader.routing.router import RequestRouter, Route, RouteState, RoutingResult
from bqloader.routing.tracker import Eligibility, RetryCycleTracker

__all__ = [
    "Eligibility",
    "InboundSource",
    "JsonlFileChannel",
    "JsonlFileSource",
    "MemoryChannel",
    "MemorySource",
    "OutputChannel",
    "RequestRouter",
    "RetryCycleTracker",
    "Route",
    "RouteState",
    "RoutingResult",
]
