"""Tool invocation: cancellation scopes, progress relay and backend dispatch."""

from .backends import Backend, HttpBackend
from .context import CancellationToken, InvocationContext, ProgressEvent, ProgressReporter, ProgressSink
from .coordinator import ChainResult, ChainStep, ExecutionCoordinator, InvocationResult, StepOutcome

__all__ = [
    "Backend",
    "CancellationToken",
    "ChainResult",
    "ChainStep",
    "ExecutionCoordinator",
    "HttpBackend",
    "InvocationContext",
    "InvocationResult",
    "ProgressEvent",
    "ProgressReporter",
    "ProgressSink",
    "StepOutcome",
]
