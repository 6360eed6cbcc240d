"""Request-path services and the runtime container."""

from workflow_services.runtime import WorkflowRuntime
from workflow_services.transition_orchestrator import (
    CancellationToken,
    RequestState,
    TransitionOrchestrator,
    TransitionRequest,
    TransitionResult,
)

__all__ = [
    "WorkflowRuntime",
    "CancellationToken",
    "RequestState",
    "TransitionOrchestrator",
    "TransitionRequest",
    "TransitionResult",
]
