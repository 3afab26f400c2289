"""Resumable job engine: state machine, processors, scheduling and orchestration."""

from .processors import BatchOutcome, BatchProcessor, LabelJobProcessor, ScanJobProcessor
from .scheduler import Continuation, ContinuationScheduler
from .service import InvocationResult, JobService, JobStatusView, status_message
from .state_machine import JobEvent, can_transition, transition
from .tasks import InMemoryTaskQueue, TaskQueue, ThreadingTaskQueue

__all__ = [
    "BatchOutcome",
    "BatchProcessor",
    "Continuation",
    "ContinuationScheduler",
    "InMemoryTaskQueue",
    "InvocationResult",
    "JobEvent",
    "JobService",
    "JobStatusView",
    "LabelJobProcessor",
    "ScanJobProcessor",
    "TaskQueue",
    "ThreadingTaskQueue",
    "can_transition",
    "status_message",
    "transition",
]
