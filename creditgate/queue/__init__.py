"""
Queue Module.
Priority mapping, engine adapters and the queue facade.
"""
from .priority import JobPriority, ENGINE_PRIORITIES, to_engine_priority
from .exceptions import (
    QueueError,
    QueueUnavailableError,
    SubmissionFailedError,
    AdmissionError,
)
from .engine import BaseQueueEngine, InMemoryQueueEngine, EngineJob, EnqueueOptions
from .facade import (
    QueueFacade,
    JobState,
    JobStatus,
    QueueStats,
    ActiveJob,
    FailedJob,
    PerformanceMetrics,
    QueueHealth,
    map_engine_state,
)

__all__ = [
    "JobPriority",
    "ENGINE_PRIORITIES",
    "to_engine_priority",
    "QueueError",
    "QueueUnavailableError",
    "SubmissionFailedError",
    "AdmissionError",
    "BaseQueueEngine",
    "InMemoryQueueEngine",
    "EngineJob",
    "EnqueueOptions",
    "QueueFacade",
    "JobState",
    "JobStatus",
    "QueueStats",
    "ActiveJob",
    "FailedJob",
    "PerformanceMetrics",
    "QueueHealth",
    "map_engine_state",
]
