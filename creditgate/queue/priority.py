"""
Job priorities and their mapping onto the queue engine's numeric scale.
"""
from enum import Enum


class JobPriority(str, Enum):
    """Scheduling priority classes."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Higher value is dequeued first; ties are FIFO inside the engine.
ENGINE_PRIORITIES = {
    JobPriority.LOW: 1,
    JobPriority.NORMAL: 5,
    JobPriority.HIGH: 10,
    JobPriority.URGENT: 20,
}

MAX_ENGINE_PRIORITY = max(ENGINE_PRIORITIES.values())


def to_engine_priority(priority: JobPriority) -> int:
    """Map a priority class to the engine scale."""
    return ENGINE_PRIORITIES[JobPriority(priority)]


def from_engine_priority(value: int) -> JobPriority:
    """Closest priority class at or below an engine value."""
    best = JobPriority.LOW
    for priority, engine_value in ENGINE_PRIORITIES.items():
        if engine_value <= value and engine_value >= ENGINE_PRIORITIES[best]:
            best = priority
    return best
