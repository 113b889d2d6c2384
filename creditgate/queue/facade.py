"""
Queue Facade.
Stable job vocabulary over the durable queue engine.
"""
import logging
from datetime import datetime, timedelta
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from celery import states
from pydantic import BaseModel, Field

from .engine import BaseQueueEngine, EnqueueOptions, PROGRESS
from .exceptions import QueueUnavailableError
from .priority import JobPriority, from_engine_priority

logger = logging.getLogger(__name__)

DEFAULT_QUEUE = "document-processing"


class JobState(str, Enum):
    """Normalized job lifecycle states."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


ENGINE_STATE_MAP = {
    states.PENDING: JobState.WAITING,
    states.RECEIVED: JobState.WAITING,
    states.RETRY: JobState.WAITING,
    states.STARTED: JobState.ACTIVE,
    PROGRESS: JobState.ACTIVE,
    states.SUCCESS: JobState.COMPLETED,
    states.FAILURE: JobState.FAILED,
    states.REVOKED: JobState.FAILED,
}


def map_engine_state(engine_state: str) -> JobState:
    """Map engine state to JobState. Unknown states count as waiting."""
    return ENGINE_STATE_MAP.get(engine_state, JobState.WAITING)


def engine_states_for(state: JobState) -> FrozenSet[str]:
    """Engine states that normalize to state."""
    return frozenset(s for s, mapped in ENGINE_STATE_MAP.items() if mapped == state)


class JobStatus(BaseModel):
    """Status record for a single job."""
    id: str
    status: JobState
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    priority: int
    priority_class: JobPriority


class QueueStats(BaseModel):
    """Job counts per normalized state."""
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    by_state: Dict[str, int] = Field(default_factory=dict)


class ActiveJob(BaseModel):
    """A job a worker is processing."""
    id: str
    data: Dict[str, Any]
    created_at: datetime
    started_at: Optional[datetime] = None
    priority: int
    priority_class: JobPriority


class FailedJob(BaseModel):
    """A job that exhausted its retries, was revoked or expired."""
    id: str
    data: Dict[str, Any]
    error: str
    failed_at: Optional[datetime] = None
    retry_count: int = 0


class QueueHealth(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


ERROR_RATE_WARNING = 10.0
ERROR_RATE_CRITICAL = 30.0


def queue_health_for(error_rate: float) -> QueueHealth:
    """Health from the error rate in percent."""
    if error_rate > ERROR_RATE_CRITICAL:
        return QueueHealth.CRITICAL
    if error_rate > ERROR_RATE_WARNING:
        return QueueHealth.WARNING
    return QueueHealth.HEALTHY


class PerformanceMetrics(BaseModel):
    """Processing metrics over a trailing window of finished jobs."""
    window_hours: float
    completed: int
    failed: int
    average_processing_seconds: float
    throughput_per_hour: float
    error_rate: float = Field(..., ge=0, le=100, description="Failed share of finished jobs, percent")
    queue_health: QueueHealth


class QueueFacade:
    """
    Adapter over a BaseQueueEngine.

    initialize() must run before any enqueue or status call; it is
    idempotent. stop() releases the engine once; later calls are no-ops.
    """

    def __init__(
        self,
        engine: BaseQueueEngine,
        queue_name: str = DEFAULT_QUEUE,
        utcnow: Callable[[], datetime] = datetime.utcnow,
    ):
        self._engine = engine
        self.queue_name = queue_name
        self._utcnow = utcnow
        self._lock = Lock()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        with self._lock:
            if self._initialized:
                logger.debug("Queue facade already initialized")
                return

            try:
                self._engine.start()
            except QueueUnavailableError:
                logger.error(f"Queue engine unavailable for {self.queue_name}")
                raise
            except Exception as e:
                logger.exception(f"Failed to start queue engine for {self.queue_name}: {e}")
                raise QueueUnavailableError(f"Failed to start queue engine: {e}") from e

            self._initialized = True
            logger.info(f"Queue facade initialized: queue={self.queue_name}")

    def stop(self) -> None:
        with self._lock:
            if not self._initialized:
                return

            self._initialized = False
            self._engine.stop()
            logger.info(f"Queue facade stopped: queue={self.queue_name}")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise QueueUnavailableError("Queue facade is not initialized")

    def enqueue(
        self,
        payload: Dict[str, Any],
        priority: int,
        retry_limit: int = 3,
        expire_in_hours: float = 1.0,
        retry_delay_seconds: float = 2.0,
    ) -> str:
        """
        Send payload to the engine with an engine-scale priority.
        Engine errors are logged with context and re-raised unchanged.
        """
        self._require_initialized()

        options = EnqueueOptions(
            priority=priority,
            retry_limit=retry_limit,
            expire_in_hours=expire_in_hours,
            retry_delay_seconds=retry_delay_seconds,
        )
        tenant_id = payload.get("_admission", {}).get("tenant_id")

        try:
            job_id = self._engine.send(self.queue_name, payload, options)
        except Exception as e:
            logger.exception(
                f"Failed to enqueue job on {self.queue_name} for tenant {tenant_id} "
                f"(priority={priority}): {e}"
            )
            raise

        logger.info(
            f"Job {job_id} enqueued on {self.queue_name} for tenant {tenant_id} "
            f"(priority={priority}, retry_limit={retry_limit}, expire_in_hours={expire_in_hours})"
        )
        return job_id

    def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        """Status of a job, None if the engine no longer knows it."""
        self._require_initialized()

        try:
            job = self._engine.get_job_by_id(self.queue_name, job_id)
        except Exception as e:
            logger.exception(f"Failed to get status for job {job_id}: {e}")
            raise

        if job is None:
            return None

        status = map_engine_state(job.state)
        output = job.output

        return JobStatus(
            id=job.id,
            status=status,
            progress=job.progress,
            result=output if status == JobState.COMPLETED else None,
            error=_error_of(output),
            created_at=job.created_on,
            processed_at=job.completed_on or job.failed_on,
            priority=job.priority,
            priority_class=from_engine_priority(job.priority),
        )

    def get_queue_stats(self) -> QueueStats:
        """
        Counts per normalized state.
        Falls back to the waiting count alone when the engine cannot break
        jobs down by state.
        """
        self._require_initialized()

        try:
            by_state = self._engine.count_by_state(self.queue_name)
        except NotImplementedError:
            size = self._engine.get_queue_size(self.queue_name)
            return QueueStats(waiting=size, total=size, by_state={states.PENDING: size})
        except Exception as e:
            logger.exception(f"Failed to get queue stats for {self.queue_name}: {e}")
            raise

        counts = {state: 0 for state in JobState}
        for engine_state, count in by_state.items():
            counts[map_engine_state(engine_state)] += count

        return QueueStats(
            waiting=counts[JobState.WAITING],
            active=counts[JobState.ACTIVE],
            completed=counts[JobState.COMPLETED],
            failed=counts[JobState.FAILED],
            total=sum(counts.values()),
            by_state=dict(by_state),
        )

    def _list(self, state: JobState, limit: Optional[int], finished_since: Optional[datetime] = None):
        try:
            return self._engine.list_jobs(
                self.queue_name,
                engine_states_for(state),
                limit=limit,
                finished_since=finished_since,
            )
        except NotImplementedError:
            logger.warning(f"Queue engine cannot list {state.value} jobs for {self.queue_name}")
            return []
        except Exception as e:
            logger.exception(f"Failed to list {state.value} jobs for {self.queue_name}: {e}")
            raise

    def get_active_jobs(self, limit: int = 10) -> List[ActiveJob]:
        """Jobs being processed, most recently started first."""
        self._require_initialized()

        return [
            ActiveJob(
                id=job.id,
                data=job.data,
                created_at=job.created_on,
                started_at=job.started_on,
                priority=job.priority,
                priority_class=from_engine_priority(job.priority),
            )
            for job in self._list(JobState.ACTIVE, limit)
        ]

    def get_failed_jobs(self, limit: int = 10) -> List[FailedJob]:
        """Failed jobs with their last error, most recent first."""
        self._require_initialized()
        return [_failed_job(job) for job in self._list(JobState.FAILED, limit)]

    def get_failed_job(self, job_id: str) -> Optional[FailedJob]:
        """The job if it is known and failed, None otherwise."""
        self._require_initialized()

        job = self._engine.get_job_by_id(self.queue_name, job_id)
        if job is None or map_engine_state(job.state) != JobState.FAILED:
            return None
        return _failed_job(job)

    def get_performance_metrics(self, window_hours: float = 24) -> PerformanceMetrics:
        """
        Processing time, throughput and error rate of the jobs that finished
        within the last window_hours.
        """
        self._require_initialized()

        since = self._utcnow() - timedelta(hours=window_hours)
        completed = self._list(JobState.COMPLETED, None, finished_since=since)
        failed = self._list(JobState.FAILED, None, finished_since=since)

        durations = [
            (job.completed_on - (job.started_on or job.created_on)).total_seconds()
            for job in completed
            if job.completed_on is not None
        ]
        average = sum(durations) / len(durations) if durations else 0.0

        finished = len(completed) + len(failed)
        error_rate = 100.0 * len(failed) / finished if finished else 0.0

        metrics = PerformanceMetrics(
            window_hours=window_hours,
            completed=len(completed),
            failed=len(failed),
            average_processing_seconds=average,
            throughput_per_hour=len(completed) / window_hours if window_hours else 0.0,
            error_rate=error_rate,
            queue_health=queue_health_for(error_rate),
        )
        logger.info(f"Performance metrics for {self.queue_name}: {metrics}")
        return metrics

    def clean_completed_jobs(self, older_than_hours: float = 24) -> int:
        """
        Drop finished jobs older than older_than_hours.
        Returns the number removed, 0 if the engine cannot purge.
        """
        self._require_initialized()

        cutoff = self._utcnow() - timedelta(hours=older_than_hours)
        try:
            removed = self._engine.purge_finished(self.queue_name, cutoff)
        except NotImplementedError:
            logger.warning(f"Queue engine cannot purge finished jobs for {self.queue_name}")
            return 0
        except Exception as e:
            logger.exception(f"Failed to clean finished jobs for {self.queue_name}: {e}")
            raise

        logger.info(f"Cleaned {removed} finished job(s) older than {older_than_hours}h from {self.queue_name}")
        return removed


def _error_of(output: Any) -> Optional[str]:
    if isinstance(output, dict) and output.get("error"):
        return str(output["error"])
    return None


def _failed_job(job) -> FailedJob:
    return FailedJob(
        id=job.id,
        data=job.data,
        error=_error_of(job.output) or "Unknown error",
        failed_at=job.failed_on,
        retry_count=job.retry_count,
    )
