"""
Queue engine contract.

The facade talks to the durable queue through BaseQueueEngine. Engine
states use Celery's vocabulary (celery.states) plus the custom PROGRESS
state; the facade normalizes them.
"""
import copy
import heapq
import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from celery import states

from .exceptions import QueueUnavailableError

logger = logging.getLogger(__name__)

PROGRESS = "PROGRESS"
WAITING_STATES = frozenset({states.PENDING, states.RECEIVED, states.RETRY})
FINISHED_STATES = frozenset({states.SUCCESS, states.FAILURE, states.REVOKED})


@dataclass
class EnqueueOptions:
    """Per-job engine options."""
    priority: int
    retry_limit: int = 3
    expire_in_hours: float = 1.0
    retry_delay_seconds: float = 2.0


@dataclass
class EngineJob:
    """A job as the engine reports it."""
    id: str
    state: str
    data: Dict[str, Any]
    priority: int
    created_on: datetime
    output: Optional[Any] = None
    progress: Optional[int] = None
    started_on: Optional[datetime] = None
    completed_on: Optional[datetime] = None
    failed_on: Optional[datetime] = None
    retry_count: int = 0

    @property
    def finished_on(self) -> Optional[datetime]:
        return self.completed_on or self.failed_on

    @property
    def last_activity(self) -> datetime:
        return self.finished_on or self.started_on or self.created_on


class BaseQueueEngine(ABC):
    """Abstract durable queue engine."""

    @abstractmethod
    def start(self) -> None:
        """Connect to the engine."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Release the engine connection."""
        pass

    @abstractmethod
    def send(self, queue: str, payload: Dict[str, Any], options: EnqueueOptions) -> str:
        """Enqueue payload and return the engine-assigned job id."""
        pass

    @abstractmethod
    def get_job_by_id(self, queue: str, job_id: str) -> Optional[EngineJob]:
        """Get job by id, None if unknown or archived."""
        pass

    @abstractmethod
    def get_queue_size(self, queue: str) -> int:
        """Number of jobs waiting to be picked up."""
        pass

    def count_by_state(self, queue: str) -> Dict[str, int]:
        """Job counts per engine state. Optional for engines."""
        raise NotImplementedError

    def list_jobs(
        self,
        queue: str,
        engine_states: Iterable[str],
        limit: Optional[int] = None,
        finished_since: Optional[datetime] = None,
    ) -> List[EngineJob]:
        """
        Jobs in any of engine_states, most recent activity first.
        finished_since keeps only jobs that finished at or after that instant.
        Optional for engines.
        """
        raise NotImplementedError

    def purge_finished(self, queue: str, finished_before: datetime) -> int:
        """Drop finished jobs older than finished_before. Optional for engines."""
        raise NotImplementedError


def select_jobs(
    jobs: Iterable[EngineJob],
    engine_states: Iterable[str],
    limit: Optional[int] = None,
    finished_since: Optional[datetime] = None,
) -> List[EngineJob]:
    wanted = set(engine_states)
    selected = [
        job for job in jobs
        if job.state in wanted
        and (finished_since is None or (job.finished_on is not None and job.finished_on >= finished_since))
    ]
    selected.sort(key=lambda job: job.last_activity, reverse=True)
    return selected if limit is None else selected[:limit]


class InMemoryQueueEngine(BaseQueueEngine):
    """
    In-memory priority queue engine.
    Thread-safe, suitable for development/testing. Higher priority is
    claimed first, FIFO within equal priority.
    """

    def __init__(self):
        self._jobs: Dict[str, EngineJob] = {}
        self._job_queues: Dict[str, str] = {}
        self._options: Dict[str, EnqueueOptions] = {}
        self._attempts: Dict[str, int] = {}
        self._waiting: Dict[str, List[Tuple[int, int, str]]] = {}
        self._sequence = itertools.count()
        self._lock = Lock()
        self._started = False
        self.start_count = 0
        self.stop_count = 0

    def start(self) -> None:
        with self._lock:
            self._started = True
            self.start_count += 1
        logger.info("InMemoryQueueEngine started")

    def stop(self) -> None:
        with self._lock:
            self._started = False
            self.stop_count += 1
        logger.info("InMemoryQueueEngine stopped")

    def _require_started(self) -> None:
        if not self._started:
            raise QueueUnavailableError("In-memory queue engine is not started")

    def _push(self, queue: str, job: EngineJob) -> None:
        heapq.heappush(
            self._waiting.setdefault(queue, []),
            (-job.priority, next(self._sequence), job.id),
        )

    def send(self, queue: str, payload: Dict[str, Any], options: EnqueueOptions) -> str:
        with self._lock:
            self._require_started()

            job = EngineJob(
                id=uuid.uuid4().hex,
                state=states.PENDING,
                data=copy.deepcopy(payload),
                priority=options.priority,
                created_on=datetime.utcnow(),
            )
            self._jobs[job.id] = job
            self._job_queues[job.id] = queue
            self._options[job.id] = options
            self._attempts[job.id] = 0
            self._push(queue, job)

        logger.debug(f"Job {job.id} sent to {queue} with priority {options.priority}")
        return job.id

    def get_job_by_id(self, queue: str, job_id: str) -> Optional[EngineJob]:
        with self._lock:
            self._require_started()
            job = self._jobs.get(job_id)
            if job is None or self._job_queues.get(job_id) != queue:
                return None
            return replace(job, data=copy.deepcopy(job.data))

    def get_queue_size(self, queue: str) -> int:
        with self._lock:
            self._require_started()
            return sum(
                1 for job_id, q in self._job_queues.items()
                if q == queue and self._jobs[job_id].state in WAITING_STATES
            )

    def count_by_state(self, queue: str) -> Dict[str, int]:
        with self._lock:
            self._require_started()
            counts: Dict[str, int] = {}
            for job_id, q in self._job_queues.items():
                if q == queue:
                    state = self._jobs[job_id].state
                    counts[state] = counts.get(state, 0) + 1
            return counts

    def list_jobs(
        self,
        queue: str,
        engine_states: Iterable[str],
        limit: Optional[int] = None,
        finished_since: Optional[datetime] = None,
    ) -> List[EngineJob]:
        with self._lock:
            self._require_started()
            jobs = [
                replace(job, data=copy.deepcopy(job.data))
                for job_id, job in self._jobs.items()
                if self._job_queues[job_id] == queue
            ]
        return select_jobs(jobs, engine_states, limit, finished_since)

    def purge_finished(self, queue: str, finished_before: datetime) -> int:
        with self._lock:
            self._require_started()
            expired = [
                job_id for job_id, job in self._jobs.items()
                if self._job_queues[job_id] == queue
                and job.state in FINISHED_STATES
                and job.finished_on is not None
                and job.finished_on < finished_before
            ]
            for job_id in expired:
                del self._jobs[job_id]
                del self._job_queues[job_id]
                del self._options[job_id]
                del self._attempts[job_id]
        return len(expired)

    def claim_next(self, queue: str) -> Optional[EngineJob]:
        """
        Take the highest-priority waiting job and mark it STARTED.
        Jobs past their expiry are revoked on the way.
        """
        with self._lock:
            self._require_started()
            heap = self._waiting.get(queue, [])
            now = datetime.utcnow()

            while heap:
                _, _, job_id = heapq.heappop(heap)
                job = self._jobs.get(job_id)
                if job is None or job.state not in WAITING_STATES:
                    continue
                options = self._options[job_id]

                if now - job.created_on > timedelta(hours=options.expire_in_hours):
                    job.state = states.REVOKED
                    job.output = {"error": "Job expired before it was processed"}
                    job.failed_on = now
                    logger.warning(f"Job {job_id} expired in queue {queue}")
                    continue

                job.state = states.STARTED
                job.started_on = now
                self._attempts[job_id] += 1
                return replace(job, data=copy.deepcopy(job.data))

            return None

    def update_progress(self, job_id: str, progress: int) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.state = PROGRESS
            job.progress = progress

    def complete(self, job_id: str, output: Any = None) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.state = states.SUCCESS
            job.output = output
            job.progress = 100
            job.completed_on = datetime.utcnow()

    def fail(self, job_id: str, error: str) -> bool:
        """
        Record a failed attempt.
        Returns True if the job was put back for retry.
        """
        with self._lock:
            job = self._jobs[job_id]
            options = self._options[job_id]

            if self._attempts[job_id] <= options.retry_limit:
                job.state = states.RETRY
                job.retry_count += 1
                self._push(self._job_queues[job_id], job)
                return True

            job.state = states.FAILURE
            job.output = {"error": error}
            job.failed_on = datetime.utcnow()
            return False
