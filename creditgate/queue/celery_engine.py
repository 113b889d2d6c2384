"""
Celery-backed queue engine.

Jobs are sent as `processing.run_job` tasks. Each job is mirrored into the
SQLite jobs table before it is sent; the worker-side task hooks keep the
mirror's state current, so status lookups and per-state counts never need
to scan the broker.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from celery import Celery, states

from creditgate.persistence import JobRecord, SQLiteJobRepository

from .engine import FINISHED_STATES, BaseQueueEngine, EngineJob, EnqueueOptions
from .exceptions import QueueUnavailableError
from .priority import MAX_ENGINE_PRIORITY

logger = logging.getLogger(__name__)

RUN_JOB_TASK = "processing.run_job"
BROKER_MAX_PRIORITY = 9


def to_broker_priority(priority: int) -> int:
    """
    Map the engine scale (higher first) onto Redis priority steps
    (0 first).
    """
    clamped = max(0, min(priority, MAX_ENGINE_PRIORITY))
    return BROKER_MAX_PRIORITY - clamped * BROKER_MAX_PRIORITY // MAX_ENGINE_PRIORITY


def _to_engine_job(record: JobRecord, state: Optional[str] = None, output: Any = None) -> EngineJob:
    return EngineJob(
        id=record.job_id,
        state=state or record.state,
        data=record.data,
        priority=record.priority,
        created_on=record.created_on,
        output=output if output is not None else record.output,
        started_on=record.started_on,
        completed_on=record.completed_on,
        failed_on=record.failed_on,
        retry_count=record.retry_count,
    )


class CeleryQueueEngine(BaseQueueEngine):
    """Queue engine over a Celery app and its broker."""

    def __init__(
        self,
        celery_app: Celery,
        job_repo: SQLiteJobRepository,
        connect_retries: int = 3,
    ):
        self._app = celery_app
        self._jobs = job_repo
        self._connect_retries = connect_retries
        self._connection = None

    def start(self) -> None:
        """Open and verify the broker connection."""
        connection = self._app.connection_for_write()
        try:
            connection.ensure_connection(max_retries=self._connect_retries)
        except Exception as e:
            connection.release()
            raise QueueUnavailableError(f"Broker unreachable: {e}") from e

        self._connection = connection
        logger.info(f"CeleryQueueEngine connected to {self._app.conf.broker_url}")

    def stop(self) -> None:
        if self._connection is not None:
            self._connection.release()
            self._connection = None
            logger.info("CeleryQueueEngine connection released")

    def send(self, queue: str, payload: Dict[str, Any], options: EnqueueOptions) -> str:
        job_id = uuid.uuid4().hex

        # mirror first: a fast worker may report STARTED before send_task returns
        self._jobs.track_job(
            job_id=job_id,
            queue=queue,
            priority=options.priority,
            state=states.PENDING,
            data=payload,
        )

        try:
            self._app.send_task(
                RUN_JOB_TASK,
                args=(queue,),
                kwargs={
                    "payload": payload,
                    "retry_limit": options.retry_limit,
                    "retry_delay_seconds": options.retry_delay_seconds,
                },
                task_id=job_id,
                queue=queue,
                priority=to_broker_priority(options.priority),
                expires=options.expire_in_hours * 3600,
            )
        except Exception:
            self._jobs.delete_job(job_id)
            raise

        return job_id

    def get_job_by_id(self, queue: str, job_id: str) -> Optional[EngineJob]:
        record = self._jobs.get_job(job_id)
        if record is None or record.queue != queue:
            return None

        state = record.state
        output = record.output

        # expired or revoked messages never reach the task hooks
        if state not in states.READY_STATES:
            backend_state = self._app.AsyncResult(job_id).state
            if backend_state == states.REVOKED:
                state = backend_state
                output = {"error": "Job revoked or expired before it was processed"}
                self._jobs.update_state(job_id, state, output=output, timestamp_column="failed_on")
                record = self._jobs.get_job(job_id) or record

        return _to_engine_job(record, state=state, output=output)

    def get_queue_size(self, queue: str) -> int:
        with self._app.connection_for_read() as connection:
            declared = connection.default_channel.queue_declare(queue=queue)
            return declared.message_count

    def count_by_state(self, queue: str) -> Dict[str, int]:
        return self._jobs.count_by_state(queue)

    def list_jobs(
        self,
        queue: str,
        engine_states: Iterable[str],
        limit: Optional[int] = None,
        finished_since: Optional[datetime] = None,
    ) -> List[EngineJob]:
        records = self._jobs.list_jobs(queue, engine_states, limit=limit, finished_since=finished_since)
        return [_to_engine_job(record) for record in records]

    def purge_finished(self, queue: str, finished_before: datetime) -> int:
        return self._jobs.delete_finished(queue, FINISHED_STATES, finished_before)

    def mark_started(self, job_id: str) -> None:
        self._jobs.update_state(job_id, states.STARTED, timestamp_column="started_on")

    def mark_retry(self, job_id: str) -> None:
        self._jobs.record_retry(job_id, states.RETRY)

    def mark_completed(self, job_id: str, output: Any) -> None:
        self._jobs.update_state(job_id, states.SUCCESS, output=output, timestamp_column="completed_on")

    def mark_failed(self, job_id: str, error: str) -> None:
        self._jobs.update_state(
            job_id,
            states.FAILURE,
            output={"error": error},
            timestamp_column="failed_on",
        )
