"""
Celery tasks for admitted jobs.
Worker-side execution, job mirror updates and completion settlement.
"""
import logging
from typing import Any, Callable, Dict

from celery import Task
from celery.exceptions import SoftTimeLimitExceeded

from creditgate.celery_app import celery_app

from .celery_engine import RUN_JOB_TASK

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Any]

_handlers: Dict[str, JobHandler] = {}


def job_handler(queue: str):
    """
    Register the processing function for a queue.

        @job_handler("document-processing")
        def process_document(payload):
            ...
    """
    def decorator(func: JobHandler) -> JobHandler:
        if queue in _handlers:
            logger.warning(f"Replacing job handler for queue {queue}")
        _handlers[queue] = func
        return func

    return decorator


def get_job_handler(queue: str) -> JobHandler:
    try:
        return _handlers[queue]
    except KeyError:
        raise LookupError(f"No job handler registered for queue {queue}") from None


def _container():
    from creditgate.container import get_container
    return get_container()


class ProcessingTask(Task):
    """
    Base task keeping the job mirror in step with the worker and settling
    credits once a job completes.
    """

    abstract = True
    track_started = True
    acks_late = True
    reject_on_worker_lost = True

    def before_start(self, task_id, args, kwargs):
        _container().celery_engine.mark_started(task_id)

    def on_success(self, retval, task_id, args, kwargs):
        container = _container()
        try:
            container.celery_engine.mark_completed(task_id, retval)
        except Exception as e:
            # the job ran; a stale mirror row must not leave it unbilled
            logger.exception(f"Failed to record completion of task {task_id} in job mirror: {e}")
        logger.info(f"Task {task_id} completed")

        container.settlement.on_job_completed(task_id, retval, kwargs.get("payload") or {})
        super().on_success(retval, task_id, args, kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        container = _container()
        container.celery_engine.mark_failed(task_id, str(exc))
        logger.error(f"Task {task_id} failed: {exc}")

        container.settlement.on_job_failed(task_id, str(exc), kwargs.get("payload") or {})
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        _container().celery_engine.mark_retry(task_id)
        logger.warning(f"Task {task_id} retrying: {exc}")
        super().on_retry(exc, task_id, args, kwargs, einfo)


@celery_app.task(
    base=ProcessingTask,
    bind=True,
    name=RUN_JOB_TASK,
    time_limit=3600,
    soft_time_limit=3300,
)
def run_job(
    self,
    queue: str,
    payload: Dict[str, Any],
    retry_limit: int = 3,
    retry_delay_seconds: float = 2,
) -> Any:
    """
    Run the handler registered for `queue` on the job payload.

    Args:
        queue: Queue the job was admitted to
        payload: Job payload, including the `_admission` block
        retry_limit: Maximum number of retries after the first attempt
        retry_delay_seconds: Delay before each retry

    Returns:
        Whatever the handler returns; stored as the job result
    """
    task_id = self.request.id
    handler = get_job_handler(queue)

    logger.info(f"Starting job {task_id} on {queue} (attempt {self.request.retries + 1})")

    try:
        return handler(payload)

    except SoftTimeLimitExceeded:
        logger.error(f"Job {task_id} exceeded soft time limit")
        raise

    except Exception as e:
        if self.request.retries < retry_limit:
            logger.warning(f"Job {task_id} failed, retrying in {retry_delay_seconds}s: {e}")
            raise self.retry(exc=e, countdown=retry_delay_seconds, max_retries=retry_limit)

        logger.exception(f"Job {task_id} failed after {self.request.retries + 1} attempts: {e}")
        raise
