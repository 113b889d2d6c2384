"""
Queue monitoring and maintenance endpoints.
Job listings, retries and cleanup are protected by X-Admin-Secret.
"""
import logging

from fastapi import APIRouter, Depends, Query, status

from creditgate.container import ServiceContainer
from creditgate.queue import PerformanceMetrics, QueueFacade, QueueStats

from ..dependencies import get_container, get_queue, verify_admin_secret
from ..exceptions import NotFoundError
from ..schemas import CleanJobsResponse, QueueJobsResponse, SubmitJobResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["Queue"])


@router.get(
    "/stats",
    response_model=QueueStats,
    summary="Queue Statistics",
    description="Job counts per normalized state.",
)
def queue_stats(queue: QueueFacade = Depends(get_queue)) -> QueueStats:
    return queue.get_queue_stats()


@router.get(
    "/metrics",
    response_model=PerformanceMetrics,
    summary="Performance Metrics",
    description="Average processing time, throughput and error rate over a trailing window.",
)
def performance_metrics(
    window_hours: float = Query(24, gt=0, le=24 * 30),
    queue: QueueFacade = Depends(get_queue),
) -> PerformanceMetrics:
    return queue.get_performance_metrics(window_hours)


@router.get(
    "/jobs",
    response_model=QueueJobsResponse,
    summary="List Jobs",
    description="Active and/or failed jobs. With type=all the limit is split between both.",
    dependencies=[Depends(verify_admin_secret)],
)
def list_jobs(
    job_type: str = Query("all", alias="type", pattern="^(active|failed|all)$"),
    limit: int = Query(20, ge=1, le=100),
    queue: QueueFacade = Depends(get_queue),
) -> QueueJobsResponse:
    active, failed = [], []

    if job_type == "active":
        active = queue.get_active_jobs(limit)
    elif job_type == "failed":
        failed = queue.get_failed_jobs(limit)
    else:
        half = max(1, limit // 2)
        active = queue.get_active_jobs(half)
        failed = queue.get_failed_jobs(half)

    return QueueJobsResponse(type=job_type, active=active, failed=failed, total=len(active) + len(failed))


@router.post(
    "/jobs/{job_id}/retry",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry Failed Job",
    description="Re-admit a failed job's payload at high priority. 404 unless the job failed.",
    dependencies=[Depends(verify_admin_secret)],
)
def retry_failed_job(
    job_id: str,
    container: ServiceContainer = Depends(get_container),
) -> SubmitJobResponse:
    new_job_id = container.resolver.retry_failed_job(job_id)
    if new_job_id is None:
        raise NotFoundError("Failed job", job_id)

    logger.info(f"Admin retry: job {job_id} re-admitted as {new_job_id}")
    return SubmitJobResponse(job_id=new_job_id, message=f"Retry of job {job_id} accepted")


@router.post(
    "/clean",
    response_model=CleanJobsResponse,
    summary="Clean Finished Jobs",
    description="Remove completed and failed jobs that finished more than older_than_hours ago.",
    dependencies=[Depends(verify_admin_secret)],
)
def clean_finished_jobs(
    older_than_hours: float = Query(24, ge=0),
    queue: QueueFacade = Depends(get_queue),
) -> CleanJobsResponse:
    removed = queue.clean_completed_jobs(older_than_hours)
    return CleanJobsResponse(removed=removed, older_than_hours=older_than_hours)
