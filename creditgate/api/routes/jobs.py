"""
Job submission and status endpoints.
"""
import logging

from fastapi import APIRouter, Depends, status

from creditgate.admission import RequestContext, SubmitOptions
from creditgate.container import ServiceContainer
from creditgate.queue import JobStatus, QueueFacade

from ..dependencies import get_container, get_queue, get_request_context
from ..exceptions import JobNotFoundError
from ..schemas import SubmitJobRequest, SubmitJobResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit Job",
    description=(
        "Admit a job if the tenant has credits left. Credits are charged when "
        "the job completes. 402 means top up, 503 means retry later."
    ),
)
def submit_job(
    request: SubmitJobRequest,
    context: RequestContext = Depends(get_request_context),
    container: ServiceContainer = Depends(get_container),
) -> SubmitJobResponse:
    options = SubmitOptions(
        priority=request.priority,
        retry_limit=request.retry_limit,
        expire_in_hours=request.expire_in_hours,
    )
    job_id = container.resolver.submit_job(request.payload, context, options)

    return SubmitJobResponse(job_id=job_id)


@router.get(
    "/{job_id}",
    response_model=JobStatus,
    summary="Get Job Status",
    description="Normalized status of a job. 404 when unknown or archived.",
)
def get_job_status(
    job_id: str,
    queue: QueueFacade = Depends(get_queue),
) -> JobStatus:
    job_status = queue.get_job_status(job_id)
    if job_status is None:
        raise JobNotFoundError(job_id)
    return job_status
