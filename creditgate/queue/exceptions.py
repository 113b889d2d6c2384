"""
Queue-related exceptions.
"""


class QueueError(Exception):
    """Base queue error."""

    retryable = False

    def __init__(self, message: str, code: str = "QUEUE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class QueueUnavailableError(QueueError):
    """Raised when the queue engine is unreachable or not initialized."""

    retryable = True

    def __init__(self, message: str = "Queue engine is not available"):
        super().__init__(message=message, code="QUEUE_UNAVAILABLE")


class SubmissionFailedError(QueueError):
    """Raised when the engine refused or failed to accept a job."""

    retryable = True

    def __init__(self, message: str, tenant_id: str = None):
        self.tenant_id = tenant_id
        super().__init__(message=message, code="SUBMISSION_FAILED")


class AdmissionError(QueueError):
    """Raised when no admission key can be resolved for a request."""

    def __init__(self, message: str = "No tenant or user identifier on request"):
        super().__init__(message=message, code="ADMISSION_KEY_MISSING")
