"""
Admission Module.
Credit-gated job submission with surge-aware priority.
"""
from .resolver import (
    JobAdmissionResolver,
    RequestContext,
    SubmitOptions,
    ADMISSION_KEY,
)

__all__ = [
    "JobAdmissionResolver",
    "RequestContext",
    "SubmitOptions",
    "ADMISSION_KEY",
]
