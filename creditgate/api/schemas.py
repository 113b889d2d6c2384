"""
Pydantic schemas for API requests and responses.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from creditgate.pricing import SurgeConfig
from creditgate.queue import ActiveJob, FailedJob, JobPriority, JobState


class SubmitJobRequest(BaseModel):
    """POST /jobs request body."""
    payload: Dict[str, Any] = Field(default_factory=dict, description="Job data passed to the worker")
    priority: Optional[JobPriority] = Field(default=None, description="Override the date-derived priority")
    retry_limit: Optional[int] = Field(default=None, ge=0, le=20)
    expire_in_hours: Optional[float] = Field(default=None, gt=0, le=168)


class SubmitJobResponse(BaseModel):
    """POST /jobs response."""
    job_id: str
    status: JobState = JobState.WAITING
    message: str = "Job accepted for processing"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    queue_engine: str
    queue_connected: bool
    storage_backend: str
    timestamp: datetime


class BalanceResponse(BaseModel):
    """GET /credits/balance response."""
    tenant_id: str
    balance: float
    total_credited: float
    total_debited: float
    updated_at: Optional[datetime] = None


class TransactionResponse(BaseModel):
    """Single ledger entry."""
    id: str
    amount: float
    kind: str
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    reference: Optional[str] = None
    created_at: datetime


class HistoryResponse(BaseModel):
    """GET /credits/history response."""
    tenant_id: str
    transactions: List[TransactionResponse]
    limit: int
    offset: int


class PriceQuoteResponse(BaseModel):
    """GET /surge-pricing/price response."""
    base_price: float
    multiplier: float
    price: float
    is_surge: bool
    date: datetime


class SurgeConfigResponse(BaseModel):
    """Current surge window configuration."""
    enabled: bool
    surge_month: int
    surge_start_day: int
    surge_end_day: int
    surge_multiplier: float
    normal_multiplier: float
    reason: str

    @classmethod
    def from_config(cls, config: SurgeConfig) -> "SurgeConfigResponse":
        return cls(
            enabled=config.enabled,
            surge_month=config.surge_month,
            surge_start_day=config.surge_start_day,
            surge_end_day=config.surge_end_day,
            surge_multiplier=config.surge_multiplier,
            normal_multiplier=config.normal_multiplier,
            reason=config.reason,
        )


class SurgeConfigUpdate(BaseModel):
    """PUT /admin/surge-config body. Omitted fields keep their value."""
    enabled: Optional[bool] = None
    surge_month: Optional[int] = Field(default=None, ge=1, le=12)
    surge_start_day: Optional[int] = Field(default=None, ge=1, le=31)
    surge_end_day: Optional[int] = Field(default=None, ge=1, le=31)
    surge_multiplier: Optional[float] = Field(default=None, gt=0)
    normal_multiplier: Optional[float] = Field(default=None, gt=0)
    reason: Optional[str] = None


class DefaultBalanceRequest(BaseModel):
    """PUT /admin/default-balance body."""
    default_balance: float = Field(..., ge=0)


class DefaultBalanceResponse(BaseModel):
    previous_default_balance: float
    default_balance: float


class AddCreditsRequest(BaseModel):
    """POST /admin/credits/{tenant_id} body."""
    amount: float = Field(..., gt=0, description="Credits to add")
    description: str = Field(default="Admin top-up")


class AddCreditsResponse(BaseModel):
    """Response after adding credits."""
    tenant_id: str
    previous_balance: float
    amount: float
    new_balance: float
    message: str


class QueueJobsResponse(BaseModel):
    """GET /queue/jobs response."""
    type: str
    active: List[ActiveJob] = Field(default_factory=list)
    failed: List[FailedJob] = Field(default_factory=list)
    total: int


class CleanJobsResponse(BaseModel):
    """POST /queue/clean response."""
    removed: int
    older_than_hours: float
