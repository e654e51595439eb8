"""Pydantic schemas for matching jobs"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from models.matching_job import CancellationType, JobStatus


class JobType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    AI = "ai"
    SUPERSESSION = "supersession"
    WEB_SEARCH = "web-search"


class JobCreateRequest(BaseModel):
    """Request to queue a matching job.

    Optional overrides are stored in the job config.
    """
    project_id: UUID
    job_type: JobType
    priority: int = Field(0, ge=0, le=100)
    max_cost_micros: Optional[int] = Field(None, gt=0)
    tie_break_policy: Optional[str] = None
    web_fallback: Optional[bool] = None

    @field_validator("tie_break_policy")
    @classmethod
    def validate_tie_break_policy(cls, v):
        if v is not None and v not in ("interchange_first", "prefix_strip"):
            raise ValueError("tie_break_policy must be interchange_first or prefix_strip")
        return v

    def job_config(self) -> dict:
        config = {}
        if self.max_cost_micros is not None:
            config["maxCostMicros"] = self.max_cost_micros
        if self.tie_break_policy is not None:
            config["tieBreakPolicy"] = self.tie_break_policy
        if self.web_fallback is not None:
            config["webFallback"] = self.web_fallback
        return config


class CancelJobRequest(BaseModel):
    cancellation_type: CancellationType = CancellationType.GRACEFUL


class JobResponse(BaseModel):
    id: UUID
    project_id: UUID
    user_id: Optional[str] = None
    status: JobStatus
    job_type: str
    priority: int
    total_items: int
    processed_items: int
    matches_found: int
    progress_percentage: float
    match_rate: float
    estimated_cost_micros: int
    estimated_completion: Optional[datetime] = None
    cancellation_requested: bool
    cancellation_type: Optional[CancellationType] = None
    error_message: Optional[str] = None
    status_message: Optional[str] = None
    queued_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BudgetStatusResponse(BaseModel):
    limit_micros: Optional[int] = None
    spent_micros: int
    remaining_micros: Optional[int] = None
    exhausted: bool


class JobStatusResponse(JobResponse):
    budget: BudgetStatusResponse


class CostSummaryResponse(BaseModel):
    total_micros: int
    by_operation: Dict[str, Dict[str, int]]


class UnmatchResponse(BaseModel):
    project_id: UUID
    deleted: int
