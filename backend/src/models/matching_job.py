"""MatchingJob SQLAlchemy model.

One job drives one stage to completion for one project. A job's lifetime
spans many chunk executions, each claimed through locked_at/lock_token.
"""

from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, Text, Integer, BigInteger, Float, Boolean, ForeignKey, Index, TIMESTAMP, Uuid
)

from .base import Base, PortableJSONB, utcnow


class JobStatus(str, PyEnum):
    """Matching job lifecycle status

    State flow:
    queued → processing → completed | failed | cancelled
    processing → queued when a cost ceiling pauses the job
    failed → queued on retry
    """
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancellationType(str, PyEnum):
    GRACEFUL = "GRACEFUL"    # Finish the current chunk, then stop
    IMMEDIATE = "IMMEDIATE"  # Drop the in-flight chunk's results


class MatchingJob(Base):
    """Background matching job for one stage of one project.

    config holds {"jobType": "exact" | "fuzzy" | "ai" | "web-search" | "supersession"}
    plus optional per-job overrides (e.g. "maxCostMicros").
    """
    __tablename__ = "matching_job"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("project.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Text, nullable=True)  # Opaque actor id

    status = Column(Text, nullable=False, default=JobStatus.QUEUED.value)
    config = Column(PortableJSONB, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=0)

    # Progress
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    matches_found = Column(Integer, nullable=False, default=0)
    progress_percentage = Column(Float, nullable=False, default=0.0)
    match_rate = Column(Float, nullable=False, default=0.0)
    estimated_cost_micros = Column(BigInteger, nullable=False, default=0)
    run_cost_micros = Column(BigInteger, nullable=False, default=0)  # Reset when a budget pause ends
    estimated_completion = Column(TIMESTAMP(timezone=True), nullable=True)
    chunks_processed = Column(Integer, nullable=False, default=0)

    # Cancellation
    cancellation_requested = Column(Boolean, nullable=False, default=False)
    cancellation_type = Column(Text, nullable=True)
    cancelled_by = Column(Text, nullable=True)

    error_message = Column(Text, nullable=True)
    status_message = Column(Text, nullable=True)

    # Exclusive claim
    locked_at = Column(TIMESTAMP(timezone=True), nullable=True)
    lock_token = Column(Text, nullable=True)

    queued_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    started_at = Column(TIMESTAMP(timezone=True), nullable=True)
    completed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_matching_job_status", "status"),
        Index("ix_matching_job_project_status", "project_id", "status"),
    )

    @property
    def job_type(self) -> str:
        return (self.config or {}).get("jobType", "ai")

    def to_dict(self):
        """Convert job to the status record exposed to collaborators."""
        return {
            "id": str(self.id),
            "project_id": str(self.project_id),
            "user_id": self.user_id,
            "status": self.status,
            "job_type": self.job_type,
            "priority": self.priority,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "matches_found": self.matches_found,
            "progress_percentage": self.progress_percentage,
            "match_rate": self.match_rate,
            "estimated_cost_micros": self.estimated_cost_micros,
            "estimated_completion": self.estimated_completion.isoformat() if self.estimated_completion else None,
            "cancellation_requested": self.cancellation_requested,
            "cancellation_type": self.cancellation_type,
            "error_message": self.error_message,
            "status_message": self.status_message,
            "queued_at": self.queued_at.isoformat() if self.queued_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
