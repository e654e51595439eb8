"""StageAttempt SQLAlchemy model.

Records that a job has evaluated a source item, whether or not a candidate
was found. Remaining work for a job is derived from this table and the
candidate table, never from a stored offset.
"""

from uuid import uuid4

from sqlalchemy import Column, Integer, Boolean, ForeignKey, UniqueConstraint, Index, TIMESTAMP, Uuid

from .base import Base, utcnow


class StageAttempt(Base):
    __tablename__ = "stage_attempt"

    id = Column(Uuid, primary_key=True, default=uuid4)
    job_id = Column(Uuid, ForeignKey("matching_job.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(Uuid, ForeignKey("project.id", ondelete="CASCADE"), nullable=False)
    source_item_id = Column(Uuid, ForeignKey("catalog_item.id", ondelete="CASCADE"), nullable=False)
    match_stage = Column(Integer, nullable=False)
    matched = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("job_id", "source_item_id", name="uq_stage_attempt_job_item"),
        Index("ix_stage_attempt_job", "job_id"),
    )
