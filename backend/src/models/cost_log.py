"""
CostLogEntry model - Append-only record of estimated spend.

Each paid operation (AI item evaluation, web search, supersession lookup)
is charged here and added to project.current_spend_micros.
"""

from uuid import uuid4

from sqlalchemy import Column, Text, Integer, BigInteger, ForeignKey, Index, TIMESTAMP, Uuid

from .base import Base, utcnow


class CostLogEntry(Base):
    """
    Cost Log Entry - estimated cost of one paid operation.

    Costs are estimates (fixed per-operation prices), not metered billing.
    """
    __tablename__ = "cost_log"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("project.id", ondelete="CASCADE"), nullable=False)
    job_id = Column(Uuid, nullable=True)
    operation = Column(Text, nullable=False)  # ai_match | web_search | supersession
    cost_micros = Column(BigInteger, nullable=False)
    items_processed = Column(Integer, nullable=False, default=1)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_cost_log_project", "project_id", "created_at"),
    )
