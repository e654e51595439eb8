"""Project SQLAlchemy model.

Projects are owned by the external project-management collaborator. The
matching core only reads and writes the stage cursor and the budget fields.
"""

from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import Column, Text, BigInteger, TIMESTAMP, Uuid

from .base import Base, utcnow


class ProjectStage(str, PyEnum):
    """Overall pipeline position of a project.

    EXACT → FUZZY → AI → WEB_SEARCH → REVIEW
    """
    EXACT = "EXACT"
    FUZZY = "FUZZY"
    AI = "AI"
    WEB_SEARCH = "WEB_SEARCH"
    REVIEW = "REVIEW"


class Project(Base):
    """Matching project with stage cursor and spend tracking.

    budget_limit_micros = NULL means unlimited spend.
    """
    __tablename__ = "project"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    current_stage = Column(Text, nullable=False, default=ProjectStage.EXACT.value)

    # Cost ledger totals (micro-USD)
    budget_limit_micros = Column(BigInteger, nullable=True)
    current_spend_micros = Column(BigInteger, nullable=False, default=0)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Convert project to dictionary representation."""
        return {
            "id": str(self.id),
            "name": self.name,
            "current_stage": self.current_stage,
            "budget_limit_micros": self.budget_limit_micros,
            "current_spend_micros": self.current_spend_micros,
        }
