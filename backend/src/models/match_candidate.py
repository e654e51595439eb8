"""MatchCandidate SQLAlchemy model.

The central output of the pipeline: one proposed (source item, target)
pairing produced by a matching stage.
"""

from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, Text, Float, Integer, ForeignKey, Index, UniqueConstraint, TIMESTAMP, Uuid
)

from .base import Base, PortableJSONB, utcnow


class MatchMethod(str, PyEnum):
    """Strategy that produced a candidate."""
    MASTER_RULE = "MASTER_RULE"
    EXACT_NORMALIZED = "EXACT_NORMALIZED"
    INTERCHANGE = "INTERCHANGE"
    FUZZY = "FUZZY"
    AI = "AI"
    WEB_SEARCH = "WEB_SEARCH"
    SUPERSESSION = "SUPERSESSION"


class MatchStatus(str, PyEnum):
    """Review status of a candidate."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class TargetType(str, PyEnum):
    """What target_id points at."""
    SUPPLIER = "SUPPLIER"
    INTERCHANGE_ONLY = "INTERCHANGE_ONLY"


class MatchCandidate(Base):
    """Proposed match between a SOURCE catalog item and a target.

    Stage numbers:
    - 0: master rules (auto-confirmed)
    - 1: exact / interchange
    - 2: fuzzy
    - 3: AI and supersession
    - 4: web search

    (source_item_id, target_id, method) is unique so every writer can insert
    with skip-on-conflict semantics.
    """
    __tablename__ = "match_candidate"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("project.id", ondelete="CASCADE"), nullable=False)
    source_item_id = Column(Uuid, ForeignKey("catalog_item.id", ondelete="CASCADE"), nullable=False)

    target_type = Column(Text, nullable=False, default=TargetType.SUPPLIER.value)
    target_id = Column(Uuid, nullable=False)  # catalog_item.id or interchange_row.id

    method = Column(Text, nullable=False)
    match_stage = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=False)
    status = Column(Text, nullable=False, default=MatchStatus.PENDING.value)
    features = Column(PortableJSONB, nullable=False, default=dict)

    job_id = Column(Uuid, nullable=True)  # Job that produced the candidate (NULL for rules/manual)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("source_item_id", "target_id", "method", name="uq_match_candidate_pair_method"),
        Index("ix_match_candidate_project_stage", "project_id", "match_stage"),
        Index("ix_match_candidate_source", "source_item_id"),
    )

    def to_dict(self):
        """Convert candidate to dictionary representation."""
        return {
            "id": str(self.id),
            "project_id": str(self.project_id),
            "source_item_id": str(self.source_item_id),
            "target_type": self.target_type,
            "target_id": str(self.target_id),
            "method": self.method,
            "match_stage": self.match_stage,
            "confidence": self.confidence,
            "status": self.status,
            "features": self.features or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
