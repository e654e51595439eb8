"""MasterRule SQLAlchemy model.

Rules learned from human review decisions. GLOBAL rules apply to every
project; PROJECT_SPECIFIC rules only to their project.
"""

from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import Column, Text, Float, Integer, Boolean, ForeignKey, Index, TIMESTAMP, Uuid

from .base import Base, utcnow


class MasterRuleType(str, PyEnum):
    """POSITIVE_MAP always matches a pair, NEGATIVE_BLOCK never does."""
    POSITIVE_MAP = "POSITIVE_MAP"
    NEGATIVE_BLOCK = "NEGATIVE_BLOCK"


class MasterRuleScope(str, PyEnum):
    GLOBAL = "GLOBAL"
    PROJECT_SPECIFIC = "PROJECT_SPECIFIC"


class MasterRule(Base):
    """Learned pairing rule between a store part number and a supplier part number.

    Part numbers are kept raw for display and normalized for matching.
    applied_count / last_applied_at are usage counters updated by the rule engine.
    """
    __tablename__ = "master_rule"

    id = Column(Uuid, primary_key=True, default=uuid4)
    rule_type = Column(Text, nullable=False)
    scope = Column(Text, nullable=False, default=MasterRuleScope.GLOBAL.value)
    project_id = Column(Uuid, ForeignKey("project.id", ondelete="SET NULL"), nullable=True)

    store_part_number = Column(Text, nullable=False)
    store_part_number_norm = Column(Text, nullable=False)
    supplier_part_number = Column(Text, nullable=False)
    supplier_part_number_norm = Column(Text, nullable=False)
    line_code = Column(Text, nullable=True)

    confidence = Column(Float, nullable=False, default=1.0)
    enabled = Column(Boolean, nullable=False, default=True)

    # Usage counters
    applied_count = Column(Integer, nullable=False, default=0)
    last_applied_at = Column(TIMESTAMP(timezone=True), nullable=True)

    # Provenance
    created_by = Column(Text, nullable=True)  # Opaque actor id
    match_candidate_id = Column(Uuid, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_master_rule_pair", "store_part_number_norm", "supplier_part_number_norm", "rule_type"),
        Index("ix_master_rule_enabled_scope", "enabled", "scope"),
    )

    def to_dict(self):
        """Convert rule to dictionary representation."""
        return {
            "id": str(self.id),
            "rule_type": self.rule_type,
            "scope": self.scope,
            "project_id": str(self.project_id) if self.project_id else None,
            "store_part_number": self.store_part_number,
            "supplier_part_number": self.supplier_part_number,
            "line_code": self.line_code,
            "confidence": self.confidence,
            "enabled": self.enabled,
            "applied_count": self.applied_count,
            "last_applied_at": self.last_applied_at.isoformat() if self.last_applied_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
