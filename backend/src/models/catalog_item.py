"""CatalogItem SQLAlchemy model.

One row per inventory (SOURCE) or supplier (SUPPLIER) part. Rows are written
by the import pipeline and never modified by matching.
"""

from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import Column, Text, Numeric, ForeignKey, Index, TIMESTAMP, Uuid

from .base import Base, utcnow


class CatalogRole(str, PyEnum):
    """Which side of the linkage a catalog item belongs to."""
    SOURCE = "SOURCE"
    SUPPLIER = "SUPPLIER"


class CatalogItem(Base):
    """Automotive part record from the inventory or a supplier catalog.

    part_number_norm is populated at import time with matching.normalizer.normalize
    so set-based joins can use an index.
    """
    __tablename__ = "catalog_item"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("project.id", ondelete="CASCADE"), nullable=False)
    role = Column(Text, nullable=False)  # SOURCE | SUPPLIER

    part_number = Column(Text, nullable=False)
    part_number_norm = Column(Text, nullable=False, default="")
    line_code = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    cost = Column(Numeric(12, 4), nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_catalog_item_project_role", "project_id", "role"),
        Index("ix_catalog_item_norm", "project_id", "role", "part_number_norm"),
    )

    def to_dict(self):
        """Convert catalog item to dictionary representation."""
        return {
            "id": str(self.id),
            "project_id": str(self.project_id),
            "role": self.role,
            "part_number": self.part_number,
            "part_number_norm": self.part_number_norm,
            "line_code": self.line_code,
            "description": self.description,
            "cost": float(self.cost) if self.cost is not None else None,
        }
