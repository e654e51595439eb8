"""InterchangeRow SQLAlchemy model (read-only reference data)."""

from uuid import uuid4

from sqlalchemy import Column, Text, Float, ForeignKey, Index, TIMESTAMP, Uuid

from .base import Base, utcnow


class InterchangeRow(Base):
    """Maps an inventory-side part number to a vendor-side part number.

    vendor and line_code are optional; filled rows win tie-breaks when more
    than one row bridges the same inventory part.
    """
    __tablename__ = "interchange_row"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("project.id", ondelete="CASCADE"), nullable=False)

    source_part_number = Column(Text, nullable=False)
    source_part_number_norm = Column(Text, nullable=False, default="")
    vendor_part_number = Column(Text, nullable=False)
    vendor_part_number_norm = Column(Text, nullable=False, default="")

    vendor = Column(Text, nullable=True)
    line_code = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)  # NULL → interchange default

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_interchange_source_norm", "project_id", "source_part_number_norm"),
        Index("ix_interchange_vendor_norm", "project_id", "vendor_part_number_norm"),
    )
