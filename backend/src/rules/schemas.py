"""Pydantic schemas for master rules and review decisions"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from models.master_rule import MasterRuleType, MasterRuleScope


class DecisionType(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CORRECT = "correct"


class ReviewDecision(BaseModel):
    """One human review decision on a match candidate."""
    match_candidate_id: Optional[UUID] = None
    project_id: Optional[UUID] = None
    store_part_number: str = Field(..., min_length=1)
    supplier_part_number: str = Field(..., min_length=1)
    line_code: Optional[str] = None
    decision: DecisionType
    corrected_supplier_part_number: Optional[str] = None
    scope: MasterRuleScope = MasterRuleScope.GLOBAL

    @field_validator("decision", mode="before")
    @classmethod
    def normalize_decision(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("line_code", "corrected_supplier_part_number", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class BulkDecisionRequest(BaseModel):
    decisions: List[ReviewDecision]


class BulkLearnResult(BaseModel):
    created: int
    skipped: int
    errors: List[str] = Field(default_factory=list)


class MasterRuleResponse(BaseModel):
    id: UUID
    rule_type: MasterRuleType
    scope: MasterRuleScope
    project_id: Optional[UUID] = None
    store_part_number: str
    supplier_part_number: str
    line_code: Optional[str] = None
    confidence: float
    enabled: bool
    applied_count: int
    last_applied_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RuleApplicationResponse(BaseModel):
    created: int
    blocked: int
    rules_applied: int
