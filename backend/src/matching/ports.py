"""Matching ports and value types shared by all stages.

Stages receive detached CatalogRecord snapshots (from the catalog cache or
the unmatched query) and return CandidateProposals inside a StageResult.
They never write to the database; the orchestrator persists the result
through the candidate writer once cancellation has been checked.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from models.match_candidate import MatchMethod, TargetType


@dataclass(frozen=True)
class CatalogRecord:
    """Immutable snapshot of one catalog item.

    Attributes:
        id: CatalogItem UUID
        part_number: Raw part number as imported
        part_number_norm: Normalized part number
        line_code: Raw line code (brand/manufacturer)
        description: Free-text description
        cost: Unit cost (None if unknown)
    """
    id: UUID
    part_number: str
    part_number_norm: str
    line_code: Optional[str] = None
    description: Optional[str] = None
    cost: Optional[float] = None

    @classmethod
    def from_item(cls, item) -> "CatalogRecord":
        cost = item.cost
        if isinstance(cost, Decimal):
            cost = float(cost)
        return cls(
            id=item.id,
            part_number=item.part_number or "",
            part_number_norm=item.part_number_norm or "",
            line_code=item.line_code,
            description=item.description,
            cost=cost,
        )


@dataclass(frozen=True)
class InterchangeRecord:
    """Immutable snapshot of one interchange row."""
    id: UUID
    source_part_number: str
    source_part_number_norm: str
    vendor_part_number: str
    vendor_part_number_norm: str
    vendor: Optional[str] = None
    line_code: Optional[str] = None
    confidence: Optional[float] = None

    @classmethod
    def from_row(cls, row) -> "InterchangeRecord":
        return cls(
            id=row.id,
            source_part_number=row.source_part_number or "",
            source_part_number_norm=row.source_part_number_norm or "",
            vendor_part_number=row.vendor_part_number or "",
            vendor_part_number_norm=row.vendor_part_number_norm or "",
            vendor=row.vendor,
            line_code=row.line_code,
            confidence=row.confidence,
        )


@dataclass
class CandidateProposal:
    """A candidate a stage wants persisted.

    Attributes:
        source_item_id: SOURCE catalog item
        target_id: SUPPLIER item id, or interchange row id for INTERCHANGE_ONLY
        target_type: SUPPLIER | INTERCHANGE_ONLY
        method: Matching method
        match_stage: 0-4
        confidence: 0.0-1.0
        features: Stage-specific explanation payload
    """
    source_item_id: UUID
    target_id: UUID
    method: MatchMethod
    match_stage: int
    confidence: float
    target_type: TargetType = TargetType.SUPPLIER
    features: dict = field(default_factory=dict)


@dataclass
class StageResult:
    """Outcome of running a stage over one chunk.

    Attributes:
        proposals: Candidates to persist
        attempted_ids: Source items the stage evaluated (matched or not)
        budget_exhausted: The cost ceiling stopped the stage before the chunk ended
        cost_micros: Estimated spend charged during the chunk
        stats: Stage-specific counters for logging
    """
    proposals: List[CandidateProposal] = field(default_factory=list)
    attempted_ids: List[UUID] = field(default_factory=list)
    budget_exhausted: bool = False
    cost_micros: int = 0
    stats: dict = field(default_factory=dict)

    @property
    def matched_ids(self) -> set:
        return {p.source_item_id for p in self.proposals}


class StageMatcherPort(ABC):
    """Port interface for one pipeline stage.

    Implementations:
    - ExactMatcher: normalized equality and interchange (stage 1)
    - FuzzyMatcher: trigram similarity (stage 2)
    - AIMatcher: LLM strategies over selected candidates (stage 3)
    - SupersessionMatcher: replacement-part lookup (stage 3)
    - WebSearchMatcher: web evidence with batched LLM evaluation (stage 4)
    """

    stage: int

    @abstractmethod
    def match_chunk(self, project_id: UUID, items: List[CatalogRecord], ledger=None) -> StageResult:
        """Match a chunk of unmatched SOURCE items.

        Args:
            project_id: Project UUID
            items: SOURCE items still unmatched at this stage
            ledger: CostLedger for paid stages (ignored by free stages)

        Returns:
            StageResult with proposals and attempted item ids

        Raises:
            MatcherError: If matching fails due to system error
        """
        pass


class MatcherError(Exception):
    """Exception raised for matching errors."""
    pass


def parse_confidence(value) -> Optional[float]:
    """Confidence from LLM JSON, clamped to [0, 1].

    Returns None for anything that is not a finite non-negative number
    (strings, booleans, NaN, infinity), which callers treat as no match.
    """
    if isinstance(value, bool):
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(confidence) or confidence < 0:
        return None
    return min(confidence, 1.0)
