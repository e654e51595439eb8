"""Stage 2: fuzzy trigram matching.

Scores every supplier sharing trigrams with an item's normalized part number:
- part similarity (weight 0.7) on normalized part numbers
- description similarity (weight 0.3) on lowercase descriptions

Filters: part similarity >= FUZZY_PART_THRESHOLD, description similarity
>= FUZZY_DESCRIPTION_THRESHOLD, normalized part number length >= 3.
Exactly one candidate (rank 1) is kept per item.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import settings
from models.match_candidate import MatchMethod, TargetType
from .catalog_cache import SupplierCatalogCache, CatalogSnapshot
from .ports import CatalogRecord, CandidateProposal, StageResult, StageMatcherPort
from .trigram import TrigramIndex, trigram_similarity

logger = logging.getLogger(__name__)

FUZZY_STAGE = 2
PART_WEIGHT = 0.7
DESCRIPTION_WEIGHT = 0.3

# (minimum score, confidence), checked top-down
CONFIDENCE_BANDS = (
    (0.90, 0.95),
    (0.85, 0.90),
    (0.80, 0.85),
    (0.75, 0.80),
    (0.70, 0.75),
)
CONFIDENCE_FLOOR = 0.70


def band_confidence(score: float) -> float:
    for minimum, confidence in CONFIDENCE_BANDS:
        if score >= minimum:
            return confidence
    return CONFIDENCE_FLOOR


def combined_score(part_similarity: float, description_similarity: float) -> float:
    return part_similarity * PART_WEIGHT + description_similarity * DESCRIPTION_WEIGHT


def fuzzy_confidence(part_similarity: float, description_similarity: float, basis: str = "part_number") -> float:
    """Map similarities to a banded confidence.

    basis="part_number" bands the part similarity alone;
    basis="combined" bands the weighted combined score.
    """
    if basis == "combined":
        return band_confidence(combined_score(part_similarity, description_similarity))
    if basis == "part_number":
        return band_confidence(part_similarity)
    raise ValueError(f"Unknown fuzzy confidence basis: {basis}")


def _build_part_index(snapshot: CatalogSnapshot) -> TrigramIndex:
    return TrigramIndex(
        (supplier.id, supplier.part_number_norm)
        for supplier in snapshot.suppliers
        if supplier.part_number_norm
    )


class FuzzyMatcher(StageMatcherPort):
    """Trigram similarity matcher (stage 2)."""

    stage = FUZZY_STAGE

    def __init__(
        self,
        db: Session,
        catalog_cache: SupplierCatalogCache,
        part_threshold: Optional[float] = None,
        description_threshold: Optional[float] = None,
        confidence_basis: Optional[str] = None,
        max_items: Optional[int] = None
    ):
        self.db = db
        self.catalog_cache = catalog_cache
        self.part_threshold = settings.FUZZY_PART_THRESHOLD if part_threshold is None else part_threshold
        self.description_threshold = (
            settings.FUZZY_DESCRIPTION_THRESHOLD if description_threshold is None else description_threshold
        )
        self.confidence_basis = confidence_basis or settings.FUZZY_CONFIDENCE_BASIS
        self.max_items = max_items or settings.FUZZY_MAX_ITEMS_PER_RUN
        self.min_part_length = settings.FUZZY_MIN_PART_LENGTH

    def match_chunk(self, project_id: UUID, items: List[CatalogRecord], ledger=None) -> StageResult:
        snapshot = self.catalog_cache.get(self.db, project_id)
        part_index = snapshot.derived("fuzzy_part_index", _build_part_index)
        suppliers = snapshot.supplier_by_id()

        result = StageResult(stats={"too_short": 0, "no_description": 0, "matched": 0})

        for item in items[:self.max_items]:
            result.attempted_ids.append(item.id)

            if len(item.part_number_norm) < self.min_part_length:
                result.stats["too_short"] += 1
                continue
            if not item.description:
                # Description floor cannot be met
                result.stats["no_description"] += 1
                continue

            proposal = self._best_candidate(item, part_index, suppliers)
            if proposal:
                result.proposals.append(proposal)
                result.stats["matched"] += 1

        if len(items) > self.max_items:
            logger.info(f"Fuzzy run capped at {self.max_items} of {len(items)} items")

        logger.info(
            f"Fuzzy chunk for project {project_id}: {len(result.attempted_ids)} items, "
            f"{result.stats['matched']} matched"
        )
        return result

    def _best_candidate(self, item: CatalogRecord, part_index: TrigramIndex, suppliers: dict) -> Optional[CandidateProposal]:
        description = item.description.lower()
        best = None

        for supplier_id, part_similarity in part_index.search(item.part_number_norm, self.part_threshold):
            supplier = suppliers[supplier_id]
            if len(supplier.part_number_norm) < self.min_part_length or not supplier.description:
                continue

            description_similarity = trigram_similarity(description, supplier.description.lower())
            if description_similarity < self.description_threshold:
                continue

            score = combined_score(part_similarity, description_similarity)
            rank_key = (-score, str(supplier.id))
            if best is None or rank_key < best[0]:
                best = (rank_key, supplier, part_similarity, description_similarity, score)

        if best is None:
            return None

        _, supplier, part_similarity, description_similarity, score = best
        confidence = fuzzy_confidence(part_similarity, description_similarity, self.confidence_basis)

        return CandidateProposal(
            source_item_id=item.id,
            target_id=supplier.id,
            target_type=TargetType.SUPPLIER,
            method=MatchMethod.FUZZY,
            match_stage=FUZZY_STAGE,
            confidence=confidence,
            features={
                "partSimilarity": round(part_similarity, 4),
                "descriptionSimilarity": round(description_similarity, 4),
                "combinedScore": round(score, 4),
                "confidenceBasis": self.confidence_basis,
                "storePartNumber": item.part_number,
                "supplierPartNumber": supplier.part_number,
                "storeLineCode": item.line_code,
                "supplierLineCode": supplier.line_code,
                "storeDescription": item.description,
                "supplierDescription": supplier.description,
                "reason": (
                    f"Fuzzy match: {part_similarity * 100:.0f}% part number + "
                    f"{description_similarity * 100:.0f}% description similarity "
                    f"(combined: {score * 100:.0f}%)"
                ),
            },
        )
