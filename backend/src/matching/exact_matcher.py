"""Stage 1: exact normalized and interchange matching.

One algorithm with a configurable tie-break policy:

- interchange_first: an interchange hit takes precedence; direct exact
  candidates are emitted only for items without one.
- prefix_strip: direct exact candidates first, then a retry with a
  3-character line-code prefix stripped from the part number, then
  interchange.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from config import settings
from models.match_candidate import MatchCandidate, MatchMethod, TargetType
from .catalog_cache import SupplierCatalogCache, CatalogSnapshot
from .normalizer import normalize_line_code, is_complex_part
from .ports import (
    CatalogRecord,
    InterchangeRecord,
    CandidateProposal,
    StageResult,
    StageMatcherPort,
)

logger = logging.getLogger(__name__)

EXACT_STAGE = 1
TIE_BREAK_POLICIES = ("interchange_first", "prefix_strip")
PREFIX_LENGTH = 3


def exact_confidence(source: CatalogRecord, supplier: CatalogRecord) -> float:
    """Confidence tier for two items whose normalized part numbers are equal.

    1.0  raw part number and raw line code identical (two absent line codes
         count as identical)
    0.98 both line codes present and normalize equal
    0.95 complex part number (line code ignored)
    0.92 one or both line codes absent
    0.90 otherwise
    """
    source_lc = normalize_line_code(source.line_code)
    supplier_lc = normalize_line_code(supplier.line_code)

    if (
        source.part_number == supplier.part_number
        and (source.line_code or None) == (supplier.line_code or None)
    ):
        return 1.0
    if source_lc and supplier_lc and source_lc == supplier_lc:
        return 0.98
    if is_complex_part(source.part_number_norm):
        return 0.95
    if not source_lc or not supplier_lc:
        return 0.92
    return 0.90


def line_codes_compatible(source: CatalogRecord, supplier: CatalogRecord) -> bool:
    """Relaxed line-code constraint: equal, either absent, or a complex part."""
    source_lc = normalize_line_code(source.line_code)
    supplier_lc = normalize_line_code(supplier.line_code)

    if not source_lc or not supplier_lc:
        return True
    if source_lc == supplier_lc:
        return True
    return is_complex_part(source.part_number_norm)


def validate_cost(
    confidence: float,
    source_cost: Optional[float],
    supplier_cost: Optional[float]
) -> Tuple[float, Optional[float]]:
    """Adjust confidence by cost ratio.

    Returns (confidence, ratio); ratio is None when either cost is missing.
    A ratio above 5 signals a unit-of-measure mismatch and halves confidence;
    below 1.05 adds 0.05 (capped at 1.0).
    """
    if not source_cost or not supplier_cost or source_cost <= 0 or supplier_cost <= 0:
        return confidence, None

    ratio = max(source_cost, supplier_cost) / min(source_cost, supplier_cost)

    if ratio > 5:
        return confidence * 0.5, ratio
    if ratio < 1.05:
        return min(1.0, confidence + 0.05), ratio
    return confidence, ratio


def strip_line_code_prefix(norm: str, line_code: Optional[str]) -> Optional[str]:
    """Strip a 3-character line-code prefix ("ABH12957" with line ABH → "12957")."""
    lc = normalize_line_code(line_code)
    if len(lc) != PREFIX_LENGTH or not norm.startswith(lc):
        return None

    remainder = norm[PREFIX_LENGTH:]
    if len(remainder) < 3:
        return None
    return remainder


def unmatch_project(db: Session, project_id: UUID) -> int:
    """Delete every candidate of a project so the pipeline can start over."""
    deleted = db.query(MatchCandidate).filter(
        MatchCandidate.project_id == project_id
    ).delete(synchronize_session=False)

    logger.info(f"Unmatched project {project_id}: deleted {deleted} candidates")
    return deleted


class ExactMatcher(StageMatcherPort):
    """Exact normalized and interchange matcher (stage 1).

    Args:
        db: Database session
        catalog_cache: Supplier catalog cache
        tie_break_policy: interchange_first | prefix_strip (defaults to settings)
        cost_validation: Apply cost-ratio validation (defaults to settings)
    """

    stage = EXACT_STAGE

    def __init__(
        self,
        db: Session,
        catalog_cache: SupplierCatalogCache,
        tie_break_policy: Optional[str] = None,
        cost_validation: Optional[bool] = None
    ):
        self.db = db
        self.catalog_cache = catalog_cache
        self.tie_break_policy = tie_break_policy or settings.EXACT_TIE_BREAK_POLICY
        self.cost_validation = settings.EXACT_COST_VALIDATION if cost_validation is None else cost_validation
        self.interchange_default_confidence = settings.INTERCHANGE_DEFAULT_CONFIDENCE
        self.prefix_strip_confidence = settings.PREFIX_STRIP_CONFIDENCE

        if self.tie_break_policy not in TIE_BREAK_POLICIES:
            raise ValueError(
                f"Unknown tie-break policy: {self.tie_break_policy} (expected one of {TIE_BREAK_POLICIES})"
            )

    def match_chunk(self, project_id: UUID, items: List[CatalogRecord], ledger=None) -> StageResult:
        snapshot = self.catalog_cache.get(self.db, project_id)
        index = snapshot.derived("exact_index", _ExactIndex)
        result = StageResult(stats={
            "exact": 0, "interchange": 0, "interchange_only": 0, "prefix_strip": 0,
            "cost_penalized": 0, "cost_boosted": 0, "cost_no_data": 0,
        })

        for item in items:
            result.attempted_ids.append(item.id)
            if not item.part_number_norm:
                continue

            if self.tie_break_policy == "interchange_first":
                proposals = self._interchange(item, index, result.stats)
                if not proposals:
                    proposals = self._direct(item, index, result.stats)
            else:
                proposals = self._direct(item, index, result.stats)
                if not proposals:
                    proposals = self._prefix_stripped(item, index, result.stats)
                if not proposals:
                    proposals = self._interchange(item, index, result.stats)

            result.proposals.extend(proposals)

        logger.info(
            f"Exact chunk for project {project_id} ({self.tie_break_policy}): "
            f"{len(items)} items, {len(result.matched_ids)} matched, stats={result.stats}"
        )
        return result

    def _direct(self, item: CatalogRecord, index: "_ExactIndex", stats: dict) -> List[CandidateProposal]:
        proposals = []
        for supplier in index.by_norm.get(item.part_number_norm, ()):
            if not line_codes_compatible(item, supplier):
                continue
            confidence = exact_confidence(item, supplier)
            proposals.append(self._exact_proposal(item, supplier, confidence, "direct", stats))

        if proposals:
            stats["exact"] += 1
        return proposals

    def _prefix_stripped(self, item: CatalogRecord, index: "_ExactIndex", stats: dict) -> List[CandidateProposal]:
        proposals = []

        stripped = strip_line_code_prefix(item.part_number_norm, item.line_code)
        if stripped:
            for supplier in index.by_norm.get(stripped, ()):
                if line_codes_compatible(item, supplier):
                    proposals.append(self._exact_proposal(
                        item, supplier, self.prefix_strip_confidence, "prefix_stripped_source", stats
                    ))

        if not proposals:
            for supplier in index.by_stripped_norm.get(item.part_number_norm, ()):
                if line_codes_compatible(item, supplier):
                    proposals.append(self._exact_proposal(
                        item, supplier, self.prefix_strip_confidence, "prefix_stripped_supplier", stats
                    ))

        if proposals:
            stats["prefix_strip"] += 1
        return proposals

    def _exact_proposal(
        self,
        item: CatalogRecord,
        supplier: CatalogRecord,
        confidence: float,
        variation: str,
        stats: dict
    ) -> CandidateProposal:
        features = {
            "matchedVariation": variation,
            "storePartNumber": item.part_number,
            "supplierPartNumber": supplier.part_number,
            "storeLineCode": item.line_code,
            "supplierLineCode": supplier.line_code,
            "normalizedPartNumber": item.part_number_norm,
        }

        if self.cost_validation:
            adjusted, ratio = validate_cost(confidence, item.cost, supplier.cost)
            if ratio is None:
                stats["cost_no_data"] += 1
            else:
                features["costRatio"] = round(ratio, 4)
                features["originalConfidence"] = confidence
                if adjusted < confidence:
                    stats["cost_penalized"] += 1
                elif adjusted > confidence:
                    stats["cost_boosted"] += 1
                confidence = adjusted

        return CandidateProposal(
            source_item_id=item.id,
            target_id=supplier.id,
            target_type=TargetType.SUPPLIER,
            method=MatchMethod.EXACT_NORMALIZED,
            match_stage=EXACT_STAGE,
            confidence=confidence,
            features=features,
        )

    def _interchange(self, item: CatalogRecord, index: "_ExactIndex", stats: dict) -> List[CandidateProposal]:
        hits = [(row, "SOURCE") for row in index.interchange_by_source.get(item.part_number_norm, ())]
        hits += [(row, "VENDOR") for row in index.interchange_by_vendor.get(item.part_number_norm, ())]
        if not hits:
            return []

        # Vendor-filled rows first, then line-code-filled, then stable id
        hits.sort(key=lambda hit: (not hit[0].vendor, not hit[0].line_code, str(hit[0].id)))
        row, matched_on = hits[0]

        opposite = row.vendor_part_number_norm if matched_on == "SOURCE" else row.source_part_number_norm
        confidence = row.confidence if row.confidence is not None else self.interchange_default_confidence

        features = {
            "interchangeId": str(row.id),
            "matchedOn": matched_on,
            "storePartNumber": item.part_number,
            "interchangeSourcePartNumber": row.source_part_number,
            "interchangeVendorPartNumber": row.vendor_part_number,
            "vendor": row.vendor,
        }

        suppliers = index.by_norm.get(opposite, ()) if opposite else ()
        if suppliers:
            supplier = suppliers[0]
            features["supplierPartNumber"] = supplier.part_number
            stats["interchange"] += 1
            return [CandidateProposal(
                source_item_id=item.id,
                target_id=supplier.id,
                target_type=TargetType.SUPPLIER,
                method=MatchMethod.INTERCHANGE,
                match_stage=EXACT_STAGE,
                confidence=confidence,
                features=features,
            )]

        stats["interchange_only"] += 1
        return [CandidateProposal(
            source_item_id=item.id,
            target_id=row.id,
            target_type=TargetType.INTERCHANGE_ONLY,
            method=MatchMethod.INTERCHANGE,
            match_stage=EXACT_STAGE,
            confidence=confidence,
            features=features,
        )]


class _ExactIndex:
    """Hash indexes over one catalog snapshot."""

    def __init__(self, snapshot: CatalogSnapshot):
        self.by_norm: Dict[str, List[CatalogRecord]] = defaultdict(list)
        self.by_stripped_norm: Dict[str, List[CatalogRecord]] = defaultdict(list)
        self.interchange_by_source: Dict[str, List[InterchangeRecord]] = defaultdict(list)
        self.interchange_by_vendor: Dict[str, List[InterchangeRecord]] = defaultdict(list)

        # Snapshot suppliers are in id order, so list[0] is the lowest id
        for supplier in snapshot.suppliers:
            if not supplier.part_number_norm:
                continue
            self.by_norm[supplier.part_number_norm].append(supplier)
            stripped = strip_line_code_prefix(supplier.part_number_norm, supplier.line_code)
            if stripped:
                self.by_stripped_norm[stripped].append(supplier)

        for row in snapshot.interchange:
            if row.source_part_number_norm:
                self.interchange_by_source[row.source_part_number_norm].append(row)
            if row.vendor_part_number_norm:
                self.interchange_by_vendor[row.vendor_part_number_norm].append(row)
