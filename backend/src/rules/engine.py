"""Master Rule Engine (stage 0).

Runs before the first chunk of every job:
- POSITIVE_MAP rules create CONFIRMED candidates for every SOURCE x SUPPLIER
  pair carrying the rule's normalized part numbers, unless a candidate for
  the pair already exists.
- NEGATIVE_BLOCK rules delete every candidate of the blocked pair,
  regardless of stage or status.

A pair covered by both kinds of rule ends up blocked.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, Query

from matching.normalizer import normalize_line_code
from models.base import utcnow
from models.catalog_item import CatalogItem, CatalogRole
from models.match_candidate import MatchCandidate, MatchMethod, MatchStatus, TargetType
from models.master_rule import MasterRule, MasterRuleType, MasterRuleScope
from observability.metrics import record_candidate, candidates_blocked_total

logger = logging.getLogger(__name__)

RULE_STAGE = 0


@dataclass
class RuleApplicationResult:
    created: int = 0
    blocked: int = 0
    rules_applied: int = 0


def applicable_rules_query(db: Session, project_id: UUID, rule_type: Optional[MasterRuleType] = None) -> Query:
    """Enabled GLOBAL rules plus the project's PROJECT_SPECIFIC rules."""
    query = db.query(MasterRule).filter(
        MasterRule.enabled.is_(True),
        or_(
            MasterRule.scope == MasterRuleScope.GLOBAL.value,
            and_(
                MasterRule.scope == MasterRuleScope.PROJECT_SPECIFIC.value,
                MasterRule.project_id == project_id
            )
        )
    )
    if rule_type is not None:
        query = query.filter(MasterRule.rule_type == rule_type.value)
    return query.order_by(MasterRule.created_at, MasterRule.id)


def load_block_pairs(db: Session, project_id: UUID) -> Set[Tuple[str, str]]:
    """(store norm, supplier norm) pairs covered by enabled NEGATIVE_BLOCK rules."""
    rows = applicable_rules_query(db, project_id, MasterRuleType.NEGATIVE_BLOCK).with_entities(
        MasterRule.store_part_number_norm,
        MasterRule.supplier_part_number_norm
    ).all()
    return {(row[0], row[1]) for row in rows}


def _items(db: Session, project_id: UUID, role: CatalogRole, norm: str) -> List[CatalogItem]:
    return db.query(CatalogItem).filter(
        CatalogItem.project_id == project_id,
        CatalogItem.role == role.value,
        CatalogItem.part_number_norm == norm
    ).order_by(CatalogItem.id).all()


def _rule_line_code_allows(rule: MasterRule, source: CatalogItem) -> bool:
    rule_lc = normalize_line_code(rule.line_code)
    source_lc = normalize_line_code(source.line_code)
    return not rule_lc or not source_lc or rule_lc == source_lc


def _apply_positive(db: Session, project_id: UUID, rule: MasterRule) -> int:
    if not rule.store_part_number_norm or not rule.supplier_part_number_norm:
        return 0

    sources = [
        s for s in _items(db, project_id, CatalogRole.SOURCE, rule.store_part_number_norm)
        if _rule_line_code_allows(rule, s)
    ]
    if not sources:
        return 0
    suppliers = _items(db, project_id, CatalogRole.SUPPLIER, rule.supplier_part_number_norm)
    if not suppliers:
        return 0

    existing = {
        (row[0], row[1]) for row in db.query(
            MatchCandidate.source_item_id, MatchCandidate.target_id
        ).filter(
            MatchCandidate.source_item_id.in_([s.id for s in sources]),
            MatchCandidate.target_id.in_([s.id for s in suppliers])
        ).all()
    }

    created = 0
    for source in sources:
        for supplier in suppliers:
            if (source.id, supplier.id) in existing:
                continue
            db.add(MatchCandidate(
                project_id=project_id,
                source_item_id=source.id,
                target_type=TargetType.SUPPLIER.value,
                target_id=supplier.id,
                method=MatchMethod.MASTER_RULE.value,
                match_stage=RULE_STAGE,
                confidence=rule.confidence,
                status=MatchStatus.CONFIRMED.value,
                features={
                    "ruleId": str(rule.id),
                    "ruleType": rule.rule_type,
                    "scope": rule.scope,
                    "storePartNumber": source.part_number,
                    "supplierPartNumber": supplier.part_number,
                },
            ))
            record_candidate(MatchMethod.MASTER_RULE.value, rule.confidence)
            created += 1

    return created


def _apply_negative(db: Session, project_id: UUID, rule: MasterRule) -> int:
    source_ids = select(CatalogItem.id).where(
        CatalogItem.project_id == project_id,
        CatalogItem.role == CatalogRole.SOURCE.value,
        CatalogItem.part_number_norm == rule.store_part_number_norm
    )
    supplier_ids = select(CatalogItem.id).where(
        CatalogItem.project_id == project_id,
        CatalogItem.role == CatalogRole.SUPPLIER.value,
        CatalogItem.part_number_norm == rule.supplier_part_number_norm
    )

    return db.query(MatchCandidate).filter(
        MatchCandidate.project_id == project_id,
        MatchCandidate.source_item_id.in_(source_ids),
        MatchCandidate.target_id.in_(supplier_ids)
    ).delete(synchronize_session=False)


def apply_master_rules(db: Session, project_id: UUID) -> RuleApplicationResult:
    """Apply every applicable rule to a project. Caller owns the commit."""
    result = RuleApplicationResult()
    rules = applicable_rules_query(db, project_id).all()
    if not rules:
        return result

    positives = [r for r in rules if r.rule_type == MasterRuleType.POSITIVE_MAP.value]
    negatives = [r for r in rules if r.rule_type == MasterRuleType.NEGATIVE_BLOCK.value]
    blocked_pairs = {(r.store_part_number_norm, r.supplier_part_number_norm) for r in negatives}
    now = utcnow()

    for rule in positives:
        if (rule.store_part_number_norm, rule.supplier_part_number_norm) in blocked_pairs:
            continue
        created = _apply_positive(db, project_id, rule)
        if created:
            rule.applied_count = (rule.applied_count or 0) + created
            rule.last_applied_at = now
            result.created += created
            result.rules_applied += 1

    # Positive candidates must be visible to the bulk deletes below
    db.flush()

    for rule in negatives:
        deleted = _apply_negative(db, project_id, rule)
        if deleted:
            rule.applied_count = (rule.applied_count or 0) + deleted
            rule.last_applied_at = now
            result.blocked += deleted
            result.rules_applied += 1

    if result.blocked:
        candidates_blocked_total.labels(source="rule_engine").inc(result.blocked)

    logger.info(
        f"Master rules for project {project_id}: {len(rules)} rules, "
        f"{result.created} confirmed candidates created, {result.blocked} candidates blocked"
    )
    return result
