"""Rule learning from human review decisions.

- approve → POSITIVE_MAP on (store, supplier)
- reject  → NEGATIVE_BLOCK on (store, supplier)
- correct → NEGATIVE_BLOCK on (store, supplier) + POSITIVE_MAP on (store, corrected)

An existing enabled rule with the same type, pair, scope and project is
reused instead of creating a duplicate.
"""

import csv
import io
import logging
from typing import List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from matching.normalizer import normalize
from models.match_candidate import MatchCandidate
from models.master_rule import MasterRule, MasterRuleType, MasterRuleScope
from models.project import Project
from .schemas import ReviewDecision, DecisionType

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "match_candidate_id",
    "store_part_number",
    "supplier_part_number",
    "line_code",
    "decision",
    "corrected_supplier_part_number",
)


def _resolve_project(db: Session, decision: ReviewDecision) -> Optional[UUID]:
    project_id = decision.project_id

    if project_id is None and decision.match_candidate_id is not None:
        candidate = db.get(MatchCandidate, decision.match_candidate_id)
        if candidate is not None:
            project_id = candidate.project_id

    if project_id is not None and db.get(Project, project_id) is None:
        logger.warning(f"Unknown project {project_id} in review decision; rule stored without project")
        return None

    return project_id


def _find_equivalent(
    db: Session,
    rule_type: MasterRuleType,
    store_norm: str,
    supplier_norm: str,
    scope: MasterRuleScope,
    project_id: Optional[UUID]
) -> Optional[MasterRule]:
    query = db.query(MasterRule).filter(
        MasterRule.rule_type == rule_type.value,
        MasterRule.store_part_number_norm == store_norm,
        MasterRule.supplier_part_number_norm == supplier_norm,
        MasterRule.scope == scope.value,
        MasterRule.enabled.is_(True)
    )
    if project_id is None:
        query = query.filter(MasterRule.project_id.is_(None))
    else:
        query = query.filter(MasterRule.project_id == project_id)
    return query.first()


def _ensure_rule(
    db: Session,
    rule_type: MasterRuleType,
    decision: ReviewDecision,
    supplier_part_number: str,
    scope: MasterRuleScope,
    project_id: Optional[UUID],
    created_by: Optional[str]
) -> Tuple[MasterRule, bool]:
    """Return (rule, created)."""
    store_norm = normalize(decision.store_part_number)
    supplier_norm = normalize(supplier_part_number)

    existing = _find_equivalent(db, rule_type, store_norm, supplier_norm, scope, project_id)
    if existing is not None:
        return existing, False

    rule = MasterRule(
        rule_type=rule_type.value,
        scope=scope.value,
        project_id=project_id,
        store_part_number=decision.store_part_number,
        store_part_number_norm=store_norm,
        supplier_part_number=supplier_part_number,
        supplier_part_number_norm=supplier_norm,
        line_code=decision.line_code,
        confidence=1.0,
        enabled=True,
        created_by=created_by,
        match_candidate_id=decision.match_candidate_id,
    )
    db.add(rule)
    db.flush()
    return rule, True


def learn_from_decision(db: Session, decision: ReviewDecision, created_by: Optional[str] = None) -> List[MasterRule]:
    """Create the rules implied by one decision. Returns the newly created rules."""
    if not normalize(decision.store_part_number) or not normalize(decision.supplier_part_number):
        logger.info(f"Skipping decision with empty part number: {decision.store_part_number!r}")
        return []

    project_id = _resolve_project(db, decision)
    scope = decision.scope
    if scope == MasterRuleScope.PROJECT_SPECIFIC and project_id is None:
        scope = MasterRuleScope.GLOBAL

    planned: List[Tuple[MasterRuleType, str]] = []
    if decision.decision == DecisionType.APPROVE:
        planned.append((MasterRuleType.POSITIVE_MAP, decision.supplier_part_number))
    elif decision.decision == DecisionType.REJECT:
        planned.append((MasterRuleType.NEGATIVE_BLOCK, decision.supplier_part_number))
    elif decision.decision == DecisionType.CORRECT:
        corrected = decision.corrected_supplier_part_number
        if not corrected or not normalize(corrected):
            logger.info(f"Skipping correction without corrected part number for {decision.store_part_number}")
            return []
        planned.append((MasterRuleType.NEGATIVE_BLOCK, decision.supplier_part_number))
        planned.append((MasterRuleType.POSITIVE_MAP, corrected))

    created = []
    for rule_type, supplier_part_number in planned:
        rule, is_new = _ensure_rule(db, rule_type, decision, supplier_part_number, scope, project_id, created_by)
        if is_new:
            created.append(rule)

    return created


def learn_from_bulk_decisions(
    db: Session,
    decisions: List[ReviewDecision],
    created_by: Optional[str] = None
) -> dict:
    """Learn from a batch of decisions.

    Returns:
        {"created": int, "skipped": int, "errors": [str]}
    """
    created = 0
    skipped = 0
    errors = []

    for index, decision in enumerate(decisions, start=1):
        try:
            rules = learn_from_decision(db, decision, created_by=created_by)
        except ValueError as e:
            errors.append(f"Decision {index}: {e}")
            continue

        if rules:
            created += len(rules)
        else:
            skipped += 1

    logger.info(f"Learned {created} master rules from {len(decisions)} decisions ({skipped} skipped)")
    return {"created": created, "skipped": skipped, "errors": errors}


def parse_decisions_csv(text: str, project_id: Optional[UUID] = None) -> Tuple[List[ReviewDecision], List[str]]:
    """Parse a review CSV into decisions.

    Returns:
        (decisions, errors); rows that fail validation are reported, not raised
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if reader.fieldnames is None:
        return [], ["CSV is empty"]

    header = {name.strip().lower() for name in reader.fieldnames if name}
    missing = [c for c in ("store_part_number", "supplier_part_number", "decision") if c not in header]
    if missing:
        return [], [f"Missing required columns: {', '.join(missing)}"]

    decisions = []
    errors = []

    for line_number, row in enumerate(reader, start=2):
        values = {
            (key or "").strip().lower(): (value or "").strip()
            for key, value in row.items()
        }
        data = {column: values.get(column) or None for column in CSV_COLUMNS}
        data["project_id"] = project_id

        try:
            decisions.append(ReviewDecision(**data))
        except ValidationError as e:
            errors.append(f"Line {line_number}: {e.errors()[0]['msg']}")

    return decisions, errors
