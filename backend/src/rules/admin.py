"""Master rule administration (enable, disable, delete, list)."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from models.master_rule import MasterRule, MasterRuleType, MasterRuleScope

logger = logging.getLogger(__name__)


class RuleNotFoundError(Exception):
    """Raised when a master rule id does not exist"""
    pass


def _get_rule(db: Session, rule_id: UUID) -> MasterRule:
    rule = db.get(MasterRule, rule_id)
    if rule is None:
        raise RuleNotFoundError(f"Master rule {rule_id} not found")
    return rule


def enable_rule(db: Session, rule_id: UUID) -> MasterRule:
    rule = _get_rule(db, rule_id)
    rule.enabled = True
    return rule


def disable_rule(db: Session, rule_id: UUID) -> MasterRule:
    rule = _get_rule(db, rule_id)
    rule.enabled = False
    return rule


def delete_rule(db: Session, rule_id: UUID) -> None:
    rule = _get_rule(db, rule_id)
    db.delete(rule)
    logger.info(f"Deleted master rule {rule_id} ({rule.rule_type} {rule.store_part_number} → {rule.supplier_part_number})")


def list_rules(
    db: Session,
    enabled: Optional[bool] = None,
    rule_type: Optional[MasterRuleType] = None,
    scope: Optional[MasterRuleScope] = None,
    project_id: Optional[UUID] = None,
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> List[MasterRule]:
    """List rules, newest first.

    search matches store or supplier part numbers (case-insensitive substring).
    """
    query = db.query(MasterRule)

    if enabled is not None:
        query = query.filter(MasterRule.enabled.is_(enabled))
    if rule_type is not None:
        query = query.filter(MasterRule.rule_type == rule_type.value)
    if scope is not None:
        query = query.filter(MasterRule.scope == scope.value)
    if project_id is not None:
        query = query.filter(MasterRule.project_id == project_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            MasterRule.store_part_number.ilike(pattern),
            MasterRule.supplier_part_number.ilike(pattern)
        ))

    return query.order_by(MasterRule.created_at.desc(), MasterRule.id).offset(offset).limit(limit).all()
