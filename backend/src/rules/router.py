"""Master rule API endpoints (learning loop and administration)"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_actor_id
from models.master_rule import MasterRuleType, MasterRuleScope
from models.project import Project
from .admin import RuleNotFoundError, enable_rule, disable_rule, delete_rule, list_rules
from .engine import apply_master_rules
from .learner import learn_from_bulk_decisions, parse_decisions_csv
from .schemas import (
    BulkDecisionRequest,
    BulkLearnResult,
    MasterRuleResponse,
    RuleApplicationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/master-rules", tags=["master-rules"])


@router.get("", response_model=List[MasterRuleResponse])
def list_master_rules(
    enabled: Optional[bool] = Query(None),
    rule_type: Optional[MasterRuleType] = Query(None),
    scope: Optional[MasterRuleScope] = Query(None),
    project_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    return list_rules(
        db,
        enabled=enabled,
        rule_type=rule_type,
        scope=scope,
        project_id=project_id,
        search=search,
        limit=limit,
        offset=offset
    )


@router.post("/decisions", response_model=BulkLearnResult)
def learn_from_decisions(
    request: BulkDecisionRequest,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Learn rules from a batch of review decisions."""
    result = learn_from_bulk_decisions(db, request.decisions, created_by=actor_id)
    db.commit()
    return result


@router.post("/import", response_model=BulkLearnResult)
def import_decisions_csv(
    csv_text: str = Body(..., media_type="text/csv"),
    project_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Learn rules from a review CSV export.

    Rows that fail validation are reported in errors; valid rows are still learned.
    """
    decisions, parse_errors = parse_decisions_csv(csv_text, project_id=project_id)
    if not decisions and parse_errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=parse_errors)

    result = learn_from_bulk_decisions(db, decisions, created_by=actor_id)
    db.commit()
    result["errors"] = parse_errors + result["errors"]
    return result


@router.post("/{rule_id}/enable", response_model=MasterRuleResponse)
def enable_master_rule(rule_id: UUID, db: Session = Depends(get_db)):
    try:
        rule = enable_rule(db, rule_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    db.commit()
    db.refresh(rule)
    return rule


@router.post("/{rule_id}/disable", response_model=MasterRuleResponse)
def disable_master_rule(rule_id: UUID, db: Session = Depends(get_db)):
    try:
        rule = disable_rule(db, rule_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_master_rule(rule_id: UUID, db: Session = Depends(get_db)):
    try:
        delete_rule(db, rule_id)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    db.commit()


@router.post("/apply/{project_id}", response_model=RuleApplicationResponse)
def apply_rules_to_project(project_id: UUID, db: Session = Depends(get_db)):
    """Run stage 0 for a project outside of a job."""
    if db.get(Project, project_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {project_id} not found")

    result = apply_master_rules(db, project_id)
    db.commit()
    return RuleApplicationResponse(
        created=result.created,
        blocked=result.blocked,
        rules_applied=result.rules_applied
    )
