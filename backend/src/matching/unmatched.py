"""Exclusion rule shared by every stage and the orchestrator.

A SOURCE item is excluded from stage k once it has any candidate (any
status) with match_stage <= k. Remaining work for a job is that set minus
the items the job has already attempted.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import and_, exists
from sqlalchemy.orm import Session, Query

from models.catalog_item import CatalogItem, CatalogRole
from models.match_candidate import MatchCandidate
from models.stage_attempt import StageAttempt


def unmatched_items_query(db: Session, project_id: UUID, stage: int) -> Query:
    """SOURCE items of the project with no candidate at match_stage <= stage."""
    has_candidate = exists().where(
        and_(
            MatchCandidate.source_item_id == CatalogItem.id,
            MatchCandidate.match_stage <= stage
        )
    )

    return db.query(CatalogItem).filter(
        CatalogItem.project_id == project_id,
        CatalogItem.role == CatalogRole.SOURCE.value,
        ~has_candidate
    )


def remaining_items_query(
    db: Session,
    project_id: UUID,
    stage: int,
    job_id: Optional[UUID] = None
) -> Query:
    """Unmatched items the job has not attempted yet, in stable id order."""
    query = unmatched_items_query(db, project_id, stage)

    if job_id is not None:
        attempted = exists().where(
            and_(
                StageAttempt.job_id == job_id,
                StageAttempt.source_item_id == CatalogItem.id
            )
        )
        query = query.filter(~attempted)

    return query.order_by(CatalogItem.id)


def count_unmatched(db: Session, project_id: UUID, stage: int) -> int:
    return unmatched_items_query(db, project_id, stage).count()
