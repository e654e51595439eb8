"""
Cost Ledger - Estimated spend tracking for paid matching stages.

Every paid operation (AI item evaluation, web search, supersession lookup) is
charged to the ledger before its external calls. The ledger enforces two
soft limits:
- the run ceiling of the current job run (e.g. AI_MAX_COST_MICROS)
- the project's budget_limit_micros (None = unlimited)

Costs are fixed per-operation estimates, not metered billing. A slight
overshoot within one item is accepted.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.cost_log import CostLogEntry
from models.project import Project

logger = logging.getLogger(__name__)


class CostLedger:
    """
    Running cost estimate for one job run.

    Charges are added to the session (CostLogEntry rows and
    project.current_spend_micros); the caller owns the commit.
    """

    def __init__(
        self,
        db: Session,
        project_id: UUID,
        job_id: Optional[UUID] = None,
        ceiling_micros: Optional[int] = None,
        run_spent_micros: int = 0
    ):
        self.db = db
        self.project_id = project_id
        self.job_id = job_id
        self.ceiling_micros = ceiling_micros
        self.run_spent_micros = run_spent_micros
        self.charged_micros = 0
        self.ceiling_reached = False

    def can_spend(self) -> bool:
        """Soft check before the next paid call.

        False once the run total reached the ceiling or the project
        budget is exhausted. Sets ceiling_reached so callers can report
        the pause.
        """
        if self.ceiling_micros is not None and self.run_spent_micros >= self.ceiling_micros:
            self.ceiling_reached = True
            return False

        if CostLedger.is_budget_exhausted(self.db, self.project_id):
            self.ceiling_reached = True
            return False

        return True

    def charge(self, operation: str, cost_micros: int, items_processed: int = 1) -> None:
        """Record an estimated cost and add it to the project running total."""
        if cost_micros <= 0:
            return

        self.db.add(CostLogEntry(
            project_id=self.project_id,
            job_id=self.job_id,
            operation=operation,
            cost_micros=cost_micros,
            items_processed=items_processed
        ))

        project = self.db.get(Project, self.project_id)
        if project is not None:
            project.current_spend_micros = (project.current_spend_micros or 0) + cost_micros

        self.run_spent_micros += cost_micros
        self.charged_micros += cost_micros

    @staticmethod
    def is_budget_exhausted(db: Session, project_id: UUID) -> bool:
        project = db.get(Project, project_id)
        if project is None or project.budget_limit_micros is None:
            return False
        return (project.current_spend_micros or 0) >= project.budget_limit_micros

    @staticmethod
    def budget_status(db: Session, project_id: UUID) -> dict:
        """
        Get budget status for a project.

        Returns:
            Dict with limit, spent, remaining (None = unlimited) and exhausted flag
        """
        project = db.get(Project, project_id)
        if project is None:
            return {"limit_micros": None, "spent_micros": 0, "remaining_micros": None, "exhausted": False}

        spent = project.current_spend_micros or 0
        limit = project.budget_limit_micros
        remaining = None if limit is None else max(0, limit - spent)

        return {
            "limit_micros": limit,
            "spent_micros": spent,
            "remaining_micros": remaining,
            "exhausted": limit is not None and spent >= limit,
        }

    @staticmethod
    def cost_summary(db: Session, project_id: UUID) -> dict:
        """Aggregate logged costs per operation for a project."""
        rows = db.query(
            CostLogEntry.operation,
            func.sum(CostLogEntry.cost_micros),
            func.sum(CostLogEntry.items_processed),
            func.count(CostLogEntry.id)
        ).filter(
            CostLogEntry.project_id == project_id
        ).group_by(CostLogEntry.operation).all()

        by_operation = {
            operation: {
                "cost_micros": int(cost or 0),
                "items_processed": int(items or 0),
                "entries": int(entries or 0),
            }
            for operation, cost, items, entries in rows
        }

        return {
            "total_micros": sum(op["cost_micros"] for op in by_operation.values()),
            "by_operation": by_operation,
        }
