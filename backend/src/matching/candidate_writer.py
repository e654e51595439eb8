"""Idempotent persistence of match candidates.

Writes are skip-on-conflict on (source_item_id, target_id, method), so a
retried chunk never duplicates candidates. Proposals for a pair covered by
an enabled NEGATIVE_BLOCK rule are refused.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from models.base import utcnow
from models.catalog_item import CatalogItem
from models.match_candidate import MatchCandidate, MatchStatus, TargetType
from observability.metrics import record_candidate, candidates_blocked_total
from rules.engine import load_block_pairs
from .ports import CandidateProposal

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    created: int = 0
    duplicates: int = 0
    blocked: int = 0
    rejected: int = 0
    created_source_ids: Optional[set] = None


class CandidateWriter:
    """Persist stage proposals for one project."""

    def __init__(self, db: Session):
        self.db = db

    def write(
        self,
        project_id: UUID,
        proposals: Iterable[CandidateProposal],
        job_id: Optional[UUID] = None,
        status: MatchStatus = MatchStatus.PENDING
    ) -> WriteResult:
        proposals = list(proposals)
        result = WriteResult(created_source_ids=set())
        if not proposals:
            return result

        block_pairs = load_block_pairs(self.db, project_id)
        norms = self._load_norms(proposals) if block_pairs else {}

        existing = self._existing_keys(proposals)
        rows = []
        seen = set()

        for proposal in proposals:
            if not math.isfinite(float(proposal.confidence)):
                result.rejected += 1
                continue

            key = (proposal.source_item_id, proposal.target_id, proposal.method.value)
            if key in existing or key in seen:
                result.duplicates += 1
                continue

            if block_pairs and proposal.target_type == TargetType.SUPPLIER:
                pair = (norms.get(proposal.source_item_id), norms.get(proposal.target_id))
                if pair in block_pairs:
                    result.blocked += 1
                    continue

            seen.add(key)
            rows.append(self._row(project_id, proposal, job_id, status))

        if rows:
            self.db.execute(self._insert_ignoring_conflicts(), rows)
            for row in rows:
                record_candidate(row["method"], row["confidence"])
                result.created_source_ids.add(row["source_item_id"])
            result.created = len(rows)

        if result.rejected:
            logger.warning(f"Refused {result.rejected} candidates with non-finite confidence in project {project_id}")

        if result.blocked:
            candidates_blocked_total.labels(source="writer").inc(result.blocked)
            logger.info(f"Refused {result.blocked} candidates blocked by master rules in project {project_id}")

        return result

    def _insert_ignoring_conflicts(self):
        dialect = self.db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        return insert(MatchCandidate).on_conflict_do_nothing(
            index_elements=["source_item_id", "target_id", "method"]
        )

    def _existing_keys(self, proposals: List[CandidateProposal]) -> set:
        source_ids = {p.source_item_id for p in proposals}
        rows = self.db.query(
            MatchCandidate.source_item_id,
            MatchCandidate.target_id,
            MatchCandidate.method
        ).filter(MatchCandidate.source_item_id.in_(source_ids)).all()
        return {(r[0], r[1], r[2]) for r in rows}

    def _load_norms(self, proposals: List[CandidateProposal]) -> dict:
        ids = {p.source_item_id for p in proposals} | {
            p.target_id for p in proposals if p.target_type == TargetType.SUPPLIER
        }
        rows = self.db.query(CatalogItem.id, CatalogItem.part_number_norm).filter(
            CatalogItem.id.in_(ids)
        ).all()
        return {row[0]: row[1] for row in rows}

    @staticmethod
    def _row(project_id: UUID, proposal: CandidateProposal, job_id: Optional[UUID], status: MatchStatus) -> dict:
        now = utcnow()
        return {
            "id": uuid4(),
            "project_id": project_id,
            "source_item_id": proposal.source_item_id,
            "target_type": proposal.target_type.value,
            "target_id": proposal.target_id,
            "method": proposal.method.value,
            "match_stage": proposal.match_stage,
            "confidence": max(0.0, min(1.0, float(proposal.confidence))),
            "status": status.value,
            "features": proposal.features or {},
            "job_id": job_id,
            "created_at": now,
            "updated_at": now,
        }
