"""
Job Orchestrator - drives one stage of one project as chunked background work.

Each call to run_chunk() is one bounded, restartable unit:

1. claim the job (conditional UPDATE, lock token)
2. first chunk only: un-match the project (exact jobs), apply master rules
3. cancellation check
4. load the next chunk of remaining items from persisted state
5. run the stage matcher
6. cancellation check (IMMEDIATE drops the results, keeps the cost log)
7. persist candidates, attempts and progress in one transaction
8. continue, pause on the cost ceiling, or complete

Remaining work is always recomputed from the candidate and stage_attempt
tables, so a crashed or retried chunk resumes exactly where the last
committed chunk ended.
"""

import logging
import time
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Callable, Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from domain.ai.cost_ledger import CostLedger
from domain.ai.ports import (
    LLMProviderPort,
    WebSearchPort,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMServiceError,
    WebSearchTimeoutError,
    WebSearchRateLimitError,
    WebSearchServiceError,
)
from matching.candidate_writer import CandidateWriter
from matching.catalog_cache import SupplierCatalogCache, get_catalog_cache
from matching.exact_matcher import unmatch_project
from matching.ports import CatalogRecord, MatcherError
from matching.unmatched import remaining_items_query, count_unmatched
from models.base import utcnow
from models.matching_job import MatchingJob, JobStatus, CancellationType
from models.project import Project
from models.stage_attempt import StageAttempt
from observability.metrics import job_chunks_total, job_chunk_duration_seconds
from observability.request_id import set_job_id
from rules.engine import apply_master_rules
from .admission import check_admission
from .job_status import transition
from .stages import MatcherContext, StageDefinition, get_stage, advance_cursor

logger = logging.getLogger(__name__)

# Retried by re-invoking the job; everything else fails it
TRANSIENT_ERRORS = (
    OperationalError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMServiceError,
    WebSearchTimeoutError,
    WebSearchRateLimitError,
    WebSearchServiceError,
)

BUDGET_EXHAUSTED = "budget_exhausted"


class JobNotFoundError(Exception):
    """Raised when a matching job id does not exist"""
    pass


@dataclass
class ChunkOutcome:
    """Result of one run_chunk() call.

    has_more tells the caller to schedule the next chunk right away.
    """
    job_id: UUID
    status: str
    has_more: bool = False
    claimed: bool = True
    processed: int = 0
    matches: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["job_id"] = str(self.job_id)
        return data


@dataclass
class _ControlState:
    cancellation_requested: bool
    cancellation_type: Optional[str]
    lock_token: Optional[str]


class JobOrchestrator:
    """Chunked, resumable, cancellable execution of matching jobs.

    Args:
        db: Database session (owned by the caller)
        catalog_cache: Supplier catalog cache (defaults to the process-wide cache)
        llm: LLM provider for paid stages
        search: Web-search provider for the web-search and supersession stages
        sleep: Delay function handed to rate-limited matchers
        stale_lock_seconds: Age after which another worker's lock may be taken over
    """

    def __init__(
        self,
        db: Session,
        catalog_cache: Optional[SupplierCatalogCache] = None,
        llm: Optional[LLMProviderPort] = None,
        search: Optional[WebSearchPort] = None,
        sleep: Callable[[float], None] = time.sleep,
        stale_lock_seconds: Optional[int] = None
    ):
        self.db = db
        self.catalog_cache = catalog_cache or get_catalog_cache()
        self.llm = llm
        self.search = search
        self.sleep = sleep
        self.stale_lock_seconds = (
            settings.JOB_STALE_LOCK_SECONDS if stale_lock_seconds is None else stale_lock_seconds
        )

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, job_id: UUID) -> Optional[str]:
        """Take the exclusive lock on a job.

        A queued job is started (run counters reset). A processing job is
        taken over when its lock is free or older than the stale timeout.

        Returns:
            Lock token, or None if another worker holds the job
        """
        token = uuid4().hex
        now = utcnow()
        cutoff = now - timedelta(seconds=self.stale_lock_seconds)

        started = self.db.query(MatchingJob).filter(
            MatchingJob.id == job_id,
            MatchingJob.status == JobStatus.QUEUED.value
        ).update({
            MatchingJob.status: JobStatus.PROCESSING.value,
            MatchingJob.locked_at: now,
            MatchingJob.lock_token: token,
            MatchingJob.run_cost_micros: 0,
            MatchingJob.status_message: None,
            MatchingJob.started_at: func.coalesce(MatchingJob.started_at, now),
            MatchingJob.updated_at: now,
        }, synchronize_session=False)

        taken_over = 0
        if not started:
            taken_over = self.db.query(MatchingJob).filter(
                MatchingJob.id == job_id,
                MatchingJob.status == JobStatus.PROCESSING.value,
                or_(MatchingJob.lock_token.is_(None), MatchingJob.locked_at < cutoff)
            ).update({
                MatchingJob.locked_at: now,
                MatchingJob.lock_token: token,
                MatchingJob.updated_at: now,
            }, synchronize_session=False)

        self.db.commit()

        if not (started or taken_over):
            return None

        if started:
            logger.info(f"Job {job_id} started")
        return token

    def _release(self, job_id: UUID, token: str) -> None:
        self.db.query(MatchingJob).filter(
            MatchingJob.id == job_id,
            MatchingJob.lock_token == token
        ).update({
            MatchingJob.lock_token: None,
            MatchingJob.locked_at: None,
        }, synchronize_session=False)
        self.db.commit()

    # ------------------------------------------------------------------
    # Chunk execution
    # ------------------------------------------------------------------

    def run_chunk(self, job_id: UUID) -> ChunkOutcome:
        """Run the next chunk of a job.

        Raises:
            JobNotFoundError: If the job does not exist
            TRANSIENT_ERRORS: Lock released, caller should retry the job
        """
        set_job_id(str(job_id))
        job = self._get_job(job_id)

        if job.status not in (JobStatus.QUEUED.value, JobStatus.PROCESSING.value):
            logger.info(f"Job {job_id} is {job.status}, nothing to do")
            return ChunkOutcome(job_id=job_id, status=job.status, claimed=False, reason="not_runnable")

        if job.status == JobStatus.QUEUED.value:
            decision = check_admission(self.db, job)
            if not decision.admitted:
                logger.info(f"Job {job_id} waiting for admission: {decision.reason}")
                return ChunkOutcome(job_id=job_id, status=job.status, claimed=False, reason=decision.reason)

        token = self.claim(job_id)
        if token is None:
            logger.info(f"Job {job_id} is locked by another worker")
            return ChunkOutcome(job_id=job_id, status=JobStatus.PROCESSING.value, claimed=False, reason="locked")

        job_type = "unknown"
        try:
            job = self._get_job(job_id)
            job_type = job.job_type
            return self._run_claimed(job, token)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Transient error in job {job_id}, releasing lock for retry: {e}")
            self.db.rollback()
            try:
                self._release(job_id, token)
            except SQLAlchemyError as release_error:
                logger.error(f"Could not release lock of job {job_id}: {release_error}")
            job_chunks_total.labels(job_type=job_type, outcome="retried").inc()
            raise
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)
            self.db.rollback()
            self._fail(job_id, token, e)
            job_chunks_total.labels(job_type=job_type, outcome="failed").inc()
            failed = self._get_job(job_id)
            return ChunkOutcome(
                job_id=job_id,
                status=failed.status,
                processed=failed.processed_items,
                matches=failed.matches_found,
                reason=str(e)
            )

    def drain(self, job_id: UUID, max_chunks: Optional[int] = None) -> ChunkOutcome:
        """Run chunks back to back until the job stops asking for more.

        Same behavior as the queue consumer's continuation, without a broker.
        """
        chunks = 0
        while True:
            outcome = self.run_chunk(job_id)
            chunks += 1
            if not outcome.has_more or (max_chunks is not None and chunks >= max_chunks):
                return outcome

    def _run_claimed(self, job: MatchingJob, token: str) -> ChunkOutcome:
        definition = get_stage(job.job_type)
        config = job.config or {}
        project_id = job.project_id

        if job.chunks_processed == 0:
            self._prepare(job, definition)

        if job.cancellation_requested:
            return self._cancel(job, definition, discarded=False)

        items = remaining_items_query(
            self.db, project_id, definition.stage, job.id
        ).limit(definition.chunk_size(config)).all()

        if not items:
            return self._complete(job, definition)

        ledger = None
        if definition.paid:
            ledger = CostLedger(
                self.db,
                project_id,
                job_id=job.id,
                ceiling_micros=definition.cost_ceiling(config),
                run_spent_micros=job.run_cost_micros or 0
            )

        matcher = definition.build(self._context(), config)
        records = [CatalogRecord.from_item(item) for item in items]

        chunk_started = time.monotonic()
        result = matcher.match_chunk(project_id, records, ledger=ledger)
        duration = time.monotonic() - chunk_started
        job_chunk_duration_seconds.labels(job_type=definition.job_type).observe(duration)

        budget_hit = result.budget_exhausted or (ledger is not None and ledger.ceiling_reached)
        if not result.attempted_ids and not budget_hit:
            raise MatcherError(f"{definition.job_type} stage made no progress on {len(records)} items")

        control = self._control_state(job.id)
        if control.lock_token != token:
            self.db.rollback()
            logger.warning(f"Job {job.id} lock was taken over during the chunk; results dropped")
            return ChunkOutcome(job_id=job.id, status=JobStatus.PROCESSING.value, claimed=False, reason="lock_lost")

        job.estimated_cost_micros = (job.estimated_cost_micros or 0) + result.cost_micros
        if ledger is not None:
            job.run_cost_micros = ledger.run_spent_micros

        if control.cancellation_requested and control.cancellation_type == CancellationType.IMMEDIATE.value:
            logger.info(f"Job {job.id} cancelled immediately; dropping {len(result.proposals)} proposals")
            return self._cancel(job, definition, discarded=True)

        written = CandidateWriter(self.db).write(project_id, result.proposals, job_id=job.id)
        self._record_attempts(job, definition.stage, result.attempted_ids, written.created_source_ids or set())

        attempted = len(set(result.attempted_ids))
        job.processed_items = (job.processed_items or 0) + attempted
        job.matches_found = (job.matches_found or 0) + len(written.created_source_ids or ())
        job.chunks_processed = (job.chunks_processed or 0) + 1
        self._update_progress(job, duration, attempted)

        logger.info(
            f"Job {job.id} chunk {job.chunks_processed}: {attempted} items, "
            f"{written.created} candidates ({written.duplicates} duplicates, {written.blocked} blocked), "
            f"{job.processed_items}/{job.total_items} processed"
        )

        if control.cancellation_requested:
            return self._cancel(job, definition, discarded=False)

        if budget_hit:
            return self._pause_for_budget(job, definition)

        self.db.flush()
        has_more = remaining_items_query(self.db, project_id, definition.stage, job.id).first() is not None
        if not has_more:
            return self._complete(job, definition)

        job.lock_token = None
        job.locked_at = None
        self.db.commit()
        job_chunks_total.labels(job_type=definition.job_type, outcome="continued").inc()

        return ChunkOutcome(
            job_id=job.id,
            status=JobStatus.PROCESSING.value,
            has_more=True,
            processed=job.processed_items,
            matches=job.matches_found
        )

    def _prepare(self, job: MatchingJob, definition: StageDefinition) -> None:
        """First-chunk work: un-match (exact jobs), master rules, total count."""
        if definition.unmatch_first:
            unmatch_project(self.db, job.project_id)

        rules = apply_master_rules(self.db, job.project_id)
        self.db.flush()

        job.total_items = count_unmatched(self.db, job.project_id, definition.stage)
        logger.info(
            f"Job {job.id} ({definition.job_type}) prepared: {job.total_items} items to match, "
            f"{rules.created} rule matches, {rules.blocked} blocked"
        )

    # ------------------------------------------------------------------
    # Terminal and pause transitions
    # ------------------------------------------------------------------

    def _complete(self, job: MatchingJob, definition: StageDefinition) -> ChunkOutcome:
        now = utcnow()
        transition(job, JobStatus.COMPLETED)
        job.completed_at = now
        job.progress_percentage = 100.0
        job.estimated_completion = None
        job.lock_token = None
        job.locked_at = None

        project = self.db.get(Project, job.project_id)
        if project is not None:
            project.current_stage = advance_cursor(project.current_stage, definition.next_project_stage)

        self.db.commit()
        job_chunks_total.labels(job_type=definition.job_type, outcome="completed").inc()
        logger.info(
            f"Job {job.id} completed: {job.processed_items} processed, {job.matches_found} matches"
        )
        return ChunkOutcome(
            job_id=job.id,
            status=JobStatus.COMPLETED.value,
            processed=job.processed_items,
            matches=job.matches_found,
            reason=job.status_message
        )

    def _pause_for_budget(self, job: MatchingJob, definition: StageDefinition) -> ChunkOutcome:
        job.status_message = BUDGET_EXHAUSTED

        if not job.matches_found:
            logger.info(f"Job {job.id} hit its cost ceiling without matches; completing")
            return self._complete(job, definition)

        transition(job, JobStatus.QUEUED)
        job.estimated_completion = None
        job.lock_token = None
        job.locked_at = None
        self.db.commit()

        job_chunks_total.labels(job_type=definition.job_type, outcome="paused").inc()
        logger.info(
            f"Job {job.id} paused on cost ceiling after {job.processed_items} items "
            f"({job.matches_found} matches); resumable"
        )
        return ChunkOutcome(
            job_id=job.id,
            status=JobStatus.QUEUED.value,
            processed=job.processed_items,
            matches=job.matches_found,
            reason=BUDGET_EXHAUSTED
        )

    def _cancel(self, job: MatchingJob, definition: StageDefinition, discarded: bool) -> ChunkOutcome:
        transition(job, JobStatus.CANCELLED)
        job.cancelled_at = utcnow()
        job.estimated_completion = None
        job.lock_token = None
        job.locked_at = None
        if discarded:
            job.status_message = "in-flight chunk discarded"
        self.db.commit()

        job_chunks_total.labels(
            job_type=definition.job_type,
            outcome="discarded" if discarded else "cancelled"
        ).inc()
        logger.info(f"Job {job.id} cancelled after {job.processed_items} items")
        return ChunkOutcome(
            job_id=job.id,
            status=JobStatus.CANCELLED.value,
            processed=job.processed_items,
            matches=job.matches_found,
            reason="cancelled"
        )

    def _fail(self, job_id: UUID, token: str, error: Exception) -> None:
        job = self._get_job(job_id)
        if job.lock_token != token:
            logger.warning(f"Job {job_id} failed after losing its lock; leaving status to the new owner")
            return

        transition(job, JobStatus.FAILED)
        job.error_message = f"{type(error).__name__}: {error}"
        job.estimated_completion = None
        job.lock_token = None
        job.locked_at = None
        self.db.commit()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_job(self, job_id: UUID) -> MatchingJob:
        job = self.db.get(MatchingJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Matching job {job_id} not found")
        return job

    def _context(self) -> MatcherContext:
        return MatcherContext(
            db=self.db,
            catalog_cache=self.catalog_cache,
            llm=self.llm,
            search=self.search,
            sleep=self.sleep
        )

    def _control_state(self, job_id: UUID) -> _ControlState:
        row = self.db.query(
            MatchingJob.cancellation_requested,
            MatchingJob.cancellation_type,
            MatchingJob.lock_token
        ).filter(MatchingJob.id == job_id).one()
        return _ControlState(
            cancellation_requested=bool(row[0]),
            cancellation_type=row[1],
            lock_token=row[2]
        )

    def _record_attempts(
        self,
        job: MatchingJob,
        stage: int,
        attempted_ids: Iterable[UUID],
        matched_ids: set
    ) -> None:
        now = utcnow()
        rows = [
            {
                "id": uuid4(),
                "job_id": job.id,
                "project_id": job.project_id,
                "source_item_id": source_id,
                "match_stage": stage,
                "matched": source_id in matched_ids,
                "created_at": now,
            }
            for source_id in dict.fromkeys(attempted_ids)
        ]
        if not rows:
            return

        dialect = self.db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        self.db.execute(
            insert(StageAttempt).on_conflict_do_nothing(index_elements=["job_id", "source_item_id"]),
            rows
        )

    @staticmethod
    def _update_progress(job: MatchingJob, duration: float, attempted: int) -> None:
        processed = job.processed_items or 0
        total = max(job.total_items or 0, processed)

        job.progress_percentage = round(processed / total * 100, 2) if total else 100.0
        job.match_rate = round((job.matches_found or 0) / processed, 4) if processed else 0.0

        remaining = total - processed
        if attempted and remaining > 0:
            seconds_per_item = duration / attempted
            job.estimated_completion = utcnow() + timedelta(seconds=seconds_per_item * remaining)
        else:
            job.estimated_completion = None
