"""Stage registry: how each job type maps onto a matcher.

| jobType      | stage | chunk | paid | cursor after completion |
|--------------|-------|-------|------|-------------------------|
| exact        | 1     | 500   | no   | FUZZY                   |
| fuzzy        | 2     | 150   | no   | AI                      |
| ai           | 3     | 100   | yes  | WEB_SEARCH              |
| supersession | 3     | 50    | yes  | unchanged               |
| web-search   | 4     | 20    | yes  | REVIEW                  |
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from config import settings
from domain.ai.ports import LLMProviderPort, WebSearchPort
from matching.ai_matcher import AIMatcher
from matching.catalog_cache import SupplierCatalogCache
from matching.exact_matcher import ExactMatcher
from matching.fuzzy_matcher import FuzzyMatcher
from matching.ports import MatcherError, StageMatcherPort
from matching.supersession_matcher import SupersessionMatcher
from matching.web_search_matcher import WebSearchMatcher
from models.project import ProjectStage

PROJECT_STAGE_ORDER = [
    ProjectStage.EXACT,
    ProjectStage.FUZZY,
    ProjectStage.AI,
    ProjectStage.WEB_SEARCH,
    ProjectStage.REVIEW,
]


@dataclass
class MatcherContext:
    """Collaborators a matcher factory may need."""
    db: Session
    catalog_cache: SupplierCatalogCache
    llm: Optional[LLMProviderPort] = None
    search: Optional[WebSearchPort] = None
    sleep: Callable[[float], None] = time.sleep


@dataclass(frozen=True)
class StageDefinition:
    job_type: str
    stage: int
    chunk_size_setting: str
    factory: Callable[[MatcherContext, dict], StageMatcherPort]
    next_project_stage: Optional[ProjectStage] = None
    cost_ceiling_setting: Optional[str] = None
    unmatch_first: bool = False

    @property
    def paid(self) -> bool:
        return self.cost_ceiling_setting is not None

    def chunk_size(self, config: Optional[dict] = None) -> int:
        override = (config or {}).get("chunkSize")
        if override:
            return int(override)
        return getattr(settings, self.chunk_size_setting)

    def cost_ceiling(self, config: Optional[dict] = None) -> Optional[int]:
        if not self.paid:
            return None
        override = (config or {}).get("maxCostMicros")
        if override is not None:
            return int(override)
        return getattr(settings, self.cost_ceiling_setting)

    def build(self, ctx: MatcherContext, config: Optional[dict] = None) -> StageMatcherPort:
        return self.factory(ctx, config or {})


def _require_llm(ctx: MatcherContext, job_type: str) -> LLMProviderPort:
    if ctx.llm is None:
        raise MatcherError(f"{job_type} jobs require an LLM provider")
    return ctx.llm


def _exact(ctx: MatcherContext, config: dict) -> StageMatcherPort:
    return ExactMatcher(
        ctx.db,
        ctx.catalog_cache,
        tie_break_policy=config.get("tieBreakPolicy"),
        cost_validation=config.get("costValidation")
    )


def _fuzzy(ctx: MatcherContext, config: dict) -> StageMatcherPort:
    return FuzzyMatcher(
        ctx.db,
        ctx.catalog_cache,
        part_threshold=config.get("partThreshold"),
        confidence_basis=config.get("confidenceBasis")
    )


def _ai(ctx: MatcherContext, config: dict) -> StageMatcherPort:
    return AIMatcher(ctx.db, ctx.catalog_cache, _require_llm(ctx, "ai"), sleep=ctx.sleep)


def _web_search(ctx: MatcherContext, config: dict) -> StageMatcherPort:
    if ctx.search is None:
        raise MatcherError("web-search jobs require a web-search provider")
    return WebSearchMatcher(ctx.db, ctx.catalog_cache, _require_llm(ctx, "web-search"), ctx.search, sleep=ctx.sleep)


def _supersession(ctx: MatcherContext, config: dict) -> StageMatcherPort:
    search = ctx.search if config.get("webFallback", True) else None
    return SupersessionMatcher(ctx.db, ctx.catalog_cache, _require_llm(ctx, "supersession"), search=search, sleep=ctx.sleep)


STAGES: Dict[str, StageDefinition] = {
    "exact": StageDefinition(
        job_type="exact",
        stage=1,
        chunk_size_setting="CHUNK_SIZE_EXACT",
        factory=_exact,
        next_project_stage=ProjectStage.FUZZY,
        unmatch_first=True,
    ),
    "fuzzy": StageDefinition(
        job_type="fuzzy",
        stage=2,
        chunk_size_setting="CHUNK_SIZE_FUZZY",
        factory=_fuzzy,
        next_project_stage=ProjectStage.AI,
    ),
    "ai": StageDefinition(
        job_type="ai",
        stage=3,
        chunk_size_setting="CHUNK_SIZE_AI",
        factory=_ai,
        next_project_stage=ProjectStage.WEB_SEARCH,
        cost_ceiling_setting="AI_MAX_COST_MICROS",
    ),
    "supersession": StageDefinition(
        job_type="supersession",
        stage=3,
        chunk_size_setting="CHUNK_SIZE_SUPERSESSION",
        factory=_supersession,
        cost_ceiling_setting="SUPERSESSION_MAX_COST_MICROS",
    ),
    "web-search": StageDefinition(
        job_type="web-search",
        stage=4,
        chunk_size_setting="CHUNK_SIZE_WEB_SEARCH",
        factory=_web_search,
        next_project_stage=ProjectStage.REVIEW,
        cost_ceiling_setting="WEB_SEARCH_MAX_COST_MICROS",
    ),
}

JOB_TYPES = tuple(STAGES.keys())


def get_stage(job_type: str) -> StageDefinition:
    """
    Raises:
        ValueError: If the job type is unknown
    """
    try:
        return STAGES[job_type]
    except KeyError:
        raise ValueError(f"Unknown job type: {job_type} (expected one of {', '.join(JOB_TYPES)})")


def advance_cursor(current: Optional[str], target: Optional[ProjectStage]) -> Optional[str]:
    """Move a project cursor forward to target; never moves it back."""
    if target is None:
        return current
    try:
        current_index = PROJECT_STAGE_ORDER.index(ProjectStage(current))
    except ValueError:
        current_index = -1
    if PROJECT_STAGE_ORDER.index(target) > current_index:
        return target.value
    return current
