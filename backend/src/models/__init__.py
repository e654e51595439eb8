"""SQLAlchemy Models for PartMatch"""

from .base import Base
from .project import Project, ProjectStage
from .catalog_item import CatalogItem, CatalogRole
from .interchange import InterchangeRow
from .match_candidate import MatchCandidate, MatchMethod, MatchStatus, TargetType
from .master_rule import MasterRule, MasterRuleType, MasterRuleScope
from .matching_job import MatchingJob, JobStatus, CancellationType
from .stage_attempt import StageAttempt
from .cost_log import CostLogEntry

__all__ = [
    "Base",
    "Project",
    "ProjectStage",
    "CatalogItem",
    "CatalogRole",
    "InterchangeRow",
    "MatchCandidate",
    "MatchMethod",
    "MatchStatus",
    "TargetType",
    "MasterRule",
    "MasterRuleType",
    "MasterRuleScope",
    "MatchingJob",
    "JobStatus",
    "CancellationType",
    "StageAttempt",
    "CostLogEntry",
]
