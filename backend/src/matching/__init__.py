"""Matching module for PartMatch.

Stage pipeline over SOURCE items of a project:
- Stage 1: exact normalized / interchange
- Stage 2: fuzzy trigram similarity
- Stage 3: AI strategies and supersession lookup
- Stage 4: web search with batched LLM evaluation

Stage 0 (master rules) lives in the rules package.
"""

from .normalizer import normalize, normalize_line_code, is_complex_part
from .ports import (
    CatalogRecord,
    InterchangeRecord,
    CandidateProposal,
    StageResult,
    StageMatcherPort,
    MatcherError,
)

__all__ = [
    "normalize",
    "normalize_line_code",
    "is_complex_part",
    "CatalogRecord",
    "InterchangeRecord",
    "CandidateProposal",
    "StageResult",
    "StageMatcherPort",
    "MatcherError",
]
