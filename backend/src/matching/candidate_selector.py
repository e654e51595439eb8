"""Candidate selection for the paid stages.

Bounds LLM cost by reducing the supplier catalog to a small, high-likelihood
set per item before any prompt is built. An empty selection means the item
is not sent to the LLM at all.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from rapidfuzz.distance import Levenshtein

from config import settings
from .normalizer import normalize_line_code, description_words, part_key
from .ports import CatalogRecord


@dataclass(frozen=True)
class ScoredCandidate:
    supplier: CatalogRecord
    score: float


def score_candidate(item: CatalogRecord, supplier: CatalogRecord) -> float:
    """Weighted pre-filter score.

    +100 line codes equal
    +50  one normalized part number contains the other
    +40  x Levenshtein similarity of normalized part numbers
    +5   per shared description keyword (length > 3, stopwords excluded)
    +20 / +10 cost difference below 5 / 20
    """
    score = 0.0

    item_lc = normalize_line_code(item.line_code)
    if item_lc and item_lc == normalize_line_code(supplier.line_code):
        score += 100

    item_key = part_key(item.part_number)
    supplier_key = part_key(supplier.part_number)
    if item_key and supplier_key:
        if item_key in supplier_key or supplier_key in item_key:
            score += 50

        longest = max(len(item_key), len(supplier_key))
        distance = Levenshtein.distance(item_key, supplier_key)
        score += 40 * (1 - distance / longest)

    shared = description_words(item.description) & description_words(supplier.description)
    score += 5 * len(shared)

    if item.cost is not None and supplier.cost is not None:
        difference = abs(item.cost - supplier.cost)
        if difference < 5:
            score += 20
        elif difference < 20:
            score += 10

    return score


def select_candidates(
    item: CatalogRecord,
    suppliers: Iterable[CatalogRecord],
    limit: Optional[int] = None,
    min_score: Optional[float] = None
) -> List[ScoredCandidate]:
    """Top suppliers scoring above min_score, best first (supplier id breaks ties)."""
    limit = settings.AI_CANDIDATE_LIMIT if limit is None else limit
    min_score = settings.AI_MIN_CANDIDATE_SCORE if min_score is None else min_score

    scored = []
    for supplier in suppliers:
        score = score_candidate(item, supplier)
        if score > min_score:
            scored.append(ScoredCandidate(supplier=supplier, score=score))

    scored.sort(key=lambda c: (-c.score, str(c.supplier.id)))
    return scored[:limit]
