"""Stage 3: LLM-assisted matching.

For each item the candidate selector narrows the supplier catalog, then four
strategies run in order and the first accepted result wins:

1. exact_part       identical normalized part numbers, LLM confirms descriptions
2. cross_reference  OEM / aftermarket equivalents among the top 20
3. descriptive      description-overlap candidates (top 15), capped at 0.70
4. universal        generic / dimensional parts (top 30), capped at 0.65

Malformed LLM output is treated as no match for that strategy. Transport
errors (timeouts, rate limits, outages) propagate so the chunk is retried.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import settings
from domain.ai.ports import LLMProviderPort
from models.match_candidate import MatchMethod, TargetType
from observability.metrics import estimated_cost_micros_total, record_llm_usage
from .candidate_selector import select_candidates, ScoredCandidate
from .catalog_cache import SupplierCatalogCache
from .normalizer import normalize
from .ports import CatalogRecord, CandidateProposal, StageResult, StageMatcherPort, parse_confidence

logger = logging.getLogger(__name__)

AI_STAGE = 3

UNIVERSAL_PATTERNS = [
    re.compile(r"universal", re.IGNORECASE),
    re.compile(r"fits all", re.IGNORECASE),
    re.compile(r"standard", re.IGNORECASE),
    re.compile(r"generic", re.IGNORECASE),
    re.compile(r"\d+mm", re.IGNORECASE),
    re.compile(r'\d+"'),
]


@dataclass
class StrategyMatch:
    supplier: CatalogRecord
    confidence: float
    strategy: str
    match_type: Optional[str] = None
    reasoning: Optional[str] = None
    extra: dict = field(default_factory=dict)


def _pick(options: List[CatalogRecord], index_value) -> Optional[CatalogRecord]:
    """1-based index into options; None when missing or out of range."""
    if isinstance(index_value, bool):
        return None
    try:
        index = int(index_value)
    except (TypeError, ValueError):
        return None
    if 1 <= index <= len(options):
        return options[index - 1]
    return None


def _format_candidates(options: List[CatalogRecord], with_line_code: bool = False) -> str:
    lines = []
    for i, c in enumerate(options, start=1):
        if with_line_code:
            lines.append(f"{i}. {c.part_number} | {c.line_code or '?'} | {c.description or 'N/A'}")
        else:
            lines.append(f"{i}. {c.part_number} - {c.description or 'N/A'}")
    return "\n".join(lines)


class AIMatcher(StageMatcherPort):
    """LLM strategy matcher (stage 3).

    Args:
        db: Database session
        catalog_cache: Supplier catalog cache
        llm: LLM provider port
        sleep: Delay function between items (injectable for tests)
    """

    stage = AI_STAGE

    def __init__(
        self,
        db: Session,
        catalog_cache: SupplierCatalogCache,
        llm: LLMProviderPort,
        sleep: Callable[[float], None] = time.sleep,
        request_delay: Optional[float] = None
    ):
        self.db = db
        self.catalog_cache = catalog_cache
        self.llm = llm
        self.sleep = sleep
        self.request_delay = settings.AI_REQUEST_DELAY_SECONDS if request_delay is None else request_delay
        self.model = settings.AI_MODEL
        self.mini_model = settings.AI_MINI_MODEL
        self.min_confidence = settings.AI_MIN_CONFIDENCE
        self.max_confidence = settings.AI_MAX_CONFIDENCE
        self.cost_per_item = settings.AI_COST_PER_ITEM_MICROS

    def match_chunk(self, project_id: UUID, items: List[CatalogRecord], ledger=None) -> StageResult:
        snapshot = self.catalog_cache.get(self.db, project_id)
        result = StageResult(stats={"no_candidates": 0, "matched": 0, "strategies": {}})
        called_llm = False

        for item in items:
            if ledger is not None and not ledger.can_spend():
                logger.warning(
                    f"AI cost ceiling reached for project {project_id} after "
                    f"{len(result.attempted_ids)} items (${ledger.run_spent_micros / 1_000_000:.2f})"
                )
                result.budget_exhausted = True
                break

            if called_llm and self.request_delay:
                self.sleep(self.request_delay)

            if ledger is not None:
                ledger.charge("ai_match", self.cost_per_item)
            estimated_cost_micros_total.labels(operation="ai_match").inc(self.cost_per_item)
            result.cost_micros += self.cost_per_item
            result.attempted_ids.append(item.id)

            candidates = select_candidates(item, snapshot.suppliers)
            if not candidates:
                result.stats["no_candidates"] += 1
                called_llm = False
                continue

            called_llm = True
            match = self.evaluate_item(item, candidates)
            if match is None:
                continue

            result.stats["matched"] += 1
            result.stats["strategies"][match.strategy] = result.stats["strategies"].get(match.strategy, 0) + 1
            result.proposals.append(CandidateProposal(
                source_item_id=item.id,
                target_id=match.supplier.id,
                target_type=TargetType.SUPPLIER,
                method=MatchMethod.AI,
                match_stage=AI_STAGE,
                confidence=min(match.confidence, self.max_confidence),
                features={
                    "strategy": match.strategy,
                    "matchType": match.match_type,
                    "reasoning": match.reasoning,
                    "candidatesConsidered": len(candidates),
                    "storePartNumber": item.part_number,
                    "supplierPartNumber": match.supplier.part_number,
                    **match.extra,
                },
            ))

        logger.info(
            f"AI chunk for project {project_id}: {len(result.attempted_ids)} items, "
            f"{result.stats['matched']} matched, ${result.cost_micros / 1_000_000:.2f} estimated"
        )
        return result

    def evaluate_item(self, item: CatalogRecord, candidates: List[ScoredCandidate]) -> Optional[StrategyMatch]:
        """Run the strategies in order; first result at or above the minimum wins."""
        options = [c.supplier for c in candidates]

        for strategy in (self._exact_part, self._cross_reference, self._descriptive, self._universal):
            match = strategy(item, options)
            if match is not None and match.confidence >= self.min_confidence:
                return match

        logger.debug(f"No AI match for {item.part_number}")
        return None

    def _ask(self, prompt: str, model: str, temperature: float, max_tokens: int, strategy: str) -> Optional[dict]:
        completion = self.llm.complete_json(
            prompt=prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens
        )
        record_llm_usage("ai_match", completion)
        logger.debug(
            f"{strategy} call on {model}: {completion.tokens_in}/{completion.tokens_out} tokens, "
            f"metered {completion.cost_micros} micros"
        )
        if completion.parsed_json is None:
            logger.warning(
                f"Malformed LLM output in {strategy} strategy: {completion.raw_output[:200]!r} "
                f"{completion.warnings}"
            )
        return completion.parsed_json

    def _exact_part(self, item: CatalogRecord, options: List[CatalogRecord]) -> Optional[StrategyMatch]:
        norm = normalize(item.part_number)
        exact = [c for c in options if norm and normalize(c.part_number) == norm]
        if not exact:
            return None

        prompt = (
            f"Validate if these parts match:\n\n"
            f"Store Item: {item.part_number} - {item.description or 'N/A'}\n\n"
            f"Supplier Candidates:\n{_format_candidates(exact)}\n\n"
            f"Part numbers are identical. Do descriptions confirm they're the same part?\n"
            f'Return JSON: {{"matches": true/false, "bestMatch": 1-{len(exact)} or null, "confidence": 0.0-1.0}}'
        )
        data = self._ask(prompt, self.mini_model, 0.2, 150, "exact_part")
        if not data or data.get("matches") is not True:
            return None

        supplier = _pick(exact, data.get("bestMatch"))
        confidence = parse_confidence(data.get("confidence"))
        if supplier is None or confidence is None:
            return None

        return StrategyMatch(
            supplier=supplier,
            confidence=min(confidence * 0.95, self.max_confidence),
            strategy="exact_part",
        )

    def _cross_reference(self, item: CatalogRecord, options: List[CatalogRecord]) -> Optional[StrategyMatch]:
        top = options[:20]
        prompt = (
            f"You are an automotive parts cross-reference expert.\n\n"
            f"Store Item:\nPart: {item.part_number}\nManufacturer: {item.line_code or 'Unknown'}\n"
            f"Description: {item.description or 'N/A'}\n\n"
            f"Supplier Candidates:\n{_format_candidates(top, with_line_code=True)}\n\n"
            f"Task: Find OEM/aftermarket equivalents or cross-references.\n"
            f"Return JSON: {{\n"
            f'  "hasMatch": true/false,\n'
            f'  "matchIndex": 1-{len(top)} or null,\n'
            f'  "confidence": 0.0-1.0,\n'
            f'  "matchType": "OEM_equivalent|aftermarket|direct_cross_ref|interchange",\n'
            f'  "reasoning": "why this is a match"\n'
            f"}}"
        )
        data = self._ask(prompt, self.model, 0.1, 300, "cross_reference")
        if not data or data.get("hasMatch") is not True:
            return None

        supplier = _pick(top, data.get("matchIndex"))
        confidence = parse_confidence(data.get("confidence"))
        if supplier is None or confidence is None or confidence < 0.6:
            return None

        return StrategyMatch(
            supplier=supplier,
            confidence=confidence * 0.85,
            strategy="cross_reference",
            match_type=data.get("matchType"),
            reasoning=data.get("reasoning"),
        )

    def _descriptive(self, item: CatalogRecord, options: List[CatalogRecord]) -> Optional[StrategyMatch]:
        if not item.description or len(item.description.split()) < 3:
            return None

        store_words = set(item.description.lower().split())
        described = [
            c for c in options
            if c.description and len(store_words & set(c.description.lower().split())) >= 2
        ][:15]
        if not described:
            return None

        prompt = (
            f"Match by description when part numbers differ:\n\n"
            f"Store Item: {item.part_number} - {item.description}\n\n"
            f"Candidates with similar descriptions:\n{_format_candidates(described)}\n\n"
            f"Could any candidate be the same physical part despite different part numbers?\n"
            f"(e.g., different manufacturer numbering, private label, rebranding)\n\n"
            f'Return JSON: {{"hasMatch": true/false, "matchIndex": 1-{len(described)} or null, '
            f'"confidence": 0.0-0.7, "reasoning": "..."}}\n\n'
            f"NOTE: Confidence should be lower (max 0.7) since part numbers don't match."
        )
        data = self._ask(prompt, self.model, 0.2, 300, "descriptive")
        if not data or data.get("hasMatch") is not True:
            return None

        supplier = _pick(described, data.get("matchIndex"))
        confidence = parse_confidence(data.get("confidence"))
        if supplier is None or confidence is None or confidence < 0.5:
            return None

        return StrategyMatch(
            supplier=supplier,
            confidence=min(confidence, 0.70),
            strategy="descriptive",
            reasoning=data.get("reasoning"),
        )

    def _universal(self, item: CatalogRecord, options: List[CatalogRecord]) -> Optional[StrategyMatch]:
        description = item.description or ""
        if not any(pattern.search(description) for pattern in UNIVERSAL_PATTERNS):
            return None

        top = options[:30]
        prompt = (
            f"Match universal automotive part:\n\n"
            f"Store: {item.part_number} - {description}\n\n"
            f"Candidates:\n{_format_candidates(top)}\n\n"
            f"This is a universal/standard part. Find matches by:\n"
            f"- Physical dimensions (mm, inches)\n- Thread size\n"
            f"- Material specifications\n- Universal fit indicators\n\n"
            f'Return JSON: {{"hasMatch": true/false, "matchIndex": 1-{len(top)} or null, "confidence": 0.0-0.65}}\n\n'
            f"NOTE: Universal parts get lower confidence (max 0.65) due to specification variations."
        )
        data = self._ask(prompt, self.model, 0.2, 300, "universal")
        if not data or data.get("hasMatch") is not True:
            return None

        supplier = _pick(top, data.get("matchIndex"))
        confidence = parse_confidence(data.get("confidence"))
        if supplier is None or confidence is None or confidence < 0.5:
            return None

        return StrategyMatch(
            supplier=supplier,
            confidence=min(confidence, 0.65),
            strategy="universal",
        )
