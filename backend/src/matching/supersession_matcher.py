"""Stage 3 (supersession): discontinued-part replacement lookup.

1. Ask the LLM whether the part number is a known superseded number.
2. If the model has no answer, search parts-retailer sites and let a
   smaller model extract the replacement from the results.
3. Re-match the replacement number against the supplier catalog.

Two-hop evidence: confidence is multiplied by 0.85 and capped at 0.80.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import settings
from domain.ai.ports import LLMProviderPort, WebSearchPort
from models.match_candidate import MatchMethod, TargetType
from observability.metrics import estimated_cost_micros_total, record_llm_usage
from .catalog_cache import SupplierCatalogCache, CatalogSnapshot
from .normalizer import normalize, normalize_line_code
from .ports import CatalogRecord, CandidateProposal, StageResult, StageMatcherPort, parse_confidence

logger = logging.getLogger(__name__)

SUPERSESSION_STAGE = 3
AI_CONFIDENCE_THRESHOLD = 0.60
WEB_CONFIDENCE_THRESHOLD = 0.50
INDIRECT_PENALTY = 0.85
MAX_SUPERSESSION_CONFIDENCE = 0.80

RETAILER_DOMAINS = [
    "rockauto.com",
    "napaonline.com",
    "partsgeek.com",
    "autozone.com",
    "oreillyauto.com",
]


@dataclass
class Supersession:
    original_part: str
    replacement_part: str
    manufacturer: Optional[str]
    confidence: float
    source: str  # ai_knowledge | web_search
    reasoning: Optional[str] = None


def _parse_supersession(data: Optional[dict], item: CatalogRecord, source: str, threshold: float) -> Optional[Supersession]:
    if not data or data.get("superseded") is not True:
        return None

    replacement = data.get("replacementPart")
    if not isinstance(replacement, str) or not normalize(replacement):
        return None

    confidence = parse_confidence(data.get("confidence"))
    if confidence is None or confidence < threshold:
        return None

    manufacturer = data.get("manufacturer")
    return Supersession(
        original_part=item.part_number,
        replacement_part=replacement,
        manufacturer=manufacturer if isinstance(manufacturer, str) else None,
        confidence=confidence,
        source=source,
        reasoning=data.get("reasoning"),
    )


def find_replacement_supplier(supersession: Supersession, snapshot: CatalogSnapshot) -> Optional[CatalogRecord]:
    """First supplier (by id) carrying the replacement number and manufacturer."""
    replacement_norm = normalize(supersession.replacement_part)
    manufacturer = supersession.manufacturer
    check_manufacturer = bool(manufacturer) and manufacturer.strip().lower() != "unknown"

    for supplier in snapshot.suppliers:
        if supplier.part_number_norm != replacement_norm:
            continue
        if check_manufacturer and normalize_line_code(supplier.line_code) != normalize_line_code(manufacturer):
            continue
        return supplier
    return None


class SupersessionMatcher(StageMatcherPort):
    """Replacement-part matcher (stage 3, method SUPERSESSION).

    Args:
        db: Database session
        catalog_cache: Supplier catalog cache
        llm: LLM provider port
        search: Web-search provider port (None disables the web fallback)
        sleep: Delay function between items (injectable for tests)
    """

    stage = SUPERSESSION_STAGE

    def __init__(
        self,
        db: Session,
        catalog_cache: SupplierCatalogCache,
        llm: LLMProviderPort,
        search: Optional[WebSearchPort] = None,
        sleep: Callable[[float], None] = time.sleep,
        request_delay: Optional[float] = None
    ):
        self.db = db
        self.catalog_cache = catalog_cache
        self.llm = llm
        self.search = search
        self.sleep = sleep
        self.request_delay = settings.SUPERSESSION_REQUEST_DELAY_SECONDS if request_delay is None else request_delay
        self.cost_per_ai_query = settings.SUPERSESSION_COST_PER_AI_QUERY_MICROS
        self.cost_per_web_search = settings.SUPERSESSION_COST_PER_WEB_SEARCH_MICROS

    def match_chunk(self, project_id: UUID, items: List[CatalogRecord], ledger=None) -> StageResult:
        snapshot = self.catalog_cache.get(self.db, project_id)
        result = StageResult(stats={"superseded": 0, "matched": 0, "web_fallbacks": 0})

        for position, item in enumerate(items):
            if ledger is not None and not ledger.can_spend():
                logger.warning(f"Supersession cost ceiling reached for project {project_id}")
                result.budget_exhausted = True
                break

            if position and self.request_delay:
                self.sleep(self.request_delay)

            self._charge(ledger, self.cost_per_ai_query, result)
            result.attempted_ids.append(item.id)

            supersession = self._ask_model(item)
            if supersession is None and self.search is not None:
                result.stats["web_fallbacks"] += 1
                self._charge(ledger, self.cost_per_web_search, result)
                supersession = self._search_web(item)

            if supersession is None:
                continue
            result.stats["superseded"] += 1

            supplier = find_replacement_supplier(supersession, snapshot)
            if supplier is None:
                logger.info(
                    f"Replacement {supersession.replacement_part} for {item.part_number} not in supplier catalog"
                )
                continue

            result.stats["matched"] += 1
            result.proposals.append(CandidateProposal(
                source_item_id=item.id,
                target_id=supplier.id,
                target_type=TargetType.SUPPLIER,
                method=MatchMethod.SUPERSESSION,
                match_stage=SUPERSESSION_STAGE,
                confidence=min(supersession.confidence * INDIRECT_PENALTY, MAX_SUPERSESSION_CONFIDENCE),
                features={
                    "originalPart": supersession.original_part,
                    "replacementPart": supersession.replacement_part,
                    "manufacturer": supersession.manufacturer,
                    "source": supersession.source,
                    "reasoning": supersession.reasoning,
                    "supplierPartNumber": supplier.part_number,
                },
            ))

        logger.info(
            f"Supersession chunk for project {project_id}: {len(result.attempted_ids)} items, "
            f"{result.stats['superseded']} superseded, {result.stats['matched']} matched"
        )
        return result

    def _charge(self, ledger, amount: int, result: StageResult) -> None:
        if ledger is not None:
            ledger.charge("supersession", amount)
        estimated_cost_micros_total.labels(operation="supersession").inc(amount)
        result.cost_micros += amount

    def _ask_model(self, item: CatalogRecord) -> Optional[Supersession]:
        prompt = (
            f"You are an automotive parts expert. Determine if this part has been superseded/replaced:\n\n"
            f"Original Part: {item.part_number}\n"
            f"Manufacturer: {item.line_code or 'Unknown'}\n"
            f"Description: {item.description or 'N/A'}\n\n"
            f"Has this part been superseded/replaced? If yes, provide:\n"
            f'{{\n  "superseded": true,\n  "replacementPart": "new part number",\n'
            f'  "manufacturer": "manufacturer code",\n  "confidence": 0.0-1.0,\n'
            f'  "reasoning": "why this is the replacement"\n}}\n\n'
            f'If no supersession known, return:\n{{"superseded": false}}\n\n'
            f"Only return valid JSON."
        )
        completion = self.llm.complete_json(
            prompt=prompt,
            model=settings.AI_MODEL,
            temperature=0.2,
            max_tokens=300
        )
        record_llm_usage("supersession", completion)
        if completion.parsed_json is None:
            logger.warning(f"Malformed supersession output for item {item.id}: {completion.warnings}")
        return _parse_supersession(completion.parsed_json, item, "ai_knowledge", AI_CONFIDENCE_THRESHOLD)

    def _search_web(self, item: CatalogRecord) -> Optional[Supersession]:
        query = f"{item.part_number} {item.line_code or ''} superseded replaced by automotive part"
        response = self.search.search(
            query=" ".join(query.split()),
            max_results=5,
            search_depth="advanced",
            include_answer=False,
            include_domains=RETAILER_DOMAINS,
        )
        if not response.results:
            return None

        evidence = "\n\n".join(f"{r.title}: {r.content}" for r in response.results)
        prompt = (
            f"Extract supersession information from these search results:\n\n"
            f"Original Part: {item.part_number}\n"
            f"Manufacturer: {item.line_code or 'Unknown'}\n\n"
            f"Search Results:\n{evidence}\n\n"
            f"Does any result show this part has been superseded/replaced?\n"
            f"Return JSON:\n"
            f'{{\n  "superseded": true/false,\n  "replacementPart": "new part number" (if superseded),\n'
            f'  "confidence": 0.0-1.0,\n  "reasoning": "evidence from search results"\n}}'
        )
        completion = self.llm.complete_json(
            prompt=prompt,
            model=settings.AI_MINI_MODEL,
            temperature=0.2,
            max_tokens=300
        )
        record_llm_usage("supersession", completion)
        if completion.parsed_json is None:
            logger.warning(f"Malformed supersession output for item {item.id}: {completion.warnings}")
        return _parse_supersession(completion.parsed_json, item, "web_search", WEB_CONFIDENCE_THRESHOLD)
