"""Stage 4: web-search matching with batched LLM evaluation.

Items still unmatched after stage 3 are searched on the web in micro-batches
(parallel searches per batch). Surviving items' snippets and a
relevance-filtered supplier slice go to ONE LLM call per micro-batch.
Web evidence is weaker than catalog-internal matching, so confidence is
capped at 0.80.
"""

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from config import settings
from domain.ai.ports import LLMProviderPort, WebSearchPort, WebSearchResponse
from models.match_candidate import MatchMethod, TargetType
from observability.metrics import estimated_cost_micros_total, record_llm_usage
from .catalog_cache import SupplierCatalogCache
from .normalizer import normalize, normalize_line_code
from .ports import CatalogRecord, CandidateProposal, StageResult, StageMatcherPort, parse_confidence

logger = logging.getLogger(__name__)

WEB_SEARCH_STAGE = 4
MAX_WEB_CONFIDENCE = 0.80
MIN_WEB_CONFIDENCE = 0.5

_PACKAGING_WORDS = re.compile(r"\b(KIT|ASSY|ASSEMBLY|SET)\b", re.IGNORECASE)
_GENERIC_FASTENER = re.compile(r"^(BOLT|NUT|WASHER|SCREW|CLIP|PIN|RIVET|STUD)\s*\d*$", re.IGNORECASE)
_RESULT_TOKEN = re.compile(r"\b[A-Z0-9]{4,}\b")


def build_search_query(item: CatalogRecord) -> str:
    """Part number + line code + cleaned description + "automotive OEM"."""
    parts = [item.part_number]
    if item.line_code:
        parts.append(item.line_code)

    if item.description:
        cleaned = _PACKAGING_WORDS.sub("", item.description)
        cleaned = " ".join(cleaned.split())[:50].strip()
        if len(cleaned) > 3:
            parts.append(cleaned)

    parts.append("automotive OEM")
    return " ".join(parts)


def is_unmatchable(item: CatalogRecord) -> bool:
    """Items a web search cannot help with."""
    part_number = (item.part_number or "").strip()
    if len(part_number) < 2:
        return True

    description = (item.description or "").strip()
    if description and _GENERIC_FASTENER.match(description):
        return True
    if _GENERIC_FASTENER.match(part_number):
        return True

    return not description and not item.line_code


def result_keywords(response: WebSearchResponse) -> set:
    """Uppercase part-number-like tokens found in search results."""
    keywords = set()
    for result in response.results:
        text = f"{result.title} {result.content}".upper()
        keywords.update(_RESULT_TOKEN.findall(text))
    if response.answer:
        keywords.update(_RESULT_TOKEN.findall(response.answer.upper()))
    return keywords


def relevant_suppliers(
    suppliers: Sequence[CatalogRecord],
    searched: List[Tuple[CatalogRecord, WebSearchResponse]],
    limit: int
) -> List[CatalogRecord]:
    """Suppliers ranked by keyword hits against the batch's items and results."""
    keywords = set()
    for item, response in searched:
        if item.part_number_norm:
            keywords.add(item.part_number_norm)
        line_code = normalize_line_code(item.line_code)
        if line_code:
            keywords.add(line_code)
        keywords.update(normalize(token) for token in result_keywords(response))
    keywords.discard("")

    if not keywords:
        return []

    scored = []
    for supplier in suppliers:
        hits = 0
        if supplier.part_number_norm in keywords:
            hits += 1
        line_code = normalize_line_code(supplier.line_code)
        if line_code and line_code in keywords:
            hits += 1
        if hits:
            scored.append((hits, supplier))

    scored.sort(key=lambda pair: (-pair[0], str(pair[1].id)))
    return [supplier for _, supplier in scored[:limit]]


@dataclass
class _SearchOutcome:
    item: CatalogRecord
    response: Optional[WebSearchResponse]


class WebSearchMatcher(StageMatcherPort):
    """Web-search matcher (stage 4).

    Args:
        db: Database session
        catalog_cache: Supplier catalog cache
        llm: LLM provider port
        search: Web-search provider port
        sleep: Delay function between micro-batches (injectable for tests)
    """

    stage = WEB_SEARCH_STAGE

    def __init__(
        self,
        db: Session,
        catalog_cache: SupplierCatalogCache,
        llm: LLMProviderPort,
        search: WebSearchPort,
        sleep: Callable[[float], None] = time.sleep,
        batch_delay: Optional[float] = None
    ):
        self.db = db
        self.catalog_cache = catalog_cache
        self.llm = llm
        self.search = search
        self.sleep = sleep
        self.batch_delay = settings.WEB_SEARCH_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.batch_size = settings.WEB_SEARCH_MICRO_BATCH_SIZE
        self.max_results = settings.WEB_SEARCH_MAX_RESULTS
        self.search_depth = settings.WEB_SEARCH_DEPTH
        self.min_results = settings.WEB_SEARCH_MIN_RESULTS
        self.supplier_slice = settings.WEB_SEARCH_SUPPLIER_SLICE
        self.cost_per_search = settings.WEB_SEARCH_COST_PER_SEARCH_MICROS
        self.cost_per_eval = settings.WEB_SEARCH_COST_PER_EVAL_MICROS

    def match_chunk(self, project_id: UUID, items: List[CatalogRecord], ledger=None) -> StageResult:
        snapshot = self.catalog_cache.get(self.db, project_id)
        result = StageResult(stats={"unmatchable": 0, "low_results": 0, "matched": 0, "batches": 0})

        searchable = []
        for item in items:
            if is_unmatchable(item):
                result.stats["unmatchable"] += 1
                result.attempted_ids.append(item.id)
            else:
                searchable.append(item)

        for start in range(0, len(searchable), self.batch_size):
            if ledger is not None and not ledger.can_spend():
                logger.warning(f"Web-search cost ceiling reached for project {project_id}")
                result.budget_exhausted = True
                break

            if result.stats["batches"] and self.batch_delay:
                self.sleep(self.batch_delay)

            batch = searchable[start:start + self.batch_size]
            self._process_batch(batch, snapshot.suppliers, result, ledger)
            result.stats["batches"] += 1

        logger.info(
            f"Web-search chunk for project {project_id}: {len(result.attempted_ids)} items, "
            f"{result.stats['matched']} matched, ${result.cost_micros / 1_000_000:.2f} estimated"
        )
        return result

    def _charge(self, ledger, amount: int, items: int, result: StageResult) -> None:
        if ledger is not None:
            ledger.charge("web_search", amount, items_processed=items)
        estimated_cost_micros_total.labels(operation="web_search").inc(amount)
        result.cost_micros += amount

    def _process_batch(self, batch: List[CatalogRecord], suppliers, result: StageResult, ledger) -> None:
        self._charge(ledger, self.cost_per_search * len(batch), len(batch), result)

        outcomes = self._search_parallel(batch)
        result.attempted_ids.extend(item.id for item in batch)

        searched = []
        for outcome in outcomes:
            if outcome.response is None or len(outcome.response.results) < self.min_results:
                result.stats["low_results"] += 1
                continue
            searched.append((outcome.item, outcome.response))

        if not searched:
            return

        candidates = relevant_suppliers(suppliers, searched, self.supplier_slice)
        if not candidates:
            return

        self._charge(ledger, self.cost_per_eval, len(searched), result)
        for proposal in self._evaluate(searched, candidates):
            result.proposals.append(proposal)
            result.stats["matched"] += 1

    def _search_parallel(self, batch: List[CatalogRecord]) -> List[_SearchOutcome]:
        with ThreadPoolExecutor(max_workers=max(1, len(batch))) as executor:
            responses = list(executor.map(self._search_one, batch))
        return [_SearchOutcome(item=item, response=response) for item, response in zip(batch, responses)]

    def _search_one(self, item: CatalogRecord) -> WebSearchResponse:
        return self.search.search(
            query=build_search_query(item),
            max_results=self.max_results,
            search_depth=self.search_depth,
            include_answer=True,
        )

    def _evaluate(
        self,
        searched: List[Tuple[CatalogRecord, WebSearchResponse]],
        candidates: List[CatalogRecord]
    ) -> List[CandidateProposal]:
        prompt = self._build_prompt(searched, candidates)
        completion = self.llm.complete_json(
            prompt=prompt,
            model=settings.WEB_SEARCH_MODEL,
            temperature=0.1,
            max_tokens=200 * len(searched) + 200,
            system_prompt=(
                "You are an automotive parts expert specializing in part number interchange "
                "and cross-referencing. Always respond with valid JSON only."
            ),
        )
        record_llm_usage("web_search", completion)

        data = completion.parsed_json
        if not data or not isinstance(data.get("matches"), list):
            logger.warning(
                f"Malformed web-search evaluation output: {completion.raw_output[:200]!r} {completion.warnings}"
            )
            return []

        by_id: Dict[str, CatalogRecord] = {str(c.id): c for c in candidates}
        proposals = []
        seen_items = set()

        for entry in data["matches"]:
            if not isinstance(entry, dict) or entry.get("matched") is not True:
                continue

            try:
                item_index = int(entry.get("itemIndex"))
            except (TypeError, ValueError):
                continue
            confidence = parse_confidence(entry.get("confidence"))

            if not 1 <= item_index <= len(searched) or item_index in seen_items:
                continue
            supplier = by_id.get(str(entry.get("supplierId")))
            if supplier is None or confidence is None or confidence < MIN_WEB_CONFIDENCE:
                continue

            seen_items.add(item_index)
            item, response = searched[item_index - 1]
            proposals.append(CandidateProposal(
                source_item_id=item.id,
                target_id=supplier.id,
                target_type=TargetType.SUPPLIER,
                method=MatchMethod.WEB_SEARCH,
                match_stage=WEB_SEARCH_STAGE,
                confidence=min(confidence, MAX_WEB_CONFIDENCE),
                features={
                    "reasoning": entry.get("reasoning"),
                    "searchQuery": response.query,
                    "resultCount": len(response.results),
                    "sources": [r.url for r in response.results[:3]],
                    "storePartNumber": item.part_number,
                    "supplierPartNumber": supplier.part_number,
                },
            ))

        return proposals

    @staticmethod
    def _build_prompt(
        searched: List[Tuple[CatalogRecord, WebSearchResponse]],
        candidates: List[CatalogRecord]
    ) -> str:
        item_blocks = []
        for i, (item, response) in enumerate(searched, start=1):
            snippets = "\n".join(
                f"  - {r.title}: {r.content[:200]}" for r in response.results[:5]
            )
            answer = f"\n  Summary: {response.answer}" if response.answer else ""
            item_blocks.append(
                f"Item {i}: {item.part_number} | {item.line_code or '?'} | {item.description or 'N/A'}"
                f"{answer}\n  Web results:\n{snippets}"
            )

        supplier_lines = "\n".join(
            f"- id={c.id} | {c.part_number} | {c.line_code or '?'} | {c.description or 'N/A'}"
            for c in candidates
        )

        return (
            "Use the web search evidence to decide which supplier part (if any) is the same "
            "physical part as each store item (OEM number, interchange or cross-reference).\n\n"
            + "\n\n".join(item_blocks)
            + f"\n\nSupplier catalog (relevant slice):\n{supplier_lines}\n\n"
            'Return JSON: {"matches": [{"itemIndex": 1-based item number, "matched": true/false, '
            '"supplierId": "id from the supplier list or null", "confidence": 0.0-1.0, '
            '"reasoning": "short explanation"}]}'
        )
