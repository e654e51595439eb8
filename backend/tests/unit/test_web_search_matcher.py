"""Unit tests for stage 4 web-search matching"""

import pytest

from config import settings
from fakes import FakeLLM, FakeSearch
from domain.ai.cost_ledger import CostLedger
from matching.normalizer import normalize
from matching.ports import CatalogRecord
from matching.web_search_matcher import (
    WebSearchMatcher,
    build_search_query,
    is_unmatchable,
    MAX_WEB_CONFIDENCE,
)
from models.match_candidate import MatchMethod


def _record(part_number, line_code=None, description=None):
    return CatalogRecord(
        id=None,
        part_number=part_number,
        part_number_norm=normalize(part_number),
        line_code=line_code,
        description=description,
    )


def _results(*tokens):
    return lambda query: [
        {"title": f"Cross reference {token}", "url": f"https://parts.example/{token}", "content": f"Replaces {token}"}
        for token in tokens
    ]


class TestQueryAndFilters:
    """Test query construction and the unmatchable filter"""

    def test_query_strips_packaging_words(self):
        """Test part number, line code, cleaned description and suffix"""
        item = _record("BR-4521", line_code="ACD", description="Brake rotor KIT front")
        assert build_search_query(item) == "BR-4521 ACD Brake rotor front automotive OEM"

    def test_query_without_description(self):
        """Test items without a description still get a query"""
        assert build_search_query(_record("BR-4521", line_code="ACD")) == "BR-4521 ACD automotive OEM"

    @pytest.mark.parametrize("part_number,line_code,description,expected", [
        ("X", "ACD", "brake rotor", True),
        ("BR-4521", "ACD", "BOLT 10", True),
        ("BR-4521", None, None, True),
        ("BR-4521", "ACD", None, False),
        ("BR-4521", None, "brake rotor", False),
    ])
    def test_unmatchable(self, part_number, line_code, description, expected):
        """Test items a web search cannot help with"""
        assert is_unmatchable(_record(part_number, line_code, description)) is expected


class TestWebSearchMatcher:
    """Test micro-batched search and evaluation"""

    def _matcher(self, db_session, catalog_cache, llm, search, sleep):
        return WebSearchMatcher(db_session, catalog_cache, llm, search, sleep=sleep)

    def test_match_capped_at_web_confidence(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test one LLM call per micro-batch and the 0.80 cap"""
        first = catalog.source(project, "GM-555", line_code="GM", description="water pump")
        second = catalog.source(project, "GM-556", line_code="GM", description="thermostat")
        supplier = catalog.supplier(project, "WP-998", line_code="ACD", description="water pump")
        catalog.supplier(project, "OTHER-1", line_code="ZZZ", description="unrelated")

        llm = FakeLLM(lambda prompt, model: {"matches": [
            {"itemIndex": 1, "matched": True, "supplierId": str(supplier.id), "confidence": 0.95, "reasoning": "OEM ref"},
            {"itemIndex": 2, "matched": False},
        ]})
        search = FakeSearch(_results("WP998", "GM555"))

        result = self._matcher(db_session, catalog_cache, llm, search, no_sleep).match_chunk(
            project.id, [CatalogRecord.from_item(first), CatalogRecord.from_item(second)]
        )

        assert len(llm.calls) == 1
        assert len(search.queries) == 2
        assert len(result.proposals) == 1
        proposal = result.proposals[0]
        assert proposal.source_item_id == first.id
        assert proposal.target_id == supplier.id
        assert proposal.method == MatchMethod.WEB_SEARCH
        assert proposal.match_stage == 4
        assert proposal.confidence == MAX_WEB_CONFIDENCE
        assert proposal.features["sources"][0].startswith("https://parts.example/")
        assert set(result.attempted_ids) == {first.id, second.id}
        assert str(supplier.id) in llm.calls[0]["prompt"]

    def test_too_few_results_skip_evaluation(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test items with fewer than the minimum results never reach the model"""
        source = catalog.source(project, "GM-555", line_code="GM", description="water pump")
        catalog.supplier(project, "WP-998", line_code="ACD")
        llm = FakeLLM()
        search = FakeSearch(_results("WP998"))

        result = self._matcher(db_session, catalog_cache, llm, search, no_sleep).match_chunk(
            project.id, [CatalogRecord.from_item(source)]
        )

        assert llm.calls == []
        assert result.stats["low_results"] == 1
        assert result.attempted_ids == [source.id]
        assert result.cost_micros == settings.WEB_SEARCH_COST_PER_SEARCH_MICROS

    def test_unknown_supplier_and_duplicates_ignored(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test hallucinated supplier ids and repeated item indexes are dropped"""
        source = catalog.source(project, "GM-555", line_code="GM", description="water pump")
        supplier = catalog.supplier(project, "WP-998", line_code="ACD")
        llm = FakeLLM(lambda prompt, model: {"matches": [
            {"itemIndex": 1, "matched": True, "supplierId": "not-a-real-id", "confidence": 0.9},
            {"itemIndex": 1, "matched": True, "supplierId": str(supplier.id), "confidence": 0.7},
            {"itemIndex": 1, "matched": True, "supplierId": str(supplier.id), "confidence": 0.9},
            {"itemIndex": 9, "matched": True, "supplierId": str(supplier.id), "confidence": 0.9},
        ]})
        search = FakeSearch(_results("WP998", "WP999"))

        result = self._matcher(db_session, catalog_cache, llm, search, no_sleep).match_chunk(
            project.id, [CatalogRecord.from_item(source)]
        )

        assert len(result.proposals) == 1
        assert result.proposals[0].confidence == pytest.approx(0.7)

    @pytest.mark.parametrize("confidence", [float("nan"), float("inf"), True, "high", None])
    def test_non_numeric_confidence_is_no_match(self, db_session, catalog, catalog_cache, project, no_sleep, confidence):
        """Test NaN, infinity and non-numbers in the evaluation count as no match"""
        source = catalog.source(project, "GM-555", line_code="GM", description="water pump")
        supplier = catalog.supplier(project, "WP-998", line_code="ACD")
        llm = FakeLLM(lambda prompt, model: {"matches": [
            {"itemIndex": 1, "matched": True, "supplierId": str(supplier.id), "confidence": confidence},
        ]})
        search = FakeSearch(_results("WP998", "WP999"))

        result = self._matcher(db_session, catalog_cache, llm, search, no_sleep).match_chunk(
            project.id, [CatalogRecord.from_item(source)]
        )

        assert result.proposals == []
        assert result.attempted_ids == [source.id]

    def test_malformed_evaluation(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test unparseable evaluation output produces no candidates"""
        source = catalog.source(project, "GM-555", line_code="GM", description="water pump")
        catalog.supplier(project, "WP-998", line_code="ACD")
        search = FakeSearch(_results("WP998", "WP999"))

        result = self._matcher(db_session, catalog_cache, FakeLLM(), search, no_sleep).match_chunk(
            project.id, [CatalogRecord.from_item(source)]
        )

        assert result.proposals == []
        assert result.attempted_ids == [source.id]

    def test_unmatchable_items_not_searched(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test filtered items are attempted without a search"""
        source = catalog.source(project, "BOLT 10")
        search = FakeSearch()

        result = self._matcher(db_session, catalog_cache, FakeLLM(), search, no_sleep).match_chunk(
            project.id, [CatalogRecord.from_item(source)]
        )

        assert search.queries == []
        assert result.attempted_ids == [source.id]
        assert result.cost_micros == 0

    def test_ceiling_checked_per_batch(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test an exhausted ledger stops the stage before searching"""
        source = catalog.source(project, "GM-555", line_code="GM", description="water pump")
        ledger = CostLedger(db_session, project.id, ceiling_micros=1, run_spent_micros=1)
        search = FakeSearch()

        result = self._matcher(db_session, catalog_cache, FakeLLM(), search, no_sleep).match_chunk(
            project.id, [CatalogRecord.from_item(source)], ledger=ledger
        )

        assert result.budget_exhausted is True
        assert result.attempted_ids == []
        assert search.queries == []
