"""Unit tests for stage 3 LLM strategy matching

The LLM port is replaced by a scripted fake keyed on the prompt text.
"""

import pytest
from prometheus_client import REGISTRY

from config import settings
from fakes import FakeLLM
from domain.ai.cost_ledger import CostLedger
from matching.ai_matcher import AIMatcher
from matching.ports import CatalogRecord, parse_confidence
from models.cost_log import CostLogEntry
from models.match_candidate import MatchMethod


def _script(**answers):
    """Responder returning the answer for the first matching prompt marker."""
    markers = {
        "exact_part": "Validate if these parts match",
        "cross_reference": "cross-reference expert",
        "descriptive": "Match by description",
        "universal": "Match universal automotive part",
    }

    def responder(prompt, model):
        for strategy, marker in markers.items():
            if marker in prompt:
                return answers.get(strategy)
        return None

    return responder


def _run(db_session, catalog_cache, project, sources, llm, sleep, ledger=None):
    matcher = AIMatcher(db_session, catalog_cache, llm, sleep=sleep)
    return matcher.match_chunk(project.id, [CatalogRecord.from_item(s) for s in sources], ledger=ledger)


class TestConfidenceParsing:
    """Test the shared parser for model-reported confidence"""

    @pytest.mark.parametrize("value,expected", [
        (0.73, 0.73),
        ("0.6", 0.6),
        (1.4, 1.0),
        (0, 0.0),
    ])
    def test_valid_values(self, value, expected):
        assert parse_confidence(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf"), -0.1, True, None, "high", [0.9]])
    def test_rejected_values(self, value):
        """Test non-finite, negative and non-numeric values are no match"""
        assert parse_confidence(value) is None


class TestStrategies:
    """Test strategy order and confidence caps"""

    def test_exact_part_confirmed(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test identical part numbers confirmed by the mini model"""
        source = catalog.source(project, "AB-123", line_code="ACD", description="brake pad set")
        supplier = catalog.supplier(project, "AB123", line_code="ACD", description="brake pads")
        llm = FakeLLM(_script(exact_part={"matches": True, "bestMatch": 1, "confidence": 0.9}))

        result = _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        proposal = result.proposals[0]
        assert proposal.target_id == supplier.id
        assert proposal.method == MatchMethod.AI
        assert proposal.match_stage == 3
        assert proposal.confidence == pytest.approx(0.855)
        assert proposal.features["strategy"] == "exact_part"
        assert llm.calls[0]["model"] == settings.AI_MINI_MODEL

    def test_cross_reference(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test an OEM equivalent found among the selected candidates"""
        source = catalog.source(project, "GM-12345", line_code="ACD", description="water pump")
        supplier = catalog.supplier(project, "WP-998", line_code="ACD", description="water pump assembly")
        llm = FakeLLM(_script(cross_reference={
            "hasMatch": True,
            "matchIndex": 1,
            "confidence": 0.8,
            "matchType": "OEM_equivalent",
            "reasoning": "same pump",
        }))

        result = _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        proposal = result.proposals[0]
        assert proposal.target_id == supplier.id
        assert proposal.confidence == pytest.approx(0.68)
        assert proposal.features["matchType"] == "OEM_equivalent"
        assert proposal.features["reasoning"] == "same pump"
        # No identical part number, so the exact strategy never calls the model
        assert len(llm.calls) == 1

    def test_malformed_output_falls_through(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test unparseable cross-reference output is no match, not an error"""
        source = catalog.source(project, "GM-12345", line_code="ACD", description="front brake rotor vented")
        supplier = catalog.supplier(project, "BR-77", line_code="ACD", description="vented front brake rotor")
        llm = FakeLLM(_script(descriptive={"hasMatch": True, "matchIndex": 1, "confidence": 0.9}))

        result = _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        proposal = result.proposals[0]
        assert proposal.target_id == supplier.id
        assert proposal.features["strategy"] == "descriptive"
        assert proposal.confidence == pytest.approx(0.70)

    def test_universal_capped(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test universal parts are capped at 0.65"""
        source = catalog.source(project, "HC-25", line_code="ACD", description="Universal hose clamp 25mm")
        catalog.supplier(project, "CLAMP-1", line_code="ACD", description="stainless hose clamp 25mm")
        llm = FakeLLM(_script(
            cross_reference={"hasMatch": False},
            descriptive={"hasMatch": False},
            universal={"hasMatch": True, "matchIndex": 1, "confidence": 0.9},
        ))

        result = _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        assert result.proposals[0].features["strategy"] == "universal"
        assert result.proposals[0].confidence == pytest.approx(0.65)

    def test_out_of_range_index_is_no_match(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test an index outside the candidate list is ignored"""
        source = catalog.source(project, "GM-12345", line_code="ACD", description="water pump")
        catalog.supplier(project, "WP-998", line_code="ACD", description="water pump assembly")
        llm = FakeLLM(_script(cross_reference={"hasMatch": True, "matchIndex": 7, "confidence": 0.9}))

        result = _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        assert result.proposals == []
        assert result.attempted_ids == [source.id]

    def test_low_cross_reference_confidence_rejected(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test cross-reference answers below 0.6 are not accepted"""
        source = catalog.source(project, "GM-12345", line_code="ACD", description="water pump")
        catalog.supplier(project, "WP-998", line_code="ACD", description="water pump assembly")
        llm = FakeLLM(_script(cross_reference={"hasMatch": True, "matchIndex": 1, "confidence": 0.55}))

        result = _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        assert result.proposals == []


class TestSelectionAndCost:
    """Test candidate gating, pacing and the cost ceiling"""

    def test_no_candidates_skips_llm(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test items with an empty selection are never sent to the model"""
        source = catalog.source(project, "AB123")
        catalog.supplier(project, "ZZZZZ")
        llm = FakeLLM(_script())

        result = _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        assert llm.calls == []
        assert result.attempted_ids == [source.id]
        assert result.stats["no_candidates"] == 1

    def test_requests_are_paced(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test the configured delay is applied between model-bound items"""
        first = catalog.source(project, "AB-123", line_code="ACD", description="brake pad set")
        second = catalog.source(project, "AB-124", line_code="ACD", description="brake pad set")
        catalog.supplier(project, "AB123", line_code="ACD", description="brake pads")
        catalog.supplier(project, "AB124", line_code="ACD", description="brake pads")
        llm = FakeLLM(_script())

        _run(db_session, catalog_cache, project, [first, second], llm, no_sleep)

        assert no_sleep.delays == [settings.AI_REQUEST_DELAY_SECONDS]

    def test_ceiling_stops_before_next_item(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test the ledger is checked before every paid item"""
        sources = [
            catalog.source(project, f"AB-12{i}", line_code="ACD", description="brake pad set")
            for i in range(3)
        ]
        catalog.supplier(project, "AB120", line_code="ACD", description="brake pads")
        ledger = CostLedger(
            db_session,
            project.id,
            ceiling_micros=2 * settings.AI_COST_PER_ITEM_MICROS
        )
        llm = FakeLLM(_script())

        result = _run(db_session, catalog_cache, project, sources, llm, no_sleep, ledger=ledger)
        db_session.commit()

        assert result.budget_exhausted is True
        assert result.attempted_ids == [sources[0].id, sources[1].id]
        assert result.cost_micros == 2 * settings.AI_COST_PER_ITEM_MICROS
        assert ledger.ceiling_reached is True
        assert db_session.query(CostLogEntry).count() == 2
        db_session.refresh(project)
        assert project.current_spend_micros == 2 * settings.AI_COST_PER_ITEM_MICROS

    def test_metered_usage_recorded(self, db_session, catalog, catalog_cache, project, no_sleep):
        """Test provider-reported tokens and cost are counted next to the estimate"""
        source = catalog.source(project, "AB-123", line_code="ACD", description="brake pad set")
        catalog.supplier(project, "AB123", line_code="ACD", description="brake pads")
        llm = FakeLLM(_script(), tokens_in=800, tokens_out=120, cost_micros=312)

        def sample(name, **labels):
            return REGISTRY.get_sample_value(name, {"operation": "ai_match", **labels}) or 0.0

        cost_before = sample("partmatch_llm_metered_cost_micros_total")
        tokens_before = sample("partmatch_llm_tokens_total", direction="in")

        _run(db_session, catalog_cache, project, [source], llm, no_sleep)

        calls = len(llm.calls)
        assert calls > 0
        assert sample("partmatch_llm_metered_cost_micros_total") - cost_before == 312 * calls
        assert sample("partmatch_llm_tokens_total", direction="in") - tokens_before == 800 * calls
