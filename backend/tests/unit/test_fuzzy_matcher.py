"""Unit tests for stage 2 fuzzy trigram matching"""

import pytest

from matching.fuzzy_matcher import (
    FuzzyMatcher,
    band_confidence,
    combined_score,
    fuzzy_confidence,
)
from matching.ports import CatalogRecord
from matching.trigram import TrigramIndex, trigrams, trigram_similarity
from models.match_candidate import MatchMethod


class TestTrigrams:
    """Test pg_trgm-compatible similarity"""

    def test_word_padding(self):
        """Test words are padded with two leading spaces and one trailing"""
        assert trigrams("cat") == {"  c", " ca", "cat", "at "}

    def test_case_and_punctuation_ignored(self):
        """Test similarity is computed on lowercase words"""
        assert trigram_similarity("Brake-Rotor", "brake rotor") == 1.0

    def test_word_order_ignored(self):
        """Test descriptions with the same words are identical"""
        assert trigram_similarity("brake rotor front", "front brake rotor") == 1.0

    def test_empty_input(self):
        """Test empty strings have zero similarity"""
        assert trigram_similarity("", "abc") == 0.0
        assert trigram_similarity(None, None) == 0.0

    def test_part_number_similarity(self):
        """Test a one-character suffix on a 6-character part"""
        assert trigram_similarity("BR4521", "BR4521X") == pytest.approx(6 / 9)

    def test_index_search_orders_best_first(self):
        """Test the inverted index returns hits above threshold, best first"""
        index = TrigramIndex([("a", "BR4521X"), ("b", "BR4521"), ("c", "OIL99")])
        hits = index.search("BR4521", threshold=0.5)
        assert [key for key, _ in hits] == ["b", "a"]
        assert hits[0][1] == 1.0

    def test_index_skips_unrelated(self):
        """Test entries sharing no trigram are never scored"""
        index = TrigramIndex([("c", "OIL99")])
        assert index.search("BR4521") == []


class TestFuzzyConfidence:
    """Test banded confidence"""

    @pytest.mark.parametrize("score,expected", [
        (0.97, 0.95),
        (0.90, 0.95),
        (0.86, 0.90),
        (0.82, 0.85),
        (0.77, 0.80),
        (0.71, 0.75),
        (0.60, 0.70),
    ])
    def test_bands(self, score, expected):
        """Test score to confidence bands"""
        assert band_confidence(score) == expected

    def test_scenario_part_similarity_basis(self):
        """Test part similarity 0.82 with description 0.55 maps to 0.85"""
        assert fuzzy_confidence(0.82, 0.55) == 0.85

    def test_combined_basis(self):
        """Test the combined basis bands the weighted score"""
        assert combined_score(0.82, 0.55) == pytest.approx(0.739)
        assert fuzzy_confidence(0.82, 0.55, basis="combined") == 0.75

    def test_unknown_basis(self):
        """Test an unknown basis is a configuration error"""
        with pytest.raises(ValueError):
            fuzzy_confidence(0.9, 0.9, basis="description")


class TestFuzzyMatcher:
    """Test candidate generation over a supplier catalog"""

    def _run(self, db_session, catalog_cache, project, sources, **kwargs):
        matcher = FuzzyMatcher(db_session, catalog_cache, **kwargs)
        return matcher.match_chunk(project.id, [CatalogRecord.from_item(s) for s in sources])

    def test_brake_rotor_match(self, db_session, catalog, catalog_cache, project):
        """Test "BR-4521" matches "BR4521X" with explanation features"""
        source = catalog.source(project, "BR-4521", description="brake rotor front")
        supplier = catalog.supplier(project, "BR4521X", description="front brake rotor")

        result = self._run(db_session, catalog_cache, project, [source])

        assert len(result.proposals) == 1
        proposal = result.proposals[0]
        assert proposal.target_id == supplier.id
        assert proposal.method == MatchMethod.FUZZY
        assert proposal.match_stage == 2
        assert proposal.confidence == 0.70
        assert proposal.features["partSimilarity"] == pytest.approx(0.6667, abs=1e-4)
        assert proposal.features["descriptionSimilarity"] == 1.0
        assert "Fuzzy match" in proposal.features["reason"]

    def test_one_candidate_per_item(self, db_session, catalog, catalog_cache, project):
        """Test only the best-scoring supplier is kept"""
        source = catalog.source(project, "BR-4521", description="brake rotor front")
        best = catalog.supplier(project, "BR4521X", description="front brake rotor")
        catalog.supplier(project, "BR4521XY", description="front brake rotor")

        result = self._run(db_session, catalog_cache, project, [source])

        assert [p.target_id for p in result.proposals] == [best.id]

    def test_description_floor(self, db_session, catalog, catalog_cache, project):
        """Test similar part numbers with unrelated descriptions are rejected"""
        source = catalog.source(project, "BR-4521", description="brake rotor front")
        catalog.supplier(project, "BR4521X", description="oil filter")

        result = self._run(db_session, catalog_cache, project, [source])

        assert result.proposals == []
        assert result.attempted_ids == [source.id]

    def test_part_threshold(self, db_session, catalog, catalog_cache, project):
        """Test part similarity below the threshold is rejected"""
        source = catalog.source(project, "BR-4521", description="brake rotor front")
        catalog.supplier(project, "BR4521X", description="front brake rotor")

        result = self._run(db_session, catalog_cache, project, [source], part_threshold=0.8)

        assert result.proposals == []

    def test_short_and_undescribed_items(self, db_session, catalog, catalog_cache, project):
        """Test items that cannot meet the filters are attempted but skipped"""
        short = catalog.source(project, "AB", description="brake rotor front")
        bare = catalog.source(project, "BR-4521")
        catalog.supplier(project, "BR4521X", description="front brake rotor")

        result = self._run(db_session, catalog_cache, project, [short, bare])

        assert result.proposals == []
        assert result.attempted_ids == [short.id, bare.id]
        assert result.stats["too_short"] == 1
        assert result.stats["no_description"] == 1
