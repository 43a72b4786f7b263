"""Tests for clinical_nlp.analysis.aggregator."""

import pytest

from clinical_nlp.analysis.aggregator import (
    completeness_score,
    confidence_band,
    count_by_type,
    detect_schema,
    generate_insights,
    group_by_type,
    merge_type_counts,
    summarize_entities,
)
from clinical_nlp.models import Entity, Schema


def _entity(entity_type: str, confidence: float = 0.9, start: int = 0) -> Entity:
    return Entity(text="x", type=entity_type, confidence=confidence, start=start, end=start + 1)


class TestGrouping:

    def test_group_by_type_keeps_order(self, sample_entities):
        entities = [*sample_entities, _entity("Sign_symptom", start=5)]
        groups = group_by_type(entities)
        assert list(groups) == ["Sign_symptom", "Diagnostic_procedure", "Medication"]
        assert len(groups["Sign_symptom"]) == 2

    def test_count_by_type(self, sample_entities):
        assert count_by_type(sample_entities) == {
            "Sign_symptom": 1, "Diagnostic_procedure": 1, "Medication": 1,
        }

    def test_merge_type_counts(self):
        merged = merge_type_counts([{"Medication": 2, "Sign_symptom": 1}, {"Medication": 1}, {}])
        assert merged == {"Medication": 3, "Sign_symptom": 1}


class TestSchema:

    def test_biomedical_marker_detected(self, sample_entities):
        assert detect_schema(sample_entities) is Schema.BIOMEDICAL

    def test_otherwise_oncology(self):
        assert detect_schema([_entity("TUMOR_SIZE"), _entity("STAGE")]) is Schema.ONCOLOGY

    def test_empty_is_oncology(self):
        assert detect_schema([]) is Schema.ONCOLOGY


class TestCompleteness:

    def test_biomedical_partial(self, sample_entities):
        score = completeness_score(sample_entities, Schema.BIOMEDICAL)
        assert score.matched == 2
        assert score.total == 3
        assert score.score == pytest.approx(200 / 3)
        assert score.missing == ["Biological_structure"]

    def test_oncology_complete(self):
        entities = [_entity(t) for t in ("TUMOR_SIZE", "TUMOR_TYPE", "RECEPTOR_STATUS", "STAGE")]
        score = completeness_score(entities, Schema.ONCOLOGY)
        assert score.score == 100.0
        assert score.missing == []

    def test_nothing_found(self):
        assert completeness_score([], Schema.ONCOLOGY).score == 0.0


class TestConfidenceBand:
    """Band boundaries are strict: exactly 0.85 is moderate, exactly 0.70 is low."""

    @pytest.mark.parametrize("avg,prefix", [
        (0.86, "✓ High"),
        (0.85, "○ Moderate"),
        (0.71, "○ Moderate"),
        (0.70, "⚠ Low"),
        (0.0, "⚠ Low"),
    ])
    def test_bands(self, avg, prefix):
        assert confidence_band(avg).startswith(prefix)


class TestInsights:

    def test_biomedical_insights(self, sample_entities):
        entities = [*sample_entities, _entity("Sign_symptom", confidence=0.95, start=5)]
        insights = generate_insights(entities)
        assert insights[0] == "✓ Identified 2 clinical signs/symptoms"
        assert "✓ Diagnostic procedures documented" in insights
        assert "✓ Therapeutic interventions identified" in insights
        assert insights[-1] == "✓ High confidence extraction (>85%)"

    def test_oncology_insights(self):
        entities = [
            _entity("TUMOR_SIZE", 0.8),
            _entity("TUMOR_TYPE", 0.8),
            _entity("RECEPTOR_STATUS", 0.8),
            _entity("RECEPTOR_STATUS", 0.8),
            _entity("RECEPTOR_STATUS", 0.8),
        ]
        insights = generate_insights(entities)
        assert insights == [
            "✓ Complete tumor characterization detected",
            "✓ Comprehensive receptor panel identified",
            "○ Moderate confidence extraction (70-85%)",
        ]

    def test_mixed_vocabulary_gets_every_rule(self):
        """Rules from both vocabularies fire on a mixed result."""
        entities = [_entity("TUMOR_SIZE"), _entity("TUMOR_TYPE"), _entity("Sign_symptom")]
        assert detect_schema(entities) is Schema.BIOMEDICAL
        assert generate_insights(entities) == [
            "✓ Complete tumor characterization detected",
            "✓ Identified 1 clinical signs/symptoms",
            "✓ High confidence extraction (>85%)",
        ]

    def test_therapeutic_procedure_alone(self):
        """Therapeutic_procedure is not a biomedical marker, but still counts as an intervention."""
        entities = [_entity("Therapeutic_procedure")]
        assert detect_schema(entities) is Schema.ONCOLOGY
        assert generate_insights(entities) == [
            "✓ Therapeutic interventions identified",
            "✓ High confidence extraction (>85%)",
        ]

    def test_exactly_one_band(self):
        insights = generate_insights([])
        assert insights == ["⚠ Low confidence extraction (<70%)"]

    def test_summarize_entities(self, sample_entities):
        summary = summarize_entities(sample_entities)
        assert summary["schema"] is Schema.BIOMEDICAL
        assert summary["completeness"].matched == 2
        assert summary["insights"][-1].startswith("✓ High")
        assert summary["type_counts"]["Medication"] == 1
