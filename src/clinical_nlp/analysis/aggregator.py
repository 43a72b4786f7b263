"""Entity grouping, completeness scoring and rule-based insights.

The tag vocabulary is detected once per result (``detect_schema``) and passed
explicitly to completeness scoring. Insight rules for both vocabularies always
run.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence

from clinical_nlp.models import CompletenessScore, Entity, Schema

logger = logging.getLogger(__name__)

# Presence of any of these marks a biomedical-ner-all result
BIOMEDICAL_MARKERS = frozenset({"Sign_symptom", "Diagnostic_procedure", "Medication"})

REQUIRED_TYPES: dict[Schema, tuple[str, ...]] = {
    Schema.BIOMEDICAL: ("Sign_symptom", "Diagnostic_procedure", "Biological_structure"),
    Schema.ONCOLOGY: ("TUMOR_SIZE", "TUMOR_TYPE", "RECEPTOR_STATUS", "STAGE"),
}

HIGH_CONFIDENCE = 0.85
MODERATE_CONFIDENCE = 0.70
RECEPTOR_PANEL_MIN = 3


def group_by_type(entities: Iterable[Entity]) -> dict[str, list[Entity]]:
    """Group entities by type; groups and members keep first-seen order."""
    groups: dict[str, list[Entity]] = {}
    for entity in entities:
        groups.setdefault(entity.type, []).append(entity)
    return groups


def count_by_type(entities: Iterable[Entity]) -> dict[str, int]:
    return {t: len(group) for t, group in group_by_type(entities).items()}


def merge_type_counts(counts: Iterable[Mapping[str, int]]) -> dict[str, int]:
    """Sum per-type counts across documents (batch-level distribution)."""
    merged: dict[str, int] = {}
    for doc_counts in counts:
        for entity_type, n in doc_counts.items():
            merged[entity_type] = merged.get(entity_type, 0) + n
    return merged


def detect_schema(entities: Iterable[Entity]) -> Schema:
    types = {e.type for e in entities}
    if types & BIOMEDICAL_MARKERS:
        return Schema.BIOMEDICAL
    return Schema.ONCOLOGY


def completeness_score(entities: Sequence[Entity], schema: Schema) -> CompletenessScore:
    """Share of the schema's required types present, as a percentage."""
    required = REQUIRED_TYPES[schema]
    found = {e.type for e in entities}
    matched = [t for t in required if t in found]
    missing = [t for t in required if t not in found]
    score = len(matched) / len(required) * 100 if required else 0.0
    return CompletenessScore(score=score, matched=len(matched), total=len(required), missing=missing)


def confidence_band(avg_confidence: float) -> str:
    if avg_confidence > HIGH_CONFIDENCE:
        return "✓ High confidence extraction (>85%)"
    if avg_confidence > MODERATE_CONFIDENCE:
        return "○ Moderate confidence extraction (70-85%)"
    return "⚠ Low confidence extraction (<70%)"


def generate_insights(entities: Sequence[Entity]) -> list[str]:
    """Human-readable observations, ending with exactly one confidence band.

    Oncology and biomedical rules are both applied, whatever the schema, so a
    result that mixes vocabularies gets every matching observation.
    """
    insights: list[str] = []
    counts = count_by_type(entities)

    # oncology vocabulary
    if "TUMOR_SIZE" in counts and "TUMOR_TYPE" in counts:
        insights.append("✓ Complete tumor characterization detected")
    if counts.get("RECEPTOR_STATUS", 0) >= RECEPTOR_PANEL_MIN:
        insights.append("✓ Comprehensive receptor panel identified")

    # biomedical vocabulary
    if "Sign_symptom" in counts:
        insights.append(f"✓ Identified {counts['Sign_symptom']} clinical signs/symptoms")
    if "Diagnostic_procedure" in counts:
        insights.append("✓ Diagnostic procedures documented")
    if "Medication" in counts or "Therapeutic_procedure" in counts:
        insights.append("✓ Therapeutic interventions identified")

    avg = sum(e.confidence for e in entities) / len(entities) if entities else 0.0
    insights.append(confidence_band(avg))
    return insights


def summarize_entities(entities: Sequence[Entity]) -> dict:
    """Schema, completeness, insights and type counts for one result."""
    schema = detect_schema(entities)
    return {
        "schema": schema,
        "completeness": completeness_score(entities, schema),
        "insights": generate_insights(entities),
        "type_counts": count_by_type(entities),
    }
