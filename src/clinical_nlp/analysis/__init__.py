"""Result analysis: entity aggregation, completeness, insights and model comparison."""

from clinical_nlp.analysis.aggregator import (
    completeness_score,
    detect_schema,
    generate_insights,
    group_by_type,
)
from clinical_nlp.analysis.comparison import ComparisonSimulator, VariantSpec

__all__ = [
    "ComparisonSimulator",
    "VariantSpec",
    "completeness_score",
    "detect_schema",
    "generate_insights",
    "group_by_type",
]
