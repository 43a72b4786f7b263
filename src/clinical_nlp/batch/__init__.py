"""Batch document analysis pipeline and its persistence collaborator."""

from clinical_nlp.batch.orchestrator import (
    BatchAccumulator,
    BatchOrchestrator,
    aggregate_entity_summary,
    fold_item,
    summarize_batch,
)
from clinical_nlp.batch.sink import JsonDirectorySink, ResultSink

__all__ = [
    "BatchAccumulator",
    "BatchOrchestrator",
    "JsonDirectorySink",
    "ResultSink",
    "aggregate_entity_summary",
    "fold_item",
    "summarize_batch",
]
