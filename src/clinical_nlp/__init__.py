"""clinical-nlp: clinical text analysis against a hosted inference service.

Named entity recognition, summarization and question answering for clinical
notes, plus a batch pipeline that extracts text from PDF/Word uploads,
analyzes each document in order, isolates per-document failures and folds
running statistics across the batch.
"""

__version__ = "0.1.0"

from clinical_nlp.analysis.comparison import ComparisonSimulator, VariantSpec
from clinical_nlp.batch.orchestrator import BatchOrchestrator
from clinical_nlp.batch.sink import JsonDirectorySink
from clinical_nlp.config import ClinicalNLPConfig
from clinical_nlp.export import export_results
from clinical_nlp.inference.client import InferenceClient
from clinical_nlp.pipeline import (
    run_batch,
    run_batch_directory,
    run_comparison,
    run_ner,
    run_qa,
    run_summarization,
)

__all__ = [
    "__version__",
    "BatchOrchestrator",
    "ClinicalNLPConfig",
    "ComparisonSimulator",
    "InferenceClient",
    "JsonDirectorySink",
    "VariantSpec",
    "export_results",
    "run_batch",
    "run_batch_directory",
    "run_comparison",
    "run_ner",
    "run_qa",
    "run_summarization",
]
