"""Library-usable pipeline functions.

Each function corresponds to a CLI command but takes explicit parameters
instead of reading CLI args. They wrap the async adapters with asyncio.run,
so they must not be called from inside a running event loop; async callers
use the ``a*`` adapters directly.
"""

import asyncio
import logging
from pathlib import Path

from clinical_nlp.analysis.comparison import ComparisonSimulator, acompare
from clinical_nlp.batch.orchestrator import BatchOrchestrator, ProgressCallback
from clinical_nlp.batch.sink import JsonDirectorySink, ResultSink
from clinical_nlp.config import ClinicalNLPConfig
from clinical_nlp.inference.client import InferenceClient
from clinical_nlp.inference.tasks import aperform_ner, aperform_qa, aperform_summarization
from clinical_nlp.ingest.reader import discover_documents
from clinical_nlp.models import (
    AnalysisResult,
    BatchJob,
    ComparisonResult,
    QAResult,
    SummarizationResult,
    UploadedDocument,
)

logger = logging.getLogger(__name__)


def _client(config: ClinicalNLPConfig, client: InferenceClient | None) -> InferenceClient:
    return client or InferenceClient.from_config(config)


def run_ner(
    text: str,
    config: ClinicalNLPConfig,
    threshold: float | None = None,
    client: InferenceClient | None = None,
) -> AnalysisResult:
    """Extract entities from ``text`` (threshold defaults to the configured one)."""
    effective = config.confidence_threshold if threshold is None else threshold
    return asyncio.run(aperform_ner(_client(config, client), text, config.ner_model, effective))


def run_summarization(
    text: str,
    config: ClinicalNLPConfig,
    client: InferenceClient | None = None,
) -> SummarizationResult:
    return asyncio.run(aperform_summarization(_client(config, client), text, config.summarization_model))


def run_qa(
    text: str,
    question: str,
    config: ClinicalNLPConfig,
    model_label: str = "",
    client: InferenceClient | None = None,
) -> QAResult:
    return asyncio.run(aperform_qa(_client(config, client), text, question, config.qa_model, model_label))


def run_comparison(
    text: str,
    config: ClinicalNLPConfig,
    seed: int | None = None,
    client: InferenceClient | None = None,
) -> ComparisonResult:
    """One real NER call plus synthetic variants (seed defaults to config.seed)."""
    simulator = ComparisonSimulator(seed=config.seed if seed is None else seed)
    return asyncio.run(
        acompare(_client(config, client), text, simulator, config.ner_model, config.confidence_threshold)
    )


def run_batch(
    documents: list[UploadedDocument],
    config: ClinicalNLPConfig,
    model: str = "ClinicalBERT",
    name: str | None = None,
    sink: ResultSink | None = None,
    persist: bool = True,
    on_progress: ProgressCallback | None = None,
    client: InferenceClient | None = None,
) -> BatchJob:
    """Run the batch pipeline over ``documents`` in order.

    Args:
        documents: Uploaded files, processed in list order
        config: Settings (threshold, model ids, output_dir)
        model: Model label recorded with each analysis
        name: Batch name (defaults to a timestamp)
        sink: Persistence collaborator; defaults to JSON files under config.output_dir
        persist: Set False to skip persistence entirely
        on_progress: Called after every document reaches a terminal status

    Returns:
        The completed BatchJob
    """
    if sink is None and persist:
        sink = JsonDirectorySink(config.output_dir)
    orchestrator = BatchOrchestrator(
        _client(config, client),
        model=model,
        model_id=config.ner_model,
        threshold=config.confidence_threshold,
        sink=sink,
        on_progress=on_progress,
    )
    return asyncio.run(orchestrator.arun(documents, name=name))


def run_batch_directory(
    doc_dir: Path,
    config: ClinicalNLPConfig,
    model: str = "ClinicalBERT",
    **kwargs,
) -> BatchJob:
    """Run the batch pipeline over every PDF/Word file found under ``doc_dir``."""
    paths = discover_documents(doc_dir)
    if not paths:
        logger.warning(f"No supported documents found in {doc_dir}")
    documents = [UploadedDocument.from_path(p) for p in paths]
    return run_batch(documents, config, model=model, **kwargs)
