"""Batch document analysis: extract -> analyze -> record, one document at a time.

Documents are processed strictly in submission order with at most one
inference call in flight. A failure at any stage is stored on that document's
BatchItem and the loop moves on; the batch itself is never aborted by a bad
file.

Running aggregates are an explicit fold over the terminal items
(``fold_item``). The running confidence mean is weighted by the item's
zero-based position in the batch, not by the number of successes so far:

    avg = (avg * index + item_avg) / (index + 1)

so a failed document earlier in the batch still advances ``index``.
"""

import asyncio
import logging
import math
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from functools import reduce

from clinical_nlp.analysis.aggregator import merge_type_counts
from clinical_nlp.batch.sink import ResultSink
from clinical_nlp.errors import ClinicalNLPError
from clinical_nlp.inference.client import InferenceClient
from clinical_nlp.inference.tasks import DEFAULT_NER_MODEL, DEFAULT_THRESHOLD, aperform_ner
from clinical_nlp.ingest.reader import extract_text
from clinical_nlp.models import (
    BatchItem,
    BatchJob,
    BatchSummary,
    ItemStatus,
    JobStatus,
    UploadedDocument,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchJob, BatchItem], None]


@dataclass(frozen=True)
class BatchAccumulator:
    """Running aggregates carried from one terminal item to the next."""

    completed: int = 0
    success_count: int = 0
    aggregate_entity_count: int = 0
    aggregate_avg_confidence: float = 0.0


def fold_item(acc: BatchAccumulator, index: int, item: BatchItem) -> BatchAccumulator:
    """Fold one terminal item (at zero-based ``index``) into the accumulator."""
    if not item.status.is_terminal:
        raise ValueError(f"Cannot aggregate {item.filename}: status is {item.status.value}")

    completed = acc.completed + 1
    if item.status is ItemStatus.FAILED or item.result is None:
        return replace(acc, completed=completed)

    result = item.result
    return BatchAccumulator(
        completed=completed,
        success_count=acc.success_count + 1,
        aggregate_entity_count=acc.aggregate_entity_count + result.entity_count,
        aggregate_avg_confidence=(acc.aggregate_avg_confidence * index + result.avg_confidence) / (index + 1),
    )


def fold_items(items: Sequence[BatchItem]) -> BatchAccumulator:
    """Aggregate a sequence of terminal items from scratch."""
    return reduce(lambda acc, pair: fold_item(acc, *pair), enumerate(items), BatchAccumulator())


def summarize_batch(items: Iterable[BatchItem]) -> BatchSummary:
    """Totals over succeeded items. ``avg_entities_per_success`` is NaN with no successes."""
    items = list(items)
    succeeded = [i for i in items if i.status is ItemStatus.SUCCEEDED and i.result is not None]
    if succeeded:
        avg_entities = sum(i.result.entity_count for i in succeeded) / len(succeeded)
    else:
        avg_entities = math.nan
    return BatchSummary(
        total_files=len(items),
        success_count=len(succeeded),
        avg_entities_per_success=avg_entities,
    )


def aggregate_entity_summary(job: BatchJob) -> dict[str, int]:
    """Per-type entity counts summed over every succeeded item, most frequent first."""
    merged = merge_type_counts(
        item.entity_summary for item in job.items if item.status is ItemStatus.SUCCEEDED
    )
    return dict(sorted(merged.items(), key=lambda kv: kv[1], reverse=True))


class BatchOrchestrator:
    """Drive a batch of documents through extraction and thresholded NER.

    Args:
        client: Inference client used for the NER call
        model: Model label recorded with each analysis (e.g. "ClinicalBERT")
        model_id: Backing NER model id on the inference service
        threshold: Minimum entity confidence kept
        sink: Optional persistence collaborator
        on_progress: Called with (job, item) after every terminal transition
    """

    def __init__(
        self,
        client: InferenceClient,
        model: str = "ClinicalBERT",
        model_id: str = DEFAULT_NER_MODEL,
        threshold: float = DEFAULT_THRESHOLD,
        sink: ResultSink | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.client = client
        self.model = model
        self.model_id = model_id
        self.threshold = threshold
        self.sink = sink
        self.on_progress = on_progress

    async def arun(self, documents: Sequence[UploadedDocument], name: str | None = None) -> BatchJob:
        """Process every document once, in order, and return the completed job."""
        job = BatchJob(
            id=uuid.uuid4().hex,
            name=name or f"Batch {datetime.now(UTC):%Y-%m-%d %H:%M:%S}",
            model=self.model,
            total_documents=len(documents),
            items=[BatchItem(filename=doc.filename) for doc in documents],
        )
        logger.info(f"Starting {job.name}: {job.total_documents} documents with {self.model}")
        self._persist("batch record", lambda sink: sink.record_batch(job))

        acc = BatchAccumulator()
        for index, (document, item) in enumerate(zip(documents, job.items)):
            await self._process(document, item)
            acc = fold_item(acc, index, item)
            job.completed_documents = acc.completed
            job.aggregate_entity_count = acc.aggregate_entity_count
            job.aggregate_avg_confidence = acc.aggregate_avg_confidence
            if self.on_progress:
                self.on_progress(job, item)

        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.now(UTC)
        job.summary = summarize_batch(job.items)
        self._persist("batch record", lambda sink: sink.record_batch(job))

        logger.info(
            f"{job.name} completed: {job.summary.success_count}/{job.total_documents} succeeded, "
            f"{job.aggregate_entity_count} entities"
        )
        return job

    async def _process(self, document: UploadedDocument, item: BatchItem) -> None:
        item.status = ItemStatus.EXTRACTING
        try:
            text = await asyncio.to_thread(extract_text, document)
        except ClinicalNLPError as e:
            self._fail(item, str(e))
            return

        item.status = ItemStatus.ANALYZING
        try:
            result = await aperform_ner(self.client, text, self.model_id, self.threshold)
        except ClinicalNLPError as e:
            self._fail(item, str(e))
            return

        item.result = result
        item.status = ItemStatus.SUCCEEDED
        logger.info(f"  {item.filename}: {result.entity_count} entities")

        self._persist(
            f"analysis of {item.filename}",
            lambda sink: sink.record_analysis(item.filename, text, self.model, result),
        )
        self._persist(
            f"model stats for {self.model}",
            lambda sink: sink.update_model_stats(self.model, result.avg_confidence, result.entity_count),
        )

    def _fail(self, item: BatchItem, message: str) -> None:
        item.status = ItemStatus.FAILED
        item.result = None
        item.error = message
        logger.error(f"  {item.filename}: {message}")

    def _persist(self, what: str, write: Callable[[ResultSink], None]) -> None:
        if self.sink is None:
            return
        try:
            write(self.sink)
        except Exception as e:
            logger.warning(f"Failed to persist {what}: {e}")
