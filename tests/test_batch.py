"""Tests for clinical_nlp.batch (orchestrator, fold and sinks)."""

import asyncio
import json
import math

import httpx
import pytest

from clinical_nlp.batch.orchestrator import (
    BatchAccumulator,
    BatchOrchestrator,
    aggregate_entity_summary,
    fold_item,
    fold_items,
    summarize_batch,
)
from clinical_nlp.batch.sink import JsonDirectorySink
from clinical_nlp.config import ClinicalNLPConfig
from clinical_nlp.models import AnalysisResult, BatchItem, Entity, ItemStatus, JobStatus, UploadedDocument
from clinical_nlp.pipeline import run_batch, run_batch_directory

FIRST_NOTE = "Patient has chest pain and fever."
THIRD_NOTE = "Aspirin administered daily with food."


def _ner_item(text: str, word: str, group: str, score: float) -> dict:
    start = text.index(word)
    return {"word": word, "entity_group": group, "score": score, "start": start, "end": start + len(word)}


NER_RESPONSES = {
    FIRST_NOTE: [
        _ner_item(FIRST_NOTE, "chest pain", "Sign_symptom", 0.9),
        _ner_item(FIRST_NOTE, "fever", "Sign_symptom", 0.8),
    ],
    THIRD_NOTE: [_ner_item(THIRD_NOTE, "Aspirin", "Medication", 0.6)],
}


def _ner_handler(request: httpx.Request) -> httpx.Response:
    text = json.loads(request.content)["inputs"]
    if text not in NER_RESPONSES:
        return httpx.Response(500, text="model crashed")
    return httpx.Response(200, json=NER_RESPONSES[text])


class RecordingSink:
    """In-memory sink that remembers every call."""

    def __init__(self):
        self.analyses = []
        self.batch_statuses = []
        self.stats_updates = []

    def record_analysis(self, filename, text, model, result):
        self.analyses.append((filename, model, result.entity_count))

    def record_batch(self, job):
        self.batch_statuses.append(job.status)

    def update_model_stats(self, model, avg_confidence, entity_count):
        self.stats_updates.append((model, avg_confidence, entity_count))


class BrokenSink:
    def record_analysis(self, filename, text, model, result):
        raise RuntimeError("disk full")

    def record_batch(self, job):
        raise RuntimeError("disk full")

    def update_model_stats(self, model, avg_confidence, entity_count):
        raise RuntimeError("disk full")


@pytest.fixture
def documents(docx_bytes):
    """Three uploads; the second is a plain-text file and cannot be extracted."""
    return [
        UploadedDocument(filename="first.docx", content=docx_bytes(FIRST_NOTE)),
        UploadedDocument(filename="second.txt", content=b"Plain text is not accepted."),
        UploadedDocument(filename="third.docx", content=docx_bytes(THIRD_NOTE)),
    ]


def _item(status: ItemStatus, confidences=()) -> BatchItem:
    result = None
    if status is ItemStatus.SUCCEEDED:
        result = AnalysisResult(entities=[
            Entity(text="x", type="Sign_symptom", confidence=c, start=i, end=i + 1)
            for i, c in enumerate(confidences)
        ])
    return BatchItem(filename="doc.pdf", status=status, result=result)


class TestFold:
    """The running confidence mean is weighted by item position."""

    def test_failed_item_advances_index(self):
        items = [
            _item(ItemStatus.SUCCEEDED, [0.9, 0.8]),
            _item(ItemStatus.FAILED),
            _item(ItemStatus.SUCCEEDED, [0.6]),
        ]
        acc = fold_items(items)
        assert acc.completed == 3
        assert acc.success_count == 2
        assert acc.aggregate_entity_count == 3
        assert acc.aggregate_avg_confidence == pytest.approx((0.85 * 2 + 0.6) / 3)
        # not the plain mean over successes
        assert acc.aggregate_avg_confidence != pytest.approx((0.85 + 0.6) / 2)

    def test_failure_leaves_aggregates(self):
        acc = fold_item(BatchAccumulator(), 0, _item(ItemStatus.FAILED))
        assert acc == BatchAccumulator(completed=1)

    def test_non_terminal_item_rejected(self):
        with pytest.raises(ValueError, match="analyzing"):
            fold_item(BatchAccumulator(), 0, _item(ItemStatus.ANALYZING))

    def test_summary_without_successes_is_nan(self):
        summary = summarize_batch([_item(ItemStatus.FAILED), _item(ItemStatus.FAILED)])
        assert summary.total_files == 2
        assert summary.success_count == 0
        assert math.isnan(summary.avg_entities_per_success)

    def test_summary_average(self):
        summary = summarize_batch([
            _item(ItemStatus.SUCCEEDED, [0.9, 0.8, 0.7]),
            _item(ItemStatus.FAILED),
            _item(ItemStatus.SUCCEEDED, [0.6]),
        ])
        assert summary.avg_entities_per_success == 2.0


class TestOrchestrator:
    """End-to-end batch runs against a mocked inference service."""

    def test_mixed_batch(self, client_factory, documents):
        client = client_factory(_ner_handler)
        sink = RecordingSink()
        job = asyncio.run(BatchOrchestrator(client, sink=sink).arun(documents, name="Ward 3"))

        assert job.status is JobStatus.COMPLETED
        assert job.name == "Ward 3"
        assert job.completed_documents == 3
        assert job.progress == 100
        assert [i.status for i in job.items] == [ItemStatus.SUCCEEDED, ItemStatus.FAILED, ItemStatus.SUCCEEDED]
        assert "Unsupported file format" in job.items[1].error
        assert job.items[1].result is None
        assert job.aggregate_entity_count == 3
        assert job.aggregate_avg_confidence == pytest.approx((0.85 * 2 + 0.6) / 3)
        assert job.summary.success_count == 2
        assert job.summary.avg_entities_per_success == 1.5
        assert job.completed_at is not None
        # the unsupported file never reaches the service
        assert len(client.requests) == 2

    def test_sink_calls(self, client_factory, documents):
        sink = RecordingSink()
        asyncio.run(BatchOrchestrator(client_factory(_ner_handler), model="BioBERT", sink=sink).arun(documents))

        assert sink.batch_statuses == [JobStatus.PROCESSING, JobStatus.COMPLETED]
        assert sink.analyses == [("first.docx", "BioBERT", 2), ("third.docx", "BioBERT", 1)]
        assert [u[0] for u in sink.stats_updates] == ["BioBERT", "BioBERT"]
        assert sink.stats_updates[0][1] == pytest.approx(0.85)

    def test_inference_failure_isolated(self, client_factory, docx_bytes):
        documents = [
            UploadedDocument(filename="first.docx", content=docx_bytes(FIRST_NOTE)),
            UploadedDocument(filename="unknown.docx", content=docx_bytes("This note crashes the model.")),
            UploadedDocument(filename="third.docx", content=docx_bytes(THIRD_NOTE)),
        ]
        job = asyncio.run(BatchOrchestrator(client_factory(_ner_handler)).arun(documents))
        assert [i.status for i in job.items] == [ItemStatus.SUCCEEDED, ItemStatus.FAILED, ItemStatus.SUCCEEDED]
        assert "model crashed" in job.items[1].error

    def test_all_failed(self, client_factory):
        documents = [UploadedDocument(filename=f"{n}.txt", content=b"nope") for n in range(3)]
        job = asyncio.run(BatchOrchestrator(client_factory(_ner_handler)).arun(documents))
        assert job.status is JobStatus.COMPLETED
        assert job.aggregate_entity_count == 0
        assert job.aggregate_avg_confidence == 0.0
        assert math.isnan(job.summary.avg_entities_per_success)

    def test_empty_batch(self, client_factory):
        job = asyncio.run(BatchOrchestrator(client_factory(_ner_handler)).arun([]))
        assert job.status is JobStatus.COMPLETED
        assert job.progress == 100
        assert job.summary.total_files == 0

    def test_progress_callback_order(self, client_factory, documents):
        seen = []

        def on_progress(job, item):
            seen.append((item.filename, item.status, job.completed_documents, job.progress))

        asyncio.run(BatchOrchestrator(client_factory(_ner_handler), on_progress=on_progress).arun(documents))
        assert seen == [
            ("first.docx", ItemStatus.SUCCEEDED, 1, 33),
            ("second.txt", ItemStatus.FAILED, 2, 67),
            ("third.docx", ItemStatus.SUCCEEDED, 3, 100),
        ]

    def test_sink_failure_does_not_fail_items(self, client_factory, documents):
        job = asyncio.run(BatchOrchestrator(client_factory(_ner_handler), sink=BrokenSink()).arun(documents))
        assert job.items[0].status is ItemStatus.SUCCEEDED
        assert job.summary.success_count == 2

    def test_entity_distribution(self, client_factory, documents):
        job = asyncio.run(BatchOrchestrator(client_factory(_ner_handler)).arun(documents))
        assert aggregate_entity_summary(job) == {"Sign_symptom": 2, "Medication": 1}


class TestJsonDirectorySink:

    def test_writes_records(self, client_factory, documents, tmp_dir):
        sink = JsonDirectorySink(tmp_dir)
        job = asyncio.run(BatchOrchestrator(client_factory(_ner_handler), sink=sink).arun(documents))

        batch = json.loads((tmp_dir / "batches" / f"{job.id}.json").read_text())
        assert batch["status"] == "completed"
        assert len(batch["items"]) == 3

        analyses = [json.loads(p.read_text()) for p in (tmp_dir / "analyses").glob("*.json")]
        assert sorted(a["filename"] for a in analyses) == ["first.docx", "third.docx"]
        assert all(a["analysis_type"] == "Batch NER" for a in analyses)

        stats = sink.load_model_stats()
        assert stats["ClinicalBERT"].analysis_count == 2
        assert stats["ClinicalBERT"].avg_confidence == pytest.approx((0.85 + 0.6) / 2)
        assert stats["ClinicalBERT"].total_entities_extracted == 3

    def test_no_stats_yet(self, tmp_dir):
        assert JsonDirectorySink(tmp_dir).load_model_stats() == {}


class TestPipelineBatch:
    """Synchronous wrappers used by the CLI."""

    def test_run_batch_persists_by_default(self, client_factory, documents, tmp_dir):
        config = ClinicalNLPConfig(hf_api_key="hf_test", output_dir=tmp_dir, _env_file=None)
        job = run_batch(documents, config, client=client_factory(_ner_handler))
        assert job.summary.success_count == 2
        assert (tmp_dir / "batches" / f"{job.id}.json").exists()

    def test_run_batch_without_persistence(self, client_factory, documents, tmp_dir):
        config = ClinicalNLPConfig(hf_api_key="hf_test", output_dir=tmp_dir, _env_file=None)
        run_batch(documents, config, persist=False, client=client_factory(_ner_handler))
        assert not (tmp_dir / "batches").exists()

    def test_run_batch_directory(self, client_factory, docx_bytes, tmp_dir):
        docs = tmp_dir / "docs"
        docs.mkdir()
        (docs / "a.docx").write_bytes(docx_bytes(FIRST_NOTE))
        (docs / "b.docx").write_bytes(docx_bytes(THIRD_NOTE))
        config = ClinicalNLPConfig(hf_api_key="hf_test", output_dir=tmp_dir / "out", _env_file=None)
        job = run_batch_directory(docs, config, persist=False, client=client_factory(_ner_handler))
        assert [i.filename for i in job.items] == ["a.docx", "b.docx"]
        assert job.aggregate_entity_count == 3

    def test_run_batch_directory_skips_folder_named_like_pdf(self, client_factory, docx_bytes, tmp_dir):
        docs = tmp_dir / "docs"
        (docs / "scans.pdf").mkdir(parents=True)
        (docs / "a.docx").write_bytes(docx_bytes(FIRST_NOTE))
        config = ClinicalNLPConfig(hf_api_key="hf_test", output_dir=tmp_dir / "out", _env_file=None)
        job = run_batch_directory(docs, config, persist=False, client=client_factory(_ner_handler))
        assert [i.filename for i in job.items] == ["a.docx"]
        assert job.items[0].status is ItemStatus.SUCCEEDED

    def test_unreadable_paths_fail_their_own_items(self, client_factory, docx_bytes, tmp_dir):
        """A missing file or a directory fails its item; the rest of the batch runs."""
        (tmp_dir / "first.docx").write_bytes(docx_bytes(FIRST_NOTE))
        (tmp_dir / "folder.pdf").mkdir()
        (tmp_dir / "third.docx").write_bytes(docx_bytes(THIRD_NOTE))
        documents = [
            UploadedDocument.from_path(tmp_dir / "first.docx"),
            UploadedDocument.from_path(tmp_dir / "missing.docx"),
            UploadedDocument.from_path(tmp_dir / "folder.pdf"),
            UploadedDocument.from_path(tmp_dir / "third.docx"),
        ]
        config = ClinicalNLPConfig(hf_api_key="hf_test", output_dir=tmp_dir / "out", _env_file=None)
        job = run_batch(documents, config, persist=False, client=client_factory(_ner_handler))

        assert job.status is JobStatus.COMPLETED
        assert [i.status for i in job.items] == [
            ItemStatus.SUCCEEDED, ItemStatus.FAILED, ItemStatus.FAILED, ItemStatus.SUCCEEDED,
        ]
        assert job.items[1].error.startswith("File reading failed")
        assert job.items[2].error.startswith("File reading failed")
        assert job.summary.success_count == 2
