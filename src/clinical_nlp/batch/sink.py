"""Persistence collaborator for batch results.

The orchestrator only writes: one analysis record per successful document,
a batch record at start and completion, and a running-statistics update per
model. ``JsonDirectorySink`` stores these as JSON files under an output
directory; any other store can implement ``ResultSink``.
"""

import json
import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from clinical_nlp.models import AnalysisResult, BatchJob, ModelStats

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    """Write-only store for analysis, batch and model-statistics records."""

    def record_analysis(self, filename: str, text: str, model: str, result: AnalysisResult) -> None: ...

    def record_batch(self, job: BatchJob) -> None: ...

    def update_model_stats(self, model: str, avg_confidence: float, entity_count: int) -> None: ...


class JsonDirectorySink:
    """Persist records as JSON files.

    Layout::

        output_dir/
            analyses/<id>.json
            batches/<job id>.json
            model_stats.json
    """

    def __init__(self, output_dir: Path, analysis_type: str = "Batch NER"):
        self.output_dir = Path(output_dir)
        self.analysis_type = analysis_type

    def record_analysis(self, filename: str, text: str, model: str, result: AnalysisResult) -> None:
        analysis_id = uuid.uuid4().hex
        record = {
            "id": analysis_id,
            "created_at": datetime.now(UTC).isoformat(),
            "filename": filename,
            "input_text": text,
            "model_used": model,
            "analysis_type": self.analysis_type,
            "results": result.model_dump(mode="json"),
            "confidence_score": result.avg_confidence,
        }
        path = self.output_dir / "analyses" / f"{analysis_id}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record, indent=2))

    def record_batch(self, job: BatchJob) -> None:
        path = self.output_dir / "batches" / f"{job.id}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(job.model_dump_json(indent=2))

    def load_model_stats(self) -> dict[str, ModelStats]:
        path = self.output_dir / "model_stats.json"
        if not path.exists():
            return {}
        raw = json.loads(path.read_text())
        return {name: ModelStats(**data) for name, data in raw.items()}

    def update_model_stats(self, model: str, avg_confidence: float, entity_count: int) -> None:
        stats = self.load_model_stats()
        entry = stats.setdefault(model, ModelStats(model_name=model))
        entry.record(avg_confidence, entity_count)

        path = self.output_dir / "model_stats.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(
            {name: s.model_dump(mode="json") for name, s in stats.items()}, indent=2,
        ))
        logger.debug(f"Model stats for {model}: {entry.analysis_count} analyses")
