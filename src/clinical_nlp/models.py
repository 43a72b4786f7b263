"""Pydantic models for analysis results, batch jobs and model comparison.

Aggregate fields of AnalysisResult are computed from its entity list on every
access, so they can never drift from the entities they describe.
"""

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class TaskType(str, Enum):
    NER = "ner"
    SUMMARIZATION = "summarization"
    QA = "qa"
    COMPARISON = "comparison"


class Schema(str, Enum):
    """Tag vocabulary an NER result was produced with."""

    BIOMEDICAL = "biomedical"  # d4data/biomedical-ner-all
    ONCOLOGY = "oncology"  # breast-cancer specific tags


class ItemStatus(str, Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemStatus.SUCCEEDED, ItemStatus.FAILED)


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


class Entity(BaseModel):
    """A tagged span of the analyzed text."""

    model_config = ConfigDict(frozen=True)

    text: str
    type: str
    confidence: float = Field(ge=0.0, le=1.0)
    start: int = Field(ge=0)
    end: int

    @model_validator(mode="after")
    def _check_span(self) -> "Entity":
        if self.end <= self.start:
            raise ValueError(f"Entity span must satisfy start < end, got [{self.start}, {self.end})")
        return self


class AnalysisResult(BaseModel):
    """NER output for one text. Entities are kept in discovery order."""

    entities: list[Entity] = Field(default_factory=list)

    @computed_field
    @property
    def entity_count(self) -> int:
        return len(self.entities)

    @computed_field
    @property
    def avg_confidence(self) -> float:
        if not self.entities:
            return 0.0
        return sum(e.confidence for e in self.entities) / len(self.entities)

    @computed_field
    @property
    def entity_types(self) -> list[str]:
        # dict preserves first-seen order
        return list(dict.fromkeys(e.type for e in self.entities))


class SummarizationResult(BaseModel):
    summary: str
    original_length: int
    summary_length: int
    original_words: int
    summary_words: int
    compression_ratio: str  # e.g. "62.5%"


class QAResult(BaseModel):
    question: str
    answer: str
    confidence: float = 0.0
    answer_start: int = 0
    answer_end: int = 0
    context: str = ""  # Supporting window around the answer
    model: str = ""


class CompletenessScore(BaseModel):
    score: float = Field(ge=0.0, le=100.0)
    matched: int
    total: int
    missing: list[str] = Field(default_factory=list)


class UploadedDocument(BaseModel):
    """A file handed to the batch pipeline: name, raw bytes and optional MIME type.

    Documents built with ``from_path`` carry only the path; the bytes are read
    during extraction, so an unreadable file fails its own batch item.
    """

    filename: str
    content: bytes = b""
    path: Path | None = None
    mime_type: str | None = None

    @classmethod
    def from_path(cls, path: Path, mime_type: str | None = None) -> "UploadedDocument":
        path = Path(path)
        return cls(filename=path.name, path=path, mime_type=mime_type)

    def read_bytes(self) -> bytes:
        """Raw file content. Raises OSError when the backing path can't be read."""
        if self.path is not None and not self.content:
            return self.path.read_bytes()
        return self.content


class BatchItem(BaseModel):
    """One document's progress through extract -> analyze -> record."""

    filename: str
    status: ItemStatus = ItemStatus.PENDING
    result: AnalysisResult | None = None
    error: str | None = None

    @computed_field
    @property
    def entity_summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        if self.result is not None:
            for entity in self.result.entities:
                counts[entity.type] = counts.get(entity.type, 0) + 1
        return counts


class BatchSummary(BaseModel):
    total_files: int
    success_count: int
    # NaN when nothing succeeded; callers must check with math.isnan
    avg_entities_per_success: float


class BatchJob(BaseModel):
    id: str
    name: str = ""
    model: str = ""
    total_documents: int
    completed_documents: int = 0
    status: JobStatus = JobStatus.PROCESSING
    items: list[BatchItem] = Field(default_factory=list)
    aggregate_entity_count: int = 0
    aggregate_avg_confidence: float = 0.0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    summary: BatchSummary | None = None

    @property
    def progress(self) -> int:
        """Percentage of documents that reached a terminal status."""
        if self.total_documents == 0:
            return 100
        return round(self.completed_documents / self.total_documents * 100)


class ModelVariant(BaseModel):
    model: str
    entities: list[Entity] = Field(default_factory=list)

    @computed_field
    @property
    def entity_count(self) -> int:
        return len(self.entities)

    @computed_field
    @property
    def avg_confidence(self) -> float:
        if not self.entities:
            return 0.0
        return sum(e.confidence for e in self.entities) / len(self.entities)

    @computed_field
    @property
    def entity_types(self) -> list[str]:
        return list(dict.fromkeys(e.type for e in self.entities))


class Recommendation(BaseModel):
    model: str
    reason: str


class ComparisonResult(BaseModel):
    models: list[ModelVariant] = Field(default_factory=list)
    recommendation: Recommendation


class ModelStats(BaseModel):
    """Running usage statistics for one model name."""

    model_name: str
    analysis_count: int = 0
    avg_confidence: float = 0.0
    total_entities_extracted: int = 0
    last_used: datetime | None = None

    def record(self, avg_confidence: float, entity_count: int) -> None:
        self.avg_confidence = (
            self.avg_confidence * self.analysis_count + avg_confidence
        ) / (self.analysis_count + 1)
        self.analysis_count += 1
        self.total_entities_extracted += entity_count
        self.last_used = datetime.now(UTC)
