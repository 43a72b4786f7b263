"""Shared test fixtures for clinical-nlp."""

import io
import json
import tempfile
from pathlib import Path

import httpx
import pytest

from clinical_nlp.inference.client import InferenceClient
from clinical_nlp.models import AnalysisResult, Entity

CLINICAL_TEXT = "Patient reports severe chest pain. ECG performed. Aspirin given."


def _make_docx(*paragraphs: str) -> bytes:
    from docx import Document

    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def _hf_entity(text: str, word: str, group: str, score: float) -> dict:
    """A token-classification item as the inference service returns it."""
    start = text.index(word)
    return {"entity_group": group, "score": score, "word": word, "start": start, "end": start + len(word)}


@pytest.fixture
def tmp_dir():
    """Temporary directory that cleans up after test."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def clinical_text() -> str:
    return CLINICAL_TEXT


@pytest.fixture
def sample_entities() -> list[Entity]:
    """Entities tagged in CLINICAL_TEXT (biomedical vocabulary)."""
    return [
        Entity(text="chest pain", type="Sign_symptom", confidence=0.95, start=23, end=33),
        Entity(text="ECG", type="Diagnostic_procedure", confidence=0.88, start=35, end=38),
        Entity(text="Aspirin", type="Medication", confidence=0.79, start=50, end=57),
    ]


@pytest.fixture
def sample_result(sample_entities) -> AnalysisResult:
    return AnalysisResult(entities=sample_entities)


@pytest.fixture
def hf_ner_response() -> list[dict]:
    """Raw NER output for CLINICAL_TEXT, including one low-confidence item."""
    return [
        _hf_entity(CLINICAL_TEXT, "chest pain", "Sign_symptom", 0.9),
        _hf_entity(CLINICAL_TEXT, "Aspirin", "Medication", 0.4),
    ]


@pytest.fixture
def docx_bytes():
    """Factory building a real .docx file in memory, one paragraph per argument."""
    return _make_docx


@pytest.fixture
def client_factory():
    """Build an InferenceClient whose HTTP traffic goes to ``handler``.

    Every request is appended to ``client.requests`` with its decoded JSON body.
    """

    def _make(handler, api_key: str | None = "hf_test") -> InferenceClient:
        requests: list[dict] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append({
                "url": str(request.url),
                "headers": dict(request.headers),
                "body": json.loads(request.content),
            })
            return handler(request)

        client = InferenceClient(
            api_key=api_key,
            base_url="https://hf.test/models",
            rpm=0,
            transport=httpx.MockTransport(_record),
        )
        client.requests = requests
        return client

    return _make
