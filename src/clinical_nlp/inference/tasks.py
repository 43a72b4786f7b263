"""Task adapters on top of InferenceClient: NER, summarization and QA.

Each adapter validates its input before any network call, submits one
request, and turns the raw model output into a result model.
"""

import logging
from collections.abc import Mapping
from typing import Any

from clinical_nlp.errors import ClinicalNLPError, InferenceError, InvalidResponseError, TextValidationError
from clinical_nlp.inference.client import InferenceClient
from clinical_nlp.models import AnalysisResult, Entity, QAResult, SummarizationResult, TaskType

logger = logging.getLogger(__name__)

DEFAULT_NER_MODEL = "d4data/biomedical-ner-all"
DEFAULT_SUMMARIZATION_MODEL = "sshleifer/distilbart-cnn-12-6"
DEFAULT_QA_MODEL = "deepset/roberta-base-squad2"

DEFAULT_THRESHOLD = 0.5
MIN_TEXT_LENGTH = 10
SUMMARY_INPUT_LIMIT = 2000
QA_CONTEXT_PADDING = 50


def validate_text(text: str | None, min_length: int = MIN_TEXT_LENGTH) -> str:
    """Reject empty, non-string or too-short input before it reaches the service."""
    if text is not None and not isinstance(text, str):
        raise TextValidationError(f"Text must be a string, got {type(text).__name__}")
    if not text or not text.strip():
        raise TextValidationError("Please enter text to analyze")
    if len(text.strip()) < min_length:
        raise TextValidationError(
            f"Text is too short for analysis. Please enter at least {min_length} characters."
        )
    return text


def parse_entities(raw: list, text: str, threshold: float = DEFAULT_THRESHOLD) -> list[Entity]:
    """Convert token-classification output into entities at or above ``threshold``.

    Items that are malformed, or whose span falls outside ``text``, are skipped.
    """
    entities = []
    for item in raw:
        try:
            entity = Entity(
                text=item.get("word", ""),
                type=item.get("entity_group") or item.get("entity") or "UNKNOWN",
                confidence=float(item["score"]),
                start=int(item["start"]),
                end=int(item["end"]),
            )
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.debug(f"Skipping malformed entity: {e}")
            continue

        if entity.end > len(text):
            logger.debug(f"Skipping entity outside text bounds: {entity.text!r} [{entity.start}, {entity.end})")
            continue
        if entity.confidence >= threshold:
            entities.append(entity)
    return entities


async def aperform_ner(
    client: InferenceClient,
    text: str,
    model_id: str = DEFAULT_NER_MODEL,
    threshold: float = DEFAULT_THRESHOLD,
) -> AnalysisResult:
    """Run NER over ``text`` and keep entities with ``confidence >= threshold``."""
    validate_text(text)
    data = await client.aquery(model_id, {"inputs": text})
    if not isinstance(data, list):
        raise InvalidResponseError(f"Expected a list of entities from {model_id}, got {type(data).__name__}")

    entities = parse_entities(data, text, threshold)
    logger.debug(f"NER kept {len(entities)}/{len(data)} entities at threshold {threshold}")
    return AnalysisResult(entities=entities)


async def aperform_summarization(
    client: InferenceClient,
    text: str,
    model_id: str = DEFAULT_SUMMARIZATION_MODEL,
) -> SummarizationResult:
    """Summarize the first 2000 characters; word metrics use the full text."""
    validate_text(text)
    truncated = text[:SUMMARY_INPUT_LIMIT]
    data = await client.aquery(
        model_id,
        {
            "inputs": truncated,
            "parameters": {"min_length": min(30, len(truncated) // 2), "max_length": 150},
        },
    )

    summary = ""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        summary = data[0].get("summary_text") or ""
    summary = summary or "Summarization failed."

    original_words = len(text.split())
    summary_words = len(summary.split())
    compression = (1 - summary_words / original_words) * 100

    return SummarizationResult(
        summary=summary,
        original_length=len(text),
        summary_length=len(summary),
        original_words=original_words,
        summary_words=summary_words,
        compression_ratio=f"{compression:.1f}%",
    )


async def aperform_qa(
    client: InferenceClient,
    text: str,
    question: str,
    model_id: str = DEFAULT_QA_MODEL,
    model_label: str = "",
) -> QAResult:
    """Answer ``question`` from ``text``; context is the answer span widened by 50 chars."""
    validate_text(text)
    if not isinstance(question, str) or not question.strip():
        raise TextValidationError("Please enter a question")

    data = await client.aquery(model_id, {"inputs": {"question": question, "context": text}})
    if not isinstance(data, dict):
        raise InvalidResponseError(f"Expected an answer object from {model_id}, got {type(data).__name__}")

    try:
        start = int(data.get("start") or 0)
        end = int(data.get("end") or 0)
        confidence = float(data.get("score") or 0.0)
    except (TypeError, ValueError) as e:
        raise InvalidResponseError(f"Malformed answer from {model_id}: {e}") from e

    context = text[max(0, start - QA_CONTEXT_PADDING):min(len(text), end + QA_CONTEXT_PADDING)]

    return QAResult(
        question=question,
        answer=data.get("answer") or "No answer found",
        confidence=confidence,
        answer_start=start,
        answer_end=end,
        context=context,
        model=model_label or model_id,
    )


async def ahandle_request(client: InferenceClient, request: dict, config=None) -> dict:
    """Serve one request envelope: ``{task, text, model, ...}`` -> ``{success, data | error}``.

    ``type`` is accepted as an alias of ``task``. Errors are reported in the
    envelope, never raised.
    """
    ner_model = config.ner_model if config else DEFAULT_NER_MODEL
    threshold = config.confidence_threshold if config else DEFAULT_THRESHOLD
    task = None

    try:
        if not isinstance(request, Mapping):
            raise ClinicalNLPError(f"Invalid request: expected an object, got {type(request).__name__}")
        params = dict(request)
        task = params.pop("task", None) or params.pop("type", None)
        text = params.get("text", "")
        model_label = params.get("model") or ""
        if not isinstance(model_label, str):
            raise TextValidationError(f"Model must be a string, got {type(model_label).__name__}")

        try:
            task_type = TaskType(task)
        except ValueError:
            raise ClinicalNLPError("Invalid analysis type") from None

        result: Any
        if task_type is TaskType.NER:
            raw_threshold = params.get("confidence_threshold", params.get("confidenceThreshold", threshold))
            try:
                ner_threshold = float(raw_threshold)
            except (TypeError, ValueError):
                raise TextValidationError(f"Invalid confidence threshold: {raw_threshold!r}") from None
            result = await aperform_ner(client, text, ner_model, ner_threshold)
        elif task_type is TaskType.SUMMARIZATION:
            model_id = config.summarization_model if config else DEFAULT_SUMMARIZATION_MODEL
            result = await aperform_summarization(client, text, model_id)
        elif task_type is TaskType.QA:
            model_id = config.qa_model if config else DEFAULT_QA_MODEL
            result = await aperform_qa(client, text, params.get("question", ""), model_id, model_label)
        else:
            from clinical_nlp.analysis.comparison import ComparisonSimulator, acompare

            simulator = ComparisonSimulator(seed=config.seed if config else None)
            result = await acompare(client, text, simulator, ner_model, threshold)
    except ClinicalNLPError as e:
        logger.warning(f"{task} request failed: {e}")
        return {"success": False, "error": str(e)}

    return {"success": True, "data": result.model_dump(mode="json")}


def unwrap_envelope(envelope: dict) -> Any:
    """Return the envelope's ``data``, raising InferenceError when ``success`` is false."""
    if not envelope.get("success"):
        raise InferenceError(envelope.get("error") or "Unknown error")
    return envelope.get("data")
