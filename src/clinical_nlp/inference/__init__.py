"""Inference service access: HTTP client and per-task adapters."""

from clinical_nlp.inference.client import InferenceClient
from clinical_nlp.inference.tasks import (
    aperform_ner,
    aperform_qa,
    aperform_summarization,
    validate_text,
)

__all__ = [
    "InferenceClient",
    "aperform_ner",
    "aperform_qa",
    "aperform_summarization",
    "validate_text",
]
