"""Error taxonomy for clinical-nlp.

Ingestion and validation errors subclass ValueError, inference errors subclass
RuntimeError, so callers that only know the builtin types still catch them.
Everything raised on purpose by this package derives from ClinicalNLPError,
which is what the batch orchestrator captures per document.
"""


class ClinicalNLPError(Exception):
    """Base class for all errors raised by clinical-nlp."""


class UnsupportedFormatError(ClinicalNLPError, ValueError):
    """The uploaded file is neither a PDF nor a Word document."""


class ExtractionError(ClinicalNLPError):
    """A supported file could not be read or parsed."""


class TextValidationError(ClinicalNLPError, ValueError):
    """Input text (or question) is empty or too short to analyze."""


class InferenceError(ClinicalNLPError, RuntimeError):
    """The inference service call failed."""


class ModelLoadingError(InferenceError):
    """The hosted model is still loading. Retry after ``retry_after`` seconds."""

    def __init__(self, model_id: str, retry_after: float = 30.0):
        self.model_id = model_id
        self.retry_after = retry_after
        super().__init__(
            f"Model {model_id} is currently loading. "
            f"Please try again in {retry_after:.0f} seconds."
        )


class ServiceUnavailableError(InferenceError):
    """Non-2xx response, transport failure, or missing credentials."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidResponseError(InferenceError):
    """The service answered, but the body is not what the task expects."""
