"""Document reader: extracts plain text from uploaded PDF and Word files."""

import io
import logging
from pathlib import Path

from clinical_nlp.errors import ExtractionError, UnsupportedFormatError
from clinical_nlp.models import UploadedDocument

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"

_PDF_EXTENSIONS = {".pdf"}
_WORD_EXTENSIONS = {".docx", ".doc"}
SUPPORTED_EXTENSIONS = _PDF_EXTENSIONS | _WORD_EXTENSIONS

# Average chars per page below which a PDF is probably a scan.
_NEAR_EMPTY_THRESHOLD = 15


def _detect_kind(document: UploadedDocument) -> str:
    suffix = Path(document.filename).suffix.lower()
    if suffix in _PDF_EXTENSIONS or document.mime_type == PDF_MIME:
        return "pdf"
    if suffix in _WORD_EXTENSIONS or document.mime_type in (DOCX_MIME, DOC_MIME):
        return "word"
    raise UnsupportedFormatError("File reading failed: Unsupported file format. Please upload PDF or DOCX.")


def extract_text(document: UploadedDocument) -> str:
    """Extract plain text from an uploaded document.

    Args:
        document: Filename, raw bytes and optional MIME type

    Returns:
        Extracted text. PDF pages are joined with a blank line.

    Raises:
        UnsupportedFormatError: Neither a PDF nor a Word document
        ExtractionError: The file is unreadable, corrupt, or the parser failed
    """
    kind = _detect_kind(document)

    try:
        data = document.read_bytes()
        if kind == "pdf":
            return _read_pdf(data, document.filename)
        return _read_word(data)
    except Exception as e:
        logger.error(f"Failed to read {document.filename}: {e}")
        raise ExtractionError(f"File reading failed: {e}") from e


def read_document(path: Path, mime_type: str | None = None) -> str:
    """Read a document from disk. Missing files raise ExtractionError."""
    return extract_text(UploadedDocument.from_path(path, mime_type=mime_type))


def _read_pdf(data: bytes, filename: str) -> str:
    """Concatenate the text of every page, in page order."""
    import pdfplumber

    pages = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")

    full_text = "\n\n".join(pages)

    avg_chars = len(full_text.strip()) / len(pages) if pages else 0
    if avg_chars < _NEAR_EMPTY_THRESHOLD:
        logger.warning(
            f"Near-empty text extracted from {filename}, this may be a scanned PDF"
        )

    return full_text


def _read_word(data: bytes) -> str:
    """Raw paragraph text; formatting is discarded."""
    from docx import Document

    doc = Document(io.BytesIO(data))
    return "\n".join(p.text for p in doc.paragraphs)


def discover_documents(directory: Path) -> list[Path]:
    """Find all supported documents in a directory (recursive).

    Args:
        directory: Root directory to search

    Returns:
        Sorted list of document paths (directories named like documents are skipped)
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ValueError(f"Not a directory: {directory}")

    docs = []
    for ext in SUPPORTED_EXTENSIONS:
        docs.extend(p for p in directory.rglob(f"*{ext}") if p.is_file())

    return sorted(docs)
