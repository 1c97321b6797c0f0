"""
DocVoice - Document ingestion

Turns an uploaded file into the plain-text context the reply generator
reads. PDF pages are merged through pypdf; text-like formats are decoded
as UTF-8. The result is whitespace-collapsed and capped.
"""

import io
import logging
import re
from dataclasses import dataclass

from pypdf import PdfReader
from pypdf.errors import PyPdfError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 50000

PDF_EXTENSIONS = (".pdf",)
TEXT_EXTENSIONS = (".txt", ".md", ".markdown")
# Word files are read as text, matching the upload form's accept list.
WORD_EXTENSIONS = (".doc", ".docx")

SUPPORTED_EXTENSIONS = PDF_EXTENSIONS + TEXT_EXTENSIONS + WORD_EXTENSIONS

_WHITESPACE = re.compile(r"\s+")


class DocumentError(Exception):
    """Raised when a document cannot be turned into text."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class ExtractedDocument:
    file_name: str
    content: str
    truncated: bool = False

    @property
    def char_count(self) -> int:
        return len(self.content)


def normalize_text(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Collapse whitespace runs to single spaces, trim, and cap the length."""
    return _WHITESPACE.sub(" ", text).strip()[:max_chars]


def _extract_pdf(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    except (PyPdfError, ValueError, KeyError) as e:
        raise DocumentError(f"Failed to process document: {e}", status_code=500) from e


def extract_text(file_name: str, data: bytes, max_chars: int = DEFAULT_MAX_CHARS) -> ExtractedDocument:
    """
    Extract plain text from an uploaded file.

    Args:
        file_name: Original file name; the extension selects the parser.
        data:      Raw file bytes.
        max_chars: Cap on the returned text length.

    Raises:
        DocumentError (400) for unsupported formats, (500) for parse failures.
    """
    if not file_name:
        raise DocumentError("No file provided")

    lowered = file_name.lower()
    if lowered.endswith(PDF_EXTENSIONS):
        raw = _extract_pdf(data)
    elif lowered.endswith(TEXT_EXTENSIONS + WORD_EXTENSIONS):
        raw = data.decode("utf-8", errors="replace")
    else:
        raise DocumentError("Unsupported file format")

    collapsed = _WHITESPACE.sub(" ", raw).strip()
    content = collapsed[:max_chars]
    truncated = len(collapsed) > max_chars

    logger.info(
        "document extracted  file=%s  bytes=%d  chars=%d  truncated=%s",
        file_name, len(data), len(content), truncated,
    )
    return ExtractedDocument(file_name=file_name, content=content, truncated=truncated)
