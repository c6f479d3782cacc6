from __future__ import annotations

import io

import structlog
from docx import Document
from pypdf import PdfReader

logger = structlog.get_logger()

SUPPORTED_EXTENSIONS = (".docx", ".pdf", ".txt")
MAX_PDF_PAGES = 50


class UnsupportedDocumentError(ValueError):
    pass


def _docx_text(content: bytes) -> str:
    doc = Document(io.BytesIO(content))
    return "\n".join(p.text for p in doc.paragraphs)


def _pdf_text(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content))
    return "\n".join((page.extract_text() or "") for page in reader.pages[:MAX_PDF_PAGES])


def extract_document_text(filename: str, content: bytes) -> str:
    """Raw text of an uploaded question document, one paragraph per line."""
    name = (filename or "").lower()
    if name.endswith(".docx"):
        text = _docx_text(content)
    elif name.endswith(".pdf"):
        text = _pdf_text(content)
    elif name.endswith(".txt"):
        text = content.decode("utf-8", errors="ignore")
    else:
        raise UnsupportedDocumentError(f"Unsupported file type, expected one of {', '.join(SUPPORTED_EXTENSIONS)}")

    logger.info("document_text_extracted", filename=filename, chars=len(text))
    return text
