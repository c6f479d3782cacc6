"""
Unit tests for uploaded document text extraction
"""
import io

import pytest
from docx import Document

from prepadi.services.documents import UnsupportedDocumentError, extract_document_text
from prepadi.services.parser import segment


def _docx_bytes(*paragraphs):
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


class TestExtractDocumentText:
    def test_docx_paragraphs(self):
        """Test each docx paragraph becomes a line the segmenter understands"""
        content = _docx_bytes("1. Which gas do plants absorb?", "A. Oxygen", "B. Carbon dioxide", "Answer: B")

        text = extract_document_text("paper.DOCX", content)

        records = segment(text)
        assert len(records) == 1
        assert records[0].options[1].is_correct

    def test_plain_text(self):
        """Test text files are decoded as UTF-8"""
        assert extract_document_text("paper.txt", "1. Naïve?".encode("utf-8")) == "1. Naïve?"

    def test_unsupported(self):
        """Test other extensions are rejected"""
        with pytest.raises(UnsupportedDocumentError):
            extract_document_text("paper.odt", b"data")
