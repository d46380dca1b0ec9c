"""Document text extraction."""

import tempfile
from pathlib import Path

import fitz  # PyMuPDF
from docx import Document

from sitekb.core.errors import ExtractionError
from sitekb.features.scraper.extractor import HTMLExtractor

from .models import SUPPORTED_TYPES


class DocumentProcessor:
    """Extract plain text from uploaded files."""

    def __init__(self, html_extractor: HTMLExtractor | None = None):
        self.html_extractor = html_extractor or HTMLExtractor()

    async def extract_text(self, file_content: bytes, content_type: str) -> str:
        """
        Extract text from file content.

        Args:
            file_content: Raw file bytes
            content_type: MIME type of the file

        Returns:
            Extracted text

        Raises:
            ExtractionError: Unsupported type, unreadable file or no text
        """
        file_format = SUPPORTED_TYPES.get(content_type)
        if file_format is None:
            raise ExtractionError(f"Unsupported content type: {content_type}")

        try:
            if file_format == "pdf":
                text = self._extract_pdf(file_content)
            elif file_format == "docx":
                text = self._extract_docx(file_content)
            elif file_format == "html":
                text = self.html_extractor.extract_text(self._decode(file_content))
            else:
                text = self._decode(file_content)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Could not read {file_format} file: {e}") from e

        if not text.strip():
            raise ExtractionError("No text content extracted from document")

        return text

    def _decode(self, content: bytes) -> str:
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"File is not valid UTF-8 text: {e}") from e

    def _extract_pdf(self, content: bytes) -> str:
        """Extract text from PDF."""
        text_parts = []
        with fitz.open(stream=content, filetype="pdf") as doc:
            for page_num, page in enumerate(doc):
                page_text = page.get_text()
                if page_text.strip():
                    text_parts.append(f"[Page {page_num + 1}]\n{page_text}")
        return "\n\n".join(text_parts)

    def _extract_docx(self, content: bytes) -> str:
        """Extract text from DOCX."""
        with tempfile.NamedTemporaryFile(suffix=".docx", delete=False) as tmp:
            tmp.write(content)
            tmp_path = tmp.name

        try:
            doc = Document(tmp_path)
            paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]
            return "\n\n".join(paragraphs)
        finally:
            Path(tmp_path).unlink(missing_ok=True)


def get_document_processor() -> DocumentProcessor:
    """Get document processor instance."""
    return DocumentProcessor()
