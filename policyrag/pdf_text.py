"""
PDF text extraction for uploaded policy documents.
"""

from __future__ import annotations

import fitz  # PyMuPDF

from policyrag.errors import PdfExtractionError


def extract_pdf_text(data: bytes) -> str:
    """
    Extract the text of every page, pages joined by newlines.

    Raises:
        PdfExtractionError: If the bytes are not a readable PDF
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise PdfExtractionError(f"Cannot open PDF: {e}") from e

    try:
        return "\n".join(page.get_text() for page in doc)
    finally:
        doc.close()
