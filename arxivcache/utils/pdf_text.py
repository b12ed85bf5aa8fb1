"""PDF text extraction."""

import logging
from pathlib import Path

import pdfplumber

logger = logging.getLogger(__name__)


def extract_pdf_text(pdf_path: Path) -> str:
    """Extract the text layer of every page in *pdf_path*.

    Raises:
        FileNotFoundError: If the PDF does not exist
        Exception: Whatever pdfplumber raises for an unreadable document
    """
    pdf_path = Path(pdf_path)
    if not pdf_path.exists():
        raise FileNotFoundError(f"PDF not found: {pdf_path}")

    pages = []
    with pdfplumber.open(pdf_path) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")
    logger.debug("Extracted %d pages from %s", len(pages), pdf_path)
    return "\n".join(pages)
