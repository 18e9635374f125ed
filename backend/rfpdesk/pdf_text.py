# pdf_text.py
# Best-effort text from vendor PDF attachments.

import io
import logging
from typing import Iterable

from pypdf import PdfReader

log = logging.getLogger(__name__)

PDF_MIME_TYPES = ("application/pdf", "application/x-pdf")


def is_pdf(filename: str, mime_type: str) -> bool:
    return (mime_type or "").lower() in PDF_MIME_TYPES or (filename or "").lower().endswith(".pdf")


def extract_text(data: bytes) -> str:
    """Plain text of every page joined by newlines. Never raises; bad input gives ""."""
    if not data:
        return ""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = []
        for page in reader.pages:
            text = page.extract_text() or ""
            if text.strip():
                pages.append(text)
        return "\n".join(pages).strip()
    except Exception as e:
        log.warning("PDF extraction failed: %s: %s", type(e).__name__, e)
        return ""


def combine_attachment_text(attachments: Iterable) -> str:
    """Concatenate the text of every PDF attachment, each under a header naming the file."""
    parts = []
    for att in attachments:
        if not is_pdf(att.filename, att.mime_type):
            continue
        text = extract_text(att.payload)
        if not text:
            continue
        parts.append(f"--- Attachment: {att.filename} ---\n{text}")
    return "\n\n".join(parts)
