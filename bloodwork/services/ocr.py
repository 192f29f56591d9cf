"""File-to-text helpers (PDF/image/text)."""
from __future__ import annotations

import io
from typing import Tuple

import pytesseract
from PIL import Image
from pypdf import PdfReader

SUPPORTED_IMAGE_EXT = {".png", ".jpg", ".jpeg", ".tiff", ".bmp", ".webp"}
SUPPORTED_TEXT_EXT = {".txt", ".csv", ".tsv", ".json", ".xml"}


class UnsupportedFileType(ValueError):
    """The upload is neither a PDF, an image nor a text file."""


def detect_file_type(filename: str, content_type: str) -> str:
    lowered = (filename or "").lower()
    mt = (content_type or "").lower()
    if mt == "application/pdf" or lowered.endswith(".pdf"):
        return "pdf"
    if mt.startswith("image/") or any(lowered.endswith(ext) for ext in SUPPORTED_IMAGE_EXT):
        return "image"
    if mt.startswith("text/") or any(lowered.endswith(ext) for ext in SUPPORTED_TEXT_EXT):
        return "text"
    return "other"


def extract_text_from_bytes(data: bytes, filename: str, content_type: str) -> Tuple[str, str]:
    """Return ``(text, file_type)``. Empty text is returned as-is, not raised."""
    file_type = detect_file_type(filename, content_type)

    if file_type == "pdf":
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n".join(pages).strip(), file_type

    if file_type == "image":
        img = Image.open(io.BytesIO(data))
        return pytesseract.image_to_string(img, lang="eng"), file_type

    if file_type == "text":
        return data.decode("utf-8", errors="replace"), file_type

    raise UnsupportedFileType(f"Unsupported file type: {content_type or filename or 'unknown'}")


__all__ = ["SUPPORTED_TEXT_EXT", "UnsupportedFileType", "detect_file_type", "extract_text_from_bytes"]
