"""Pull plain study text out of uploaded documents and images."""
from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

from studyquiz.prompts import IMAGE_EXTRACTION_PROMPT

if TYPE_CHECKING:
    from studyquiz.providers.base import LLMProvider

log = logging.getLogger("studyquiz.extract")

PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_TYPE = "text/plain"
IMAGE_TYPES = ("image/jpeg", "image/png")
DOCUMENT_TYPES = (PDF_TYPE, DOCX_TYPE, TEXT_TYPE)

_SUFFIX_TYPES = {
    ".pdf": PDF_TYPE,
    ".docx": DOCX_TYPE,
    ".txt": TEXT_TYPE,
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


class ExtractionError(Exception):
    pass


class UnsupportedFileType(ExtractionError):
    pass


def resolve_content_type(content_type: str | None, filename: str | None) -> str:
    """Trust the declared MIME type when we know it, else go by file suffix."""
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype in DOCUMENT_TYPES or ctype in IMAGE_TYPES:
        return ctype
    if filename:
        for suffix, mapped in _SUFFIX_TYPES.items():
            if filename.lower().endswith(suffix):
                return mapped
    raise UnsupportedFileType(f"Unsupported file type: {content_type or filename or 'unknown'}")


def extract_pdf_text(data: bytes) -> str:
    import fitz  # PyMuPDF

    pages = []
    with fitz.open(stream=data, filetype="pdf") as doc:
        for page in doc:
            pages.append(page.get_text())
    return "\n".join(pages)


def extract_docx_text(data: bytes) -> str:
    from docx import Document

    doc = Document(io.BytesIO(data))
    return "\n".join(p.text for p in doc.paragraphs if p.text.strip())


def extract_plain_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


async def extract_text(
    data: bytes,
    content_type: str | None,
    filename: str | None = None,
    llm: LLMProvider | None = None,
) -> str:
    """Return the text content of an upload.

    Images are read by the LLM provider; everything else is parsed locally.
    Raises UnsupportedFileType for unknown types and ExtractionError when
    nothing readable comes out.
    """
    ctype = resolve_content_type(content_type, filename)
    log.info("Extract %s (%s, %d bytes)", filename or "upload", ctype, len(data))

    if ctype in IMAGE_TYPES:
        if llm is None:
            raise UnsupportedFileType("Image upload needs a vision-capable LLM provider")
        try:
            text = await llm.extract_image_text(data, ctype, IMAGE_EXTRACTION_PROMPT)
        except NotImplementedError as e:
            raise UnsupportedFileType(str(e)) from e
    else:
        try:
            if ctype == PDF_TYPE:
                text = extract_pdf_text(data)
            elif ctype == DOCX_TYPE:
                text = extract_docx_text(data)
            else:
                text = extract_plain_text(data)
        except Exception as e:
            raise ExtractionError(f"Could not read {ctype} file: {e}") from e

    text = text.strip()
    if not text:
        raise ExtractionError("No readable text found in the uploaded file")
    return text
