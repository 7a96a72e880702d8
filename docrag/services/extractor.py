# =============================================================================
# Text Extractor — Plain Text + Docling Document Conversion
# =============================================================================
#
# Turns stored upload bytes into plain text plus an optional page count.
#
#   text/plain, text/markdown  → decoded directly (UTF-8, BOM tolerant)
#   application/pdf, DOCX, HTML → converted with Docling, text items joined
#                                 in reading order
#
# Unsupported content types raise UnsupportedContentTypeError; bytes the
# converter cannot read raise ExtractionError. Both are captured by the
# document pipeline and recorded on the document as FAILED.
#
# DESIGN DECISION: Docling for every binary format. One converter handles
# PDF, DOCX and HTML with reading order and table structure; it is built on
# first use and reused for the life of the worker.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors & Data Structures
# ---------------------------------------------------------------------------


class ExtractionError(Exception):
    """The document bytes could not be turned into text."""


class UnsupportedContentTypeError(ExtractionError):
    """No extraction strategy exists for the declared content type."""

    def __init__(self, content_type: str) -> None:
        super().__init__(f"Unsupported content type: {content_type}")
        self.content_type = content_type


@dataclass
class ExtractionResult:
    """Plain text of a document and its page count when known."""

    text: str
    page_count: int | None = None


_PLAIN_TEXT_TYPES = {"text/plain", "text/markdown"}

# Docling input format per declared content type, plus the file suffix the
# converter uses to sniff the stream
_DOCLING_TYPES: dict[str, tuple[str, str]] = {
    "application/pdf": ("PDF", ".pdf"),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (
        "DOCX", ".docx",
    ),
    "text/html": ("HTML", ".html"),
}


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------
# Converter construction loads layout/OCR models (seconds on first use), so a
# single instance is shared by every task in the worker process.
# ---------------------------------------------------------------------------

_converter = None


def _get_converter():
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        from docling.datamodel.base_models import InputFormat
        from docling.datamodel.pipeline_options import PdfPipelineOptions
        from docling.document_converter import DocumentConverter, PdfFormatOption

        logger.info(
            "Initializing Docling DocumentConverter "
            "(first use, may take a few seconds)..."
        )

        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        pipeline_options.do_ocr = True

        _converter = DocumentConverter(
            allowed_formats=[InputFormat.PDF, InputFormat.DOCX, InputFormat.HTML],
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            },
        )
        logger.info("Docling DocumentConverter initialized")
    return _converter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract(data: bytes, content_type: str, filename: str = "document") -> ExtractionResult:
    """
    Extract plain text and page count from raw document bytes.

    Args:
        data: The stored upload bytes.
        content_type: Declared MIME type (parameters such as charset ignored).
        filename: Original name, used only for logging and format sniffing.

    Raises:
        UnsupportedContentTypeError: No strategy for content_type.
        ExtractionError: The bytes are corrupt or unreadable.
    """
    mime = content_type.split(";", 1)[0].strip().lower()

    if mime in _PLAIN_TEXT_TYPES:
        return _extract_plain_text(data, filename)

    if mime in _DOCLING_TYPES:
        return _extract_with_docling(data, mime, filename)

    raise UnsupportedContentTypeError(content_type)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _extract_plain_text(data: bytes, filename: str) -> ExtractionResult:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ExtractionError(
            f"'{filename}' is not valid UTF-8 text: {exc}"
        ) from exc

    logger.info("Extracted %d characters from '%s'", len(text), filename)
    return ExtractionResult(text=text.strip(), page_count=None)


def _extract_with_docling(data: bytes, mime: str, filename: str) -> ExtractionResult:
    from docling.datamodel.base_models import DocumentStream
    from docling_core.types.doc.labels import DocItemLabel

    _, suffix = _DOCLING_TYPES[mime]
    stream_name = filename if filename.lower().endswith(suffix) else f"{filename}{suffix}"

    try:
        result = _get_converter().convert(
            DocumentStream(name=stream_name, stream=BytesIO(data))
        )
    except Exception as exc:
        raise ExtractionError(
            f"Failed to extract text from '{filename}': {exc}"
        ) from exc

    text_labels = {
        DocItemLabel.TITLE,
        DocItemLabel.SECTION_HEADER,
        DocItemLabel.TEXT,
        DocItemLabel.PARAGRAPH,
        DocItemLabel.LIST_ITEM,
        DocItemLabel.CAPTION,
        DocItemLabel.FOOTNOTE,
    }

    parts: list[str] = []
    for item, _level in result.document.iterate_items():
        label = getattr(item, "label", None)
        if label == DocItemLabel.TABLE:
            table_text = _table_to_text(item, result.document)
            if table_text:
                parts.append(table_text)
        elif label in text_labels:
            text = getattr(item, "text", "").strip()
            if text:
                parts.append(text)

    pages = getattr(result.document, "pages", None) or {}
    page_count = len(pages) or None

    text = "\n\n".join(parts)
    logger.info(
        "Extracted %d characters from '%s' (%d items, pages=%s)",
        len(text), filename, len(parts), page_count,
    )
    return ExtractionResult(text=text, page_count=page_count)


def _table_to_text(table_item: object, document: object) -> str:
    """Render a Docling TableItem as markdown, falling back to its text."""
    try:
        if hasattr(table_item, "export_to_markdown"):
            return table_item.export_to_markdown(doc=document).strip()
    except Exception as exc:
        logger.warning("Table export to markdown failed: %s", exc)

    text = getattr(table_item, "text", "")
    return text.strip() if text else ""
