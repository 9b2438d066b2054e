"""Upload validation, text extraction and chunking.

Turns the files of one upload into plain text and then into bounded chunks
for the extraction engine:

    validate  count, content type, size; every bad file is reported
    extract   PDF via PyMuPDF, DOCX via python-docx, text as UTF-8
    join      files joined with a visible boundary marker
    chunk     ≤ ``chunk_max_chars`` per chunk, preferring paragraph, line,
              then sentence breaks in the second half of each window

Nothing is persisted here; the ingestion service creates the job only after
this succeeds, so a rejected upload leaves no state behind.
"""

from __future__ import annotations

import asyncio
import io
from collections.abc import Sequence

import docx
import fitz  # PyMuPDF
import structlog

from trainkb.config.loader import IngestionConfig
from trainkb.models.ingestion import IncomingFile, UploadedFile
from trainkb.utils.errors import UploadValidationError

logger = structlog.get_logger(logger_name=__name__)

FILE_BOUNDARY = "\n\n--- FILE BOUNDARY ---\n\n"

PDF_CONTENT_TYPE = "application/pdf"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_CONTENT_TYPE = "text/plain"

# Used when the client sends no content type or a generic one.
_EXTENSION_TYPES = {
    ".pdf": PDF_CONTENT_TYPE,
    ".docx": DOCX_CONTENT_TYPE,
    ".txt": TEXT_CONTENT_TYPE,
    ".md": TEXT_CONTENT_TYPE,
}
_GENERIC_TYPES = frozenset({"", "application/octet-stream"})

# Break-point candidates, most preferred first.
_SEPARATORS = ("\n\n", "\n", ". ")


def chunk_text(text: str, max_chars: int = 32000) -> list[str]:
    """Split *text* into chunks of at most *max_chars* characters.

    Each chunk ends just after the last paragraph break in its window; if
    that falls in the first half of the window, the last line break, then
    the last sentence end (". ") are tried, and failing all three the
    window is cut hard.  Concatenating the chunks reproduces *text*.
    """
    if max_chars < 2:
        raise ValueError("max_chars must be at least 2")
    if not text:
        return []

    chunks: list[str] = []
    remaining = text
    half = max_chars // 2
    while len(remaining) > max_chars:
        window = remaining[:max_chars]
        cut = max_chars
        for separator in _SEPARATORS:
            position = window.rfind(separator)
            if position >= half:
                cut = position + len(separator)
                break
        chunks.append(remaining[:cut])
        remaining = remaining[cut:]
    if remaining:
        chunks.append(remaining)
    return chunks


def resolve_content_type(file: IncomingFile) -> str:
    """Return the file's content type, inferred from its extension if generic."""
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if content_type in _GENERIC_TYPES:
        suffix = "." + file.name.rsplit(".", 1)[-1].lower() if "." in file.name else ""
        return _EXTENSION_TYPES.get(suffix, content_type)
    return content_type


def _pdf_text(data: bytes) -> str:
    with fitz.open(stream=data, filetype="pdf") as document:
        pages = [page.get_text("text") for page in document]
    return "\n\n".join(page.strip() for page in pages if page.strip())


def _docx_text(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    paragraphs = [p.text for p in document.paragraphs]
    # Pricing sheets are often tables; keep their rows as tab-separated lines.
    for table in document.tables:
        for row in table.rows:
            paragraphs.append("\t".join(cell.text.strip() for cell in row.cells))
    return "\n".join(paragraphs).strip()


def _plain_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace").lstrip("\ufeff").strip()


_EXTRACTORS = {
    PDF_CONTENT_TYPE: _pdf_text,
    DOCX_CONTENT_TYPE: _docx_text,
    TEXT_CONTENT_TYPE: _plain_text,
}


class DocumentExtractor:
    """Validates uploads and converts them into text chunks."""

    def __init__(self, config: IngestionConfig | None = None) -> None:
        self._config = config or IngestionConfig()

    def validate_files(self, files: Sequence[IncomingFile]) -> None:
        """Check the upload against the configured limits.

        Raises
        ------
        UploadValidationError
            Listing every rejected file (or the request-level problem).
        """
        config = self._config
        if not files:
            raise UploadValidationError(
                "No files provided", [{"file": None, "reason": "no files provided"}]
            )
        if len(files) > config.max_files:
            raise UploadValidationError(
                f"Maximum {config.max_files} files allowed",
                [{"file": None, "reason": f"{len(files)} files sent, limit is {config.max_files}"}],
            )

        rejections: list[dict[str, str | None]] = []
        for file in files:
            reason = self._file_problem(file)
            if reason:
                rejections.append({"file": file.name or None, "reason": reason})
        if rejections:
            logger.info("upload_rejected", rejections=len(rejections), files=len(files))
            raise UploadValidationError(
                f"{len(rejections)} of {len(files)} files rejected", rejections
            )

    async def extract(self, files: Sequence[IncomingFile]) -> tuple[list[UploadedFile], list[str]]:
        """Validate, extract and chunk an upload.

        Returns
        -------
        tuple
            Per-file metadata and the ordered chunk texts.

        Raises
        ------
        UploadValidationError
            If validation fails, a file cannot be read, or no text was found.
        """
        self.validate_files(files)

        metadata: list[UploadedFile] = []
        texts: list[str] = []
        rejections: list[dict[str, str | None]] = []
        for file in files:
            content_type = resolve_content_type(file)
            try:
                # PDF and DOCX parsing is CPU-bound.
                text = await asyncio.to_thread(_EXTRACTORS[content_type], file.data)
            except Exception as exc:
                logger.warning("text_extraction_failed", file=file.name, error=str(exc))
                rejections.append({"file": file.name, "reason": f"could not read file: {exc}"})
                continue
            metadata.append(
                UploadedFile(
                    name=file.name,
                    content_type=content_type,
                    size=file.size,
                    text_length=len(text),
                )
            )
            texts.append(text)

        if rejections:
            raise UploadValidationError(
                f"{len(rejections)} of {len(files)} files could not be read", rejections
            )

        combined = FILE_BOUNDARY.join(t for t in texts if t)
        if not combined.strip():
            raise UploadValidationError(
                "No text could be extracted from the uploaded files",
                [{"file": f.name, "reason": "no extractable text"} for f in metadata],
            )

        chunks = chunk_text(combined, self._config.chunk_max_chars)
        logger.info(
            "upload_extracted",
            files=len(metadata),
            characters=len(combined),
            chunks=len(chunks),
        )
        return metadata, chunks

    def _file_problem(self, file: IncomingFile) -> str | None:
        config = self._config
        if not file.name:
            return "file has no name"
        content_type = resolve_content_type(file)
        if content_type not in config.allowed_content_types or content_type not in _EXTRACTORS:
            return f"unsupported file type: {file.content_type or 'unknown'} (allowed: PDF, DOCX, TXT)"
        if file.size == 0:
            return "file is empty"
        if file.size > config.max_file_size_bytes:
            return f"file exceeds {config.max_file_size_mb:g} MB limit"
        return None
