"""
Text extraction from uploaded study material.

Plain text is decoded directly; PDFs go through PyMuPDF. Word documents are
recognised so the caller gets a clear message instead of "unsupported type".
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200

TEXT_TYPES = {"text/plain"}
PDF_TYPES = {"application/pdf"}
WORD_TYPES = {
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
SUPPORTED_TYPES = TEXT_TYPES | PDF_TYPES | WORD_TYPES
SUPPORTED_EXTENSIONS = [".txt", ".pdf", ".doc", ".docx"]


@dataclass
class TextMetadata:
    word_count: int
    character_count: int
    estimated_reading_time: int  # minutes


@dataclass
class FileProcessingResult:
    success: bool
    extracted_text: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[TextMetadata] = None


@dataclass
class UploadedFile:
    filename: str
    data: bytes
    content_type: str = ""


@dataclass
class ProcessedFile:
    file: UploadedFile
    result: FileProcessingResult


class UnsupportedDocument(Exception):
    """The format is recognised but text cannot be extracted from it."""


def get_file_extension(filename: str) -> str:
    return PurePath(filename).suffix.lower()


def is_file_type_supported(filename: str, content_type: str = "") -> bool:
    return content_type in SUPPORTED_TYPES or get_file_extension(filename) in SUPPORTED_EXTENSIONS


def get_supported_file_types() -> list[str]:
    return list(SUPPORTED_EXTENSIONS)


def clean_extracted_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def calculate_text_metadata(text: str) -> TextMetadata:
    word_count = len(text.split())
    return TextMetadata(
        word_count=word_count,
        character_count=len(text),
        estimated_reading_time=math.ceil(word_count / WORDS_PER_MINUTE),
    )


def extract_text_from_txt(data: bytes) -> str:
    return data.decode("utf-8-sig")


def extract_text_from_pdf(data: bytes) -> str:
    """Concatenate the text layer of every page.

    Synchronous and CPU-bound; process_file runs it via asyncio.to_thread().
    """
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return "\n\n".join(page.get_text("text") for page in doc)
    finally:
        doc.close()


def _extractor_for(filename: str, content_type: str):
    ext = get_file_extension(filename)
    if content_type in TEXT_TYPES or ext == ".txt":
        return extract_text_from_txt
    if content_type in PDF_TYPES or ext == ".pdf":
        return extract_text_from_pdf
    if content_type in WORD_TYPES or ext in (".doc", ".docx"):
        raise UnsupportedDocument(
            "DOC/DOCX text extraction is not supported yet. Please upload TXT or PDF files."
        )
    return None


async def process_file(filename: str, data: bytes, content_type: str = "") -> FileProcessingResult:
    """Extract and clean the text of a single file.

    Unsupported, unreadable or empty files produce a failed result rather
    than an exception.
    """
    if not is_file_type_supported(filename, content_type):
        return FileProcessingResult(
            success=False, error=f"Unsupported file type: {content_type or 'unknown'}"
        )

    try:
        extractor = _extractor_for(filename, content_type)
        if extractor is None:
            return FileProcessingResult(
                success=False, error=f"Unable to process file type: {content_type}"
            )
        raw_text = await asyncio.to_thread(extractor, data)
    except UnsupportedDocument as e:
        return FileProcessingResult(success=False, error=str(e))
    except (UnicodeDecodeError, RuntimeError, ValueError) as e:
        # fitz raises FileDataError (a RuntimeError) for corrupt PDFs
        logger.warning("Failed to extract text from %s: %s", filename, e)
        return FileProcessingResult(success=False, error=f"Failed to process file: {e}")

    text = clean_extracted_text(raw_text)
    if not text:
        return FileProcessingResult(
            success=False, error="No readable text content found in the file"
        )

    metadata = calculate_text_metadata(text)
    logger.info("Extracted %d words from %s", metadata.word_count, filename)
    return FileProcessingResult(success=True, extracted_text=text, metadata=metadata)


async def process_files(files: list[UploadedFile]) -> list[ProcessedFile]:
    """Process several files concurrently, preserving input order."""
    results = await asyncio.gather(
        *(process_file(f.filename, f.data, f.content_type) for f in files)
    )
    return [ProcessedFile(file=f, result=r) for f, r in zip(files, results)]
