"""Text extraction from PDF documents with a quality-gated OCR fallback.

Flow:
1. Reject documents above the configured size limit
2. Extract embedded text locally with pdfplumber (fast path)
3. Score the text; if it is too short, too sparse or too garbled - or if
   pdfplumber raised - run the configured fallback OCR service
4. Clean whitespace on whichever path produced the text

Based on pdfplumber documentation:
https://github.com/jsvine/pdfplumber
"""

import hashlib
import io
import logging
import re
from typing import Any

import pdfplumber
from pydantic import BaseModel, Field

from services.ocr.factory import OCRService, create_ocr_service
from services.shared.config import Settings
from services.shared.errors import ExtractionFailure

logger = logging.getLogger(__name__)

PRIMARY_METHOD = "pdfplumber"

_NON_ASCII = re.compile(r"[^\x00-\x7F]")
_SPECIAL = re.compile(r"[^\w\s.,;:!?'\"()-]", re.ASCII)
_HORIZONTAL_WS = re.compile(r"[^\S\n]+")
_TRAILING_WS = re.compile(r" +\n")
_BLANK_LINES = re.compile(r"\n{3,}")


class TextExtractionResult(BaseModel):
    """Result of text extraction.

    Attributes:
        text: Cleaned document text
        method: Extraction method that produced the text
        page_count: Number of pages in the document
        confidence: Text quality confidence (0-1)
        metadata: Method-specific details
    """

    text: str
    method: str
    page_count: int
    confidence: float = Field(ge=0, le=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


def clean_text(text: str) -> str:
    """Normalize line endings, tabs and runs of whitespace and blank lines."""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    cleaned = _HORIZONTAL_WS.sub(" ", cleaned)
    cleaned = _TRAILING_WS.sub("\n", cleaned)
    cleaned = _BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()


def garbled_ratio(text: str) -> float:
    """Share of non-ASCII plus non-punctuation special characters.

    Non-ASCII characters count in both groups, so heavily garbled text is
    penalised twice.
    """
    if not text:
        return 1.0
    non_ascii = len(_NON_ASCII.findall(text))
    special = len(_SPECIAL.findall(text))
    return (non_ascii + special) / len(text)


def hash_text(text: str) -> str:
    """SHA-256 fingerprint of extracted text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class TextExtractor:
    """Converts raw PDF bytes into plain text.

    The fallback OCR service is injected (or created from settings) so the
    primary/fallback pairing stays pluggable.
    """

    def __init__(self, settings: Settings, ocr_service: OCRService | None = None) -> None:
        """Initialize text extractor.

        Args:
            settings: Application settings with extraction thresholds
            ocr_service: Fallback OCR service (defaults to settings.ocr_provider)
        """
        self.settings = settings
        self._ocr_service = ocr_service

    @property
    def ocr_service(self) -> OCRService:
        if self._ocr_service is None:
            self._ocr_service = create_ocr_service(self.settings)
        return self._ocr_service

    def extract(self, data: bytes) -> TextExtractionResult:
        """Extract text from a PDF document.

        Args:
            data: Raw PDF bytes

        Returns:
            TextExtractionResult from the primary path, or from the fallback when
            the primary text is insufficient

        Raises:
            ExtractionFailure: If the document is too large or every method fails
        """
        if len(data) > self.settings.max_document_size_bytes:
            raise ExtractionFailure(
                f"File size exceeds maximum limit of {self.settings.max_document_size_bytes} bytes"
            )

        try:
            result = self._extract_primary(data)
        except Exception as e:
            logger.error(f"Primary extraction failed, attempting fallback OCR: {e}")
            return self._extract_fallback(data)

        if self.is_quality_sufficient(result.text):
            return result

        logger.warning("PDF text extraction quality insufficient, falling back to OCR")
        return self._extract_fallback(data)

    def is_quality_sufficient(self, text: str) -> bool:
        """Check minimum length, minimum word count and garbled ratio."""
        if not text or len(text) < self.settings.min_text_chars:
            return False
        if len(text.split()) < self.settings.min_text_words:
            return False
        return garbled_ratio(text) <= self.settings.max_garbled_ratio

    @staticmethod
    def primary_confidence(text: str) -> float:
        """Confidence for embedded text: 0.7 base, word-count bonus, garble penalty."""
        word_count = len(text.split())
        confidence = 0.7
        if word_count > 500:
            confidence += 0.1
        if word_count > 1000:
            confidence += 0.1
        confidence -= garbled_ratio(text) * 0.5
        return max(0.0, min(1.0, confidence))

    def _read_pdf(self, data: bytes) -> tuple[str, int, dict[str, Any]]:
        """Read embedded page text with pdfplumber."""
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
            info = {k: str(v) for k, v in (pdf.metadata or {}).items()}
            return "\n".join(pages), len(pdf.pages), {"info": info}

    def _extract_primary(self, data: bytes) -> TextExtractionResult:
        raw_text, page_count, metadata = self._read_pdf(data)
        text = clean_text(raw_text)
        return TextExtractionResult(
            text=text,
            method=PRIMARY_METHOD,
            page_count=page_count,
            confidence=self.primary_confidence(text),
            metadata=metadata,
        )

    def _extract_fallback(self, data: bytes) -> TextExtractionResult:
        service = self.ocr_service
        try:
            ocr_result = service.extract_text(data)
        except Exception as e:
            logger.error(f"Fallback OCR ({service.method}) failed: {e}")
            raise ExtractionFailure("Document extraction failed with all methods") from e

        logger.info(
            f"Fallback OCR ({service.method}) extracted {ocr_result.page_count} pages "
            f"with confidence {ocr_result.confidence:.2f}"
        )
        return TextExtractionResult(
            text=clean_text(ocr_result.text),
            method=service.method,
            page_count=ocr_result.page_count,
            confidence=max(0.0, min(1.0, ocr_result.confidence)),
            metadata=ocr_result.metadata,
        )
