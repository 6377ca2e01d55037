"""Factory for creating fallback OCR services based on configuration.

Implements Factory Pattern for OCR provider selection.
Allows switching between AWS Textract and Tesseract at runtime.
"""

import logging
from typing import Any, Protocol

from pydantic import BaseModel, Field

from services.shared.config import Settings

logger = logging.getLogger(__name__)


class OCRResult(BaseModel):
    """Result of OCR operation.

    Attributes:
        text: Extracted text content (not yet whitespace-cleaned)
        page_count: Number of pages analysed
        block_confidences: Per-block confidence scores (0-1) reported by the engine
        block_count: Total blocks returned, including blocks without a confidence
        metadata: Engine-specific details worth keeping on the document
    """

    text: str
    page_count: int = 1
    block_confidences: list[float] = Field(default_factory=list)
    block_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def confidence(self) -> float:
        """Mean block confidence (0.5 if none reported, 0.0 without blocks)."""
        if self.block_count == 0:
            return 0.0
        if not self.block_confidences:
            return 0.5
        return sum(self.block_confidences) / len(self.block_confidences)


class OCRService(Protocol):
    """Protocol for fallback OCR services."""

    @property
    def method(self) -> str:
        """Extraction method name recorded on documents."""
        ...

    def extract_text(self, data: bytes) -> OCRResult:
        """Extract text from raw PDF bytes.

        Raises:
            Exception: Any engine failure; the caller treats it as exhausting the fallback
        """
        ...

    def is_available(self) -> bool:
        """Check if OCR service is available."""
        ...


def create_ocr_service(settings: Settings) -> OCRService:
    """Factory function to create OCR service based on configuration.

    Args:
        settings: Application settings with ocr_provider field

    Returns:
        Configured OCR service instance

    Raises:
        ValueError: If configured provider is unknown
    """
    provider = settings.ocr_provider

    if provider == "textract":
        from services.ocr.textract_service import TextractOCRService

        logger.info("Created OCR service: textract")
        return TextractOCRService(settings)

    elif provider == "tesseract":
        from services.ocr.service import TesseractOCRService

        service = TesseractOCRService(settings)
        if not service.is_available():
            logger.warning("Tesseract binary not found. Install tesseract-ocr or set TESSERACT_CMD")
        logger.info("Created OCR service: tesseract")
        return service

    else:
        available = ["textract", "tesseract"]
        raise ValueError(f"Unknown OCR provider: '{provider}'. Available: {', '.join(available)}")
