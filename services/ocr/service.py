"""OCR service using Tesseract.

Local fallback for scanned PDFs:
- Pages rasterised through pdfplumber
- Word-level confidences from Tesseract used as block confidences
- Configurable Tesseract path via environment variables

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import io
import logging
import os
from typing import Any

import pdfplumber
import pytesseract
from PIL import Image

from services.ocr.factory import OCRResult
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class TesseractOCRService:
    """OCR service using Tesseract engine.

    Handles text extraction from rasterised PDF pages with
    configuration management.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OCR service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._configure_tesseract()

    @property
    def method(self) -> str:
        return "tesseract"

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        Common paths:
        - Linux: /usr/bin/tesseract
        - macOS: /opt/homebrew/bin/tesseract or /usr/local/bin/tesseract
        - Windows: C:\\Program Files\\Tesseract-OCR\\tesseract.exe
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def is_available(self) -> bool:
        """Check if the Tesseract binary can be found."""
        try:
            pytesseract.get_tesseract_version()
            return True
        except Exception:
            return False

    def extract_text(self, data: bytes) -> OCRResult:
        """Extract text from PDF bytes.

        Args:
            data: Raw PDF bytes

        Returns:
            OCRResult with page text and word confidences
        """
        page_texts: list[str] = []
        confidences: list[float] = []
        block_count = 0

        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page in pdf.pages:
                image = page.to_image(resolution=self.settings.ocr_render_resolution).original
                text, page_confidences, page_blocks = self._ocr_page(image)
                page_texts.append(text)
                confidences.extend(page_confidences)
                block_count += page_blocks
            page_count = len(pdf.pages)

        logger.info(f"Tesseract processed {page_count} pages ({block_count} words)")
        return OCRResult(
            text="\n\n".join(page_texts),
            page_count=page_count,
            block_confidences=confidences,
            block_count=block_count,
            metadata={"engine": "tesseract"},
        )

    def _ocr_page(self, image: Image.Image) -> tuple[str, list[float], int]:
        """Run Tesseract on one page image and rebuild its lines."""
        data: dict[str, list[Any]] = pytesseract.image_to_data(
            image, output_type=pytesseract.Output.DICT
        )

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for i, word in enumerate(data.get("text", [])):
            if not word or not str(word).strip():
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(str(word))
            conf = float(data["conf"][i])
            if conf >= 0:  # Tesseract reports -1 for non-word boxes
                confidences.append(conf / 100)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        word_count = sum(len(words) for words in lines.values())
        return text, confidences, word_count
