"""AWS Textract service for table- and form-aware document analysis.

Remote fallback used when local PDF text extraction is missing or garbled:
- AnalyzeDocument with TABLES and FORMS features
- LINE blocks kept in reading order, TABLE blocks flattened to ' | ' rows
- Lazy client creation for faster startup

Based on the boto3 Textract client:
https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/textract.html
"""

import logging
from typing import Any

import boto3

from services.ocr.factory import OCRResult
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class TextractOCRService:
    """OCR service backed by AWS Textract."""

    def __init__(self, settings: Settings) -> None:
        """Initialize Textract service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._client: Any = None  # Lazy loading (boto3 textract client)

    @property
    def method(self) -> str:
        return "textract"

    def _get_client(self) -> Any:
        """Get or create the Textract client (lazy loading)."""
        if self._client is None:
            self._client = boto3.client("textract", region_name=self.settings.aws_region)
            logger.info(f"Textract client initialized for region: {self.settings.aws_region}")
        return self._client

    def is_available(self) -> bool:
        """Check if AWS credentials can be resolved."""
        try:
            return boto3.session.Session().get_credentials() is not None
        except Exception:
            return False

    def extract_text(self, data: bytes) -> OCRResult:
        """Analyse PDF bytes with Textract.

        Args:
            data: Raw PDF bytes

        Returns:
            OCRResult with line/table text and block confidences
        """
        response = self._get_client().analyze_document(
            Document={"Bytes": data},
            FeatureTypes=["TABLES", "FORMS"],
        )
        blocks: list[dict[str, Any]] = response.get("Blocks", [])
        document_metadata = response.get("DocumentMetadata", {})

        return OCRResult(
            text=self._blocks_to_text(blocks),
            page_count=document_metadata.get("Pages") or 1,
            block_confidences=[
                b["Confidence"] / 100 for b in blocks if b.get("Confidence") is not None
            ],
            block_count=len(blocks),
            metadata={"documentMetadata": document_metadata, "blocksCount": len(blocks)},
        )

    def _blocks_to_text(self, blocks: list[dict[str, Any]]) -> str:
        by_id = {b["Id"]: b for b in blocks if "Id" in b}
        lines: list[str] = []
        for block in blocks:
            if block.get("BlockType") == "LINE" and block.get("Text"):
                lines.append(block["Text"])
            elif block.get("BlockType") == "TABLE":
                lines.append(self._table_text(block, by_id))
        return "\n".join(lines)

    @staticmethod
    def _child_ids(block: dict[str, Any]) -> list[str]:
        for relationship in block.get("Relationships", []):
            if relationship.get("Type") == "CHILD":
                return list(relationship.get("Ids", []))
        return []

    def _table_text(self, table: dict[str, Any], by_id: dict[str, dict[str, Any]]) -> str:
        """Flatten a TABLE block into one ' | '-joined row of cell texts."""
        cell_texts: list[str] = []
        for cell_id in self._child_ids(table):
            cell = by_id.get(cell_id)
            if cell is None:
                continue
            text = cell.get("Text") or " ".join(
                by_id[word_id]["Text"]
                for word_id in self._child_ids(cell)
                if word_id in by_id and by_id[word_id].get("Text")
            )
            if text:
                cell_texts.append(text)
        return " | ".join(cell_texts)
