"""Structured extraction engine for contracts and invoices.

Sends redacted text to the configured AI provider with a fixed schema,
chunking long contracts and merging chunk results in chunk order.
Invoice output is normalized (numbers coerced, dates made ISO) and contract
dates are derived from the stated duration.
"""

import asyncio
import calendar
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import BaseModel

from services.ai.base import AIProvider
from services.domain.models import Fee, LineItem
from services.extraction.chunking import chunk_text, merge_contract_results
from services.extraction.schema import (
    CONTRACT_SYSTEM_PROMPT,
    INVOICE_SYSTEM_PROMPT,
    ContractExtractionResult,
    InvoiceParseResult,
    RawInvoice,
)
from services.shared.config import Settings
from services.shared.errors import SchemaValidationFailure

logger = logging.getLogger(__name__)

DEFAULT_INVOICE_CONFIDENCE = 0.8
RENEWAL_NOTICE_DAYS = 30

# Common date formats in invoices and contracts
DATE_FORMATS = [
    "%Y-%m-%d",  # 2025-11-26
    "%m/%d/%Y",  # 11/26/2025
    "%d/%m/%Y",  # 26/11/2025
    "%B %d, %Y",  # November 26, 2025
    "%b %d, %Y",  # Nov 26, 2025
    "%d %B %Y",  # 26 November 2025
    "%d %b %Y",  # 26 Nov 2025
]

_DURATION = re.compile(r"(\d+)\s*(year|month|day)", re.IGNORECASE)
_ISO_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]")


class ContractDates(BaseModel):
    """Effective, renewal and end dates of a contract."""

    effective_date: date
    renewal_date: date | None = None
    end_date: date | None = None


def parse_date(value: str | None) -> date | None:
    """Parse a date string in one of the common formats, or None."""
    if not value:
        return None
    text = value.strip()
    iso = _ISO_PREFIX.match(text)
    if iso:
        text = iso.group(1)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_date(value: str) -> str:
    """Return the ISO form of a date string, or the string unchanged if unparseable."""
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else value


def to_float(value: Any, default: float) -> float:
    """Coerce a number-like value (``"$1,200.50"``, ``95``) to float."""
    if value is None or value == "" or isinstance(value, bool):
        return default
    if isinstance(value, int | float):
        return float(value)
    try:
        return float(str(value).replace(",", "").replace("$", "").strip())
    except ValueError:
        return default


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def derive_contract_dates(result: ContractExtractionResult) -> ContractDates:
    """Compute end and renewal dates from the stated duration.

    ``endDate = effectiveDate + duration`` and ``renewalDate = endDate - 30 days``.
    Explicit renewal/end dates in the extraction override the derived ones.

    Raises:
        SchemaValidationFailure: If the effective date cannot be parsed
    """
    effective = parse_date(result.effective_date)
    if effective is None:
        raise SchemaValidationFailure(f"Unparseable contract effective date: {result.effective_date!r}")

    end_date: date | None = None
    renewal_date: date | None = None

    match = _DURATION.search(result.duration or "")
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()
        if unit == "year":
            end_date = add_months(effective, amount * 12)
        elif unit == "month":
            end_date = add_months(effective, amount)
        else:
            end_date = effective + timedelta(days=amount)
        renewal_date = end_date - timedelta(days=RENEWAL_NOTICE_DAYS)

    if result.renewal_date:
        explicit = parse_date(result.renewal_date)
        if explicit:
            renewal_date = explicit
        else:
            logger.warning(f"Ignoring unparseable renewal date: {result.renewal_date!r}")
    if result.end_date:
        explicit = parse_date(result.end_date)
        if explicit:
            end_date = explicit
        else:
            logger.warning(f"Ignoring unparseable end date: {result.end_date!r}")

    return ContractDates(effective_date=effective, renewal_date=renewal_date, end_date=end_date)


def normalize_invoice(raw: RawInvoice) -> InvoiceParseResult:
    """Coerce raw AI invoice output into typed, defaulted fields."""
    line_items = [
        LineItem(
            description=(item.description or "").strip(),
            quantity=to_float(item.quantity, 1.0),
            rate=to_float(item.rate, 0.0),
            unit=str(item.unit).strip() if item.unit else "each",
            total=to_float(item.total, 0.0),
        )
        for item in raw.line_items
    ]
    fees = [
        Fee(
            type=fee.get("type"),
            description=fee.get("description"),
            amount=to_float(fee.get("amount"), 0.0),
        )
        for fee in raw.fees or []
    ]
    tax_amount = to_float(raw.tax_amount, 0.0)

    return InvoiceParseResult(
        vendor_name=raw.vendor_name.strip(),
        invoice_number=raw.invoice_number.strip(),
        invoice_date=normalize_date(raw.invoice_date),
        due_date=normalize_date(raw.due_date) if raw.due_date else None,
        total_amount=to_float(raw.total_amount, 0.0),
        subtotal=to_float(raw.subtotal, 0.0),
        tax_amount=tax_amount or None,
        line_items=line_items,
        fees=fees,
        confidence=raw.confidence if raw.confidence is not None else DEFAULT_INVOICE_CONFIDENCE,
    )


class StructuredExtractionEngine:
    """Turns redacted document text into validated contract or invoice records."""

    def __init__(self, provider: AIProvider, settings: Settings) -> None:
        self.provider = provider
        self.settings = settings

    async def extract_contract(self, text: str) -> ContractExtractionResult:
        """Extract contract terms, chunking text that exceeds the token budget.

        Chunks are extracted concurrently and merged in chunk order.

        Raises:
            SchemaValidationFailure: If any chunk's response does not conform
            ExtractionServiceFailure: On AI transport errors
        """
        chunks = chunk_text(
            text, self.settings.chunk_max_tokens, self.settings.chunk_overlap_tokens
        )
        if len(chunks) == 1:
            return await self.provider.extract_structured(
                CONTRACT_SYSTEM_PROMPT, text, ContractExtractionResult
            )

        logger.info(f"Contract text split into {len(chunks)} chunks")
        results = await asyncio.gather(
            *(
                self.provider.extract_structured(
                    CONTRACT_SYSTEM_PROMPT, chunk, ContractExtractionResult
                )
                for chunk in chunks
            )
        )
        return merge_contract_results(list(results))

    async def parse_invoice(self, text: str) -> InvoiceParseResult:
        """Parse invoice fields and normalize them.

        Raises:
            SchemaValidationFailure: If the response does not conform
            ExtractionServiceFailure: On AI transport errors
        """
        raw = await self.provider.extract_structured(INVOICE_SYSTEM_PROMPT, text, RawInvoice)
        result = normalize_invoice(raw)
        logger.info(
            f"Parsed invoice {result.invoice_number}: {len(result.line_items)} line items, "
            f"confidence {result.confidence:.2f}"
        )
        return result
