"""Contract and invoice data models for structured extraction.

Wire models mirror the JSON the AI service is asked to produce (camelCase keys).
Raw invoice output is validated leniently and then normalized into
``InvoiceParseResult``.
"""

from typing import Any

from pydantic import Field, field_validator

from services.domain.models import CamelModel, ContractTerms, Fee, LineItem

CONTRACT_SYSTEM_PROMPT = """Extract contract information and return ONLY valid JSON.
Focus on:
1. Vendor name and business description (1-3 words)
2. Contract dates (effective, renewal, end) and the contract duration (e.g. "12 months")
3. All monetary terms, rates, caps, fees
4. Payment terms (netDays) and billing cycles
5. Escalation clauses and late fees

Use ISO dates (YYYY-MM-DD). Return confidence score 0-1 for extraction quality."""

INVOICE_SYSTEM_PROMPT = """Extract invoice information and return ONLY valid JSON.
Parse:
1. Vendor name exactly as shown
2. Invoice number, date, and due date
3. Total amount, subtotal, and tax
4. All line items with description, quantity, rate, unit, total
5. Any additional fees (specify if percentage or fixed amount)

Ensure all monetary values are numbers, not strings.
Return confidence score 0-1 for extraction quality."""


class ContractExtractionResult(CamelModel):
    """Structured contract data returned by the AI service."""

    vendor_name: str = Field(description="Vendor company name")
    canonical_name: str | None = None
    business_description: str | None = Field(None, description="Business category (1-3 words)")
    effective_date: str = Field(description="Date the contract takes effect")
    renewal_date: str | None = None
    end_date: str | None = None
    duration: str | None = Field(None, description="Contract term, e.g. '12 months'")
    terms: ContractTerms = Field(default_factory=ContractTerms)
    clause_spans: list[Any] | None = None
    confidence: float = Field(ge=0, le=1, description="Extraction confidence (0-1)")


class RawLineItem(CamelModel):
    """Invoice line exactly as returned by the AI service."""

    description: str | None
    total: Any
    quantity: Any = None
    rate: Any = None
    unit: Any = None


class RawInvoice(CamelModel):
    """Invoice as returned by the AI service, before normalization."""

    vendor_name: str
    invoice_number: str
    invoice_date: str
    due_date: str | None = None
    total_amount: Any
    subtotal: Any = None
    tax_amount: Any = None
    line_items: list[RawLineItem]
    fees: list[dict[str, Any]] | None = None
    confidence: float | None = None

    @field_validator("invoice_number", mode="before")
    @classmethod
    def _stringify_number(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int | float) else value


class InvoiceParseResult(CamelModel):
    """Normalized invoice fields.

    Attributes:
        invoice_date: ISO calendar date, or the raw string if it could not be parsed
        due_date: ISO calendar date, raw string, or None
        confidence: Extraction confidence (0.8 when the AI service reported none)
    """

    vendor_name: str
    invoice_number: str
    invoice_date: str
    due_date: str | None = None
    total_amount: float = 0.0
    subtotal: float = 0.0
    tax_amount: float | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    fees: list[Fee] = Field(default_factory=list)
    confidence: float = 0.8
