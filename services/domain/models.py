"""Domain records for vendors, contracts, invoices and reconciliation reports.

Records serialize with camelCase keys (the JSON shape exposed to callers) while
Python code uses snake_case attribute names.
"""

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from services.domain.status import ContractStatus, InvoiceStatus, ensure_transition


def _new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Contract terms -------------------------------------------------------


class Rate(CamelModel):
    """Contracted unit rate for a described service or product."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    description: str = ""
    rate: float = 0.0
    unit: str | None = None


class Cap(CamelModel):
    """Spending cap; only ``monthly`` caps are enforced during reconciliation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str = "monthly"
    amount: float
    description: str | None = None


class Fee(CamelModel):
    """Fee either authorized by a contract or charged on an invoice."""

    type: Literal["percent", "fixed"] = "fixed"
    description: str = ""
    amount: float = 0.0

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        return "percent" if value == "percent" else "fixed"

    @field_validator("description", mode="before")
    @classmethod
    def _strip_description(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""


class PaymentTerms(CamelModel):
    """Payment terms; any extra keys the contract states are kept as-is."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    net_days: int | None = None


class ContractTerms(CamelModel):
    """Structured commercial terms of a contract."""

    rates: list[Rate] = Field(default_factory=list)
    caps: list[Cap] = Field(default_factory=list)
    fees: list[Fee] | None = None
    escalation_clauses: list[dict[str, Any] | str] = Field(default_factory=list)
    payment_terms: PaymentTerms | None = None
    billing_cycle: str | None = None
    late_fees: dict[str, Any] | None = None


# --- Documents ------------------------------------------------------------


class DocumentMetadata(CamelModel):
    """Processing facts recorded on a document by the pipeline."""

    extraction_method: str | None = None
    extraction_confidence: float | None = None
    confidence: float | None = None
    ai_model: str | None = None
    processing_time_ms: int | None = None
    page_count: int | None = None
    text_hash: str | None = None
    clause_spans: list[Any] | None = None
    rejection_reason: str | None = None
    error: str | None = None


class Vendor(CamelModel):
    """Vendor identity plus aggregate metrics derived from processed invoices."""

    id: str = Field(default_factory=_new_id)
    name: str
    canonical_name: str
    business_description: str | None = None
    active: bool = True
    total_invoices: int = 0
    total_discrepancies: float = 0.0
    total_savings: float = 0.0
    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Document(CamelModel):
    """Fields shared by contracts and invoices."""

    id: str = Field(default_factory=_new_id)
    vendor_id: str
    file_key: str
    file_name: str
    file_url: str | None = None
    extracted_text: str | None = None
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def mark_deleted(self) -> None:
        self.deleted_at = utcnow()
        self.updated_at = self.deleted_at

    def restore(self) -> None:
        self.deleted_at = None
        self.updated_at = utcnow()


class Contract(Document):
    """Vendor contract governing invoice reconciliation while active."""

    status: ContractStatus = ContractStatus.NEEDS_REVIEW
    effective_date: date = Field(default_factory=lambda: utcnow().date())
    renewal_date: date | None = None
    end_date: date | None = None
    terms: ContractTerms = Field(default_factory=ContractTerms)

    def transition_to(self, status: ContractStatus) -> None:
        ensure_transition("Contract", self.status, status)
        self.status = status
        self.updated_at = utcnow()


class LineItem(CamelModel):
    """Single billed line of an invoice."""

    description: str = ""
    quantity: float = 1.0
    rate: float = 0.0
    unit: str = "each"
    total: float = 0.0


class Invoice(Document):
    """Vendor invoice reconciled against the vendor's active contract."""

    status: InvoiceStatus = InvoiceStatus.PENDING
    invoice_number: str
    invoice_date: date = Field(default_factory=lambda: utcnow().date())
    due_date: date | None = None
    total_amount: float = 0.0
    subtotal: float = 0.0
    tax_amount: float | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    fees: list[Fee] | None = None

    def transition_to(self, status: InvoiceStatus) -> None:
        ensure_transition("Invoice", self.status, status)
        self.status = status
        self.updated_at = utcnow()


# --- Reconciliation -------------------------------------------------------


class DiscrepancyType(StrEnum):
    RATE_OVERAGE = "rate_overage"
    MISSING_CAP = "missing_cap"
    UNAUTHORIZED_FEE = "unauthorized_fee"
    INCORRECT_QUANTITY = "incorrect_quantity"
    DATE_MISMATCH = "date_mismatch"
    TAX_ERROR = "tax_error"
    OTHER = "other"


class DiscrepancyPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Discrepancy(CamelModel):
    """Mismatch between invoice charges and contract terms."""

    type: DiscrepancyType
    priority: DiscrepancyPriority
    description: str
    expected_value: str | float | None = None
    actual_value: str | float | None = None
    amount: float = 0.0
    line_item_index: int | None = None


class ChecklistItem(CamelModel):
    """One rule evaluation within a reconciliation run."""

    item: str
    passed: bool = False
    details: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ReconciliationReport(CamelModel):
    """Outcome of reconciling one invoice against one contract."""

    id: str = Field(default_factory=_new_id)
    invoice_id: str
    contract_id: str
    discrepancies: list[Discrepancy] = Field(default_factory=list)
    checklist: list[ChecklistItem] = Field(default_factory=list)
    rationale_text: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_discrepancies(self) -> bool:
        return len(self.discrepancies) > 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_discrepancy_amount(self) -> float:
        return sum(d.amount for d in self.discrepancies)
