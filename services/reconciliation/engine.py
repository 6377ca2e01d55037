"""Rule-based reconciliation of an invoice against its governing contract.

One checklist item is built per contract term category the contract actually
states (rates, caps, fees, payment terms) plus an unconditional invoice date
check. Each failed check contributes at most one discrepancy. The narrative
explanation is the only AI-dependent (and non-deterministic) part; when it is
unavailable a templated explanation is used instead.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import NamedTuple

from services.ai.base import AIProvider
from services.domain.models import (
    ChecklistItem,
    Contract,
    Discrepancy,
    DiscrepancyPriority,
    DiscrepancyType,
    Fee,
    Invoice,
    Rate,
    ReconciliationReport,
)
from services.shared.config import Settings
from services.shared.errors import ExtractionServiceFailure

logger = logging.getLogger(__name__)

NO_DISCREPANCIES_RATIONALE = "Invoice matches contract terms without discrepancies."

RATE_COMPLIANCE = "Rate Compliance"
CAP_LIMITS = "Cap Limits"
AUTHORIZED_FEES = "Authorized Fees"
PAYMENT_TERMS = "Payment Terms"
INVOICE_DATE_VALIDITY = "Invoice Date Validity"


class CheckResult(NamedTuple):
    passed: bool
    details: str
    confidence: float
    discrepancy: Discrepancy | None = None


def _display_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _contains_either_way(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a in b or b in a


def find_applicable_rate(description: str, rates: list[Rate]) -> Rate | None:
    """First contract rate whose description contains, or is contained by, ``description``."""
    for rate in rates:
        if _contains_either_way(description, rate.description or ""):
            return rate
    return None


def fees_match(invoice_fee: Fee, contract_fee: Fee) -> bool:
    """Same fee type and a two-way case-insensitive substring match on description."""
    return invoice_fee.type == contract_fee.type and _contains_either_way(
        invoice_fee.description, contract_fee.description
    )


def check_rate_compliance(invoice: Invoice, contract: Contract) -> CheckResult:
    affected = 0
    total_overcharge = 0.0
    for item in invoice.line_items:
        rate = find_applicable_rate(item.description, contract.terms.rates)
        if rate is not None and item.rate > rate.rate:
            affected += 1
            total_overcharge += (item.rate - rate.rate) * item.quantity

    if affected:
        return CheckResult(
            passed=False,
            details=f"{affected} line items exceed contract rates",
            confidence=0.9,
            discrepancy=Discrepancy(
                type=DiscrepancyType.RATE_OVERAGE,
                priority=DiscrepancyPriority.HIGH,
                description=f"Rate overcharge detected on {affected} items",
                expected_value="Contract rates",
                actual_value="Higher rates charged",
                amount=total_overcharge,
            ),
        )
    return CheckResult(True, "All rates comply with contract", 0.9)


def check_cap_limits(invoice: Invoice, contract: Contract) -> CheckResult:
    # Only the first violated cap is reported
    for cap in contract.terms.caps:
        if cap.type == "monthly" and invoice.total_amount > cap.amount:
            return CheckResult(
                passed=False,
                details=f"Invoice exceeds monthly cap of ${_display_number(cap.amount)}",
                confidence=0.95,
                discrepancy=Discrepancy(
                    type=DiscrepancyType.MISSING_CAP,
                    priority=DiscrepancyPriority.CRITICAL,
                    description="Monthly spending cap exceeded",
                    expected_value=cap.amount,
                    actual_value=invoice.total_amount,
                    amount=invoice.total_amount - cap.amount,
                ),
            )
    return CheckResult(True, "Within cap limits", 0.95)


def check_authorized_fees(invoice: Invoice, contract: Contract) -> CheckResult:
    authorized = contract.terms.fees or []
    unauthorized = [
        fee for fee in invoice.fees or [] if not any(fees_match(fee, auth) for auth in authorized)
    ]

    if unauthorized:
        amount = sum(
            invoice.subtotal * fee.amount / 100 if fee.type == "percent" else fee.amount
            for fee in unauthorized
        )
        return CheckResult(
            passed=False,
            details=f"{len(unauthorized)} unauthorized fees detected",
            confidence=0.85,
            discrepancy=Discrepancy(
                type=DiscrepancyType.UNAUTHORIZED_FEE,
                priority=DiscrepancyPriority.HIGH,
                description="Unauthorized fees charged",
                expected_value="Only authorized fees",
                actual_value=", ".join(fee.description for fee in unauthorized),
                amount=amount,
            ),
        )
    return CheckResult(True, "All fees are authorized", 0.85)


def check_payment_terms(invoice: Invoice, contract: Contract) -> CheckResult:
    terms = contract.terms.payment_terms
    if terms is None or invoice.due_date is None:
        return CheckResult(True, "Payment terms not specified", 0.7)

    days_diff = (invoice.due_date - invoice.invoice_date).days
    if terms.net_days and days_diff < terms.net_days:
        return CheckResult(
            passed=False,
            details=f"Due date violates Net {terms.net_days} terms",
            confidence=0.9,
            discrepancy=Discrepancy(
                type=DiscrepancyType.OTHER,
                priority=DiscrepancyPriority.MEDIUM,
                description="Payment terms violation",
                expected_value=f"Net {terms.net_days}",
                actual_value=f"Net {days_diff}",
                amount=0,
            ),
        )
    return CheckResult(True, "Payment terms compliant", 0.9)


def check_invoice_date_validity(invoice: Invoice, contract: Contract) -> CheckResult:
    if invoice.invoice_date < contract.effective_date:
        return CheckResult(
            passed=False,
            details="Invoice dated before contract effective date",
            confidence=1.0,
            discrepancy=Discrepancy(
                type=DiscrepancyType.DATE_MISMATCH,
                priority=DiscrepancyPriority.CRITICAL,
                description="Invoice predates contract",
                expected_value=f"After {contract.effective_date.isoformat()}",
                actual_value=invoice.invoice_date.isoformat(),
                amount=0,
            ),
        )

    if contract.end_date is not None and invoice.invoice_date > contract.end_date:
        # Entirely out of period, not prorated
        return CheckResult(
            passed=False,
            details="Invoice dated after contract expiration",
            confidence=1.0,
            discrepancy=Discrepancy(
                type=DiscrepancyType.DATE_MISMATCH,
                priority=DiscrepancyPriority.CRITICAL,
                description="Invoice after contract expiration",
                expected_value=f"Before {contract.end_date.isoformat()}",
                actual_value=invoice.invoice_date.isoformat(),
                amount=invoice.total_amount,
            ),
        )
    return CheckResult(True, "Invoice date within contract period", 1.0)


Check = Callable[[Invoice, Contract], CheckResult]


def build_checklist(contract: Contract) -> list[tuple[str, Check]]:
    """Checks applicable to ``contract``, in evaluation order."""
    checks: list[tuple[str, Check]] = []
    if contract.terms.rates:
        checks.append((RATE_COMPLIANCE, check_rate_compliance))
    if contract.terms.caps:
        checks.append((CAP_LIMITS, check_cap_limits))
    if contract.terms.fees is not None:
        checks.append((AUTHORIZED_FEES, check_authorized_fees))
    if contract.terms.payment_terms is not None:
        checks.append((PAYMENT_TERMS, check_payment_terms))
    checks.append((INVOICE_DATE_VALIDITY, check_invoice_date_validity))
    return checks


def narrative_context(discrepancies: list[Discrepancy]) -> str:
    """Fixed-format summary handed to the narrative service."""
    total = sum(d.amount for d in discrepancies)
    critical = sum(1 for d in discrepancies if d.priority == DiscrepancyPriority.CRITICAL)
    high = sum(1 for d in discrepancies if d.priority == DiscrepancyPriority.HIGH)
    return (
        f"Invoice reconciliation identified {len(discrepancies)} discrepancies with total "
        f"impact of ${total:.2f}. Priority levels: {critical} critical, {high} high."
    )


def templated_rationale(discrepancies: list[Discrepancy]) -> str:
    """Explanation used when the narrative service is unavailable."""
    findings = "; ".join(f"{d.description} (${d.amount:.2f})" for d in discrepancies)
    return (
        f"{narrative_context(discrepancies)} Findings: {findings}. "
        "Automated narrative analysis is currently unavailable; review the checklist for details."
    )


class ReconciliationEngine:
    """Runs the reconciliation checklist and explains the outcome."""

    def __init__(self, narrator: AIProvider, settings: Settings) -> None:
        self.narrator = narrator
        self.timeout = settings.external_call_timeout_seconds

    async def reconcile(self, invoice: Invoice, contract: Contract) -> ReconciliationReport:
        """Reconcile ``invoice`` against ``contract``.

        Discrepancies and checklist depend only on the two inputs; only the
        rationale text can vary between runs.
        """
        checklist: list[ChecklistItem] = []
        discrepancies: list[Discrepancy] = []

        for name, check in build_checklist(contract):
            result = check(invoice, contract)
            checklist.append(
                ChecklistItem(
                    item=name,
                    passed=result.passed,
                    details=result.details,
                    confidence=result.confidence,
                )
            )
            if not result.passed and result.discrepancy is not None:
                discrepancies.append(result.discrepancy)

        narrative_fallback = False
        if discrepancies:
            rationale, narrative_fallback = await self._explain(discrepancies, checklist)
        else:
            rationale = NO_DISCREPANCIES_RATIONALE

        report = ReconciliationReport(
            invoice_id=invoice.id,
            contract_id=contract.id,
            discrepancies=discrepancies,
            checklist=checklist,
            rationale_text=rationale,
            metadata={"narrativeFallback": narrative_fallback},
        )
        logger.info(
            f"Reconciled invoice {invoice.id} against contract {contract.id}: "
            f"{len(discrepancies)} discrepancies totalling ${report.total_discrepancy_amount:.2f}"
        )
        return report

    async def _explain(
        self, discrepancies: list[Discrepancy], checklist: list[ChecklistItem]
    ) -> tuple[str, bool]:
        data = {
            "discrepancies": [d.model_dump(mode="json", by_alias=True) for d in discrepancies],
            "checklist": [c.model_dump(mode="json", by_alias=True) for c in checklist],
        }
        try:
            text = await asyncio.wait_for(
                self.narrator.explain(data, narrative_context(discrepancies)), self.timeout
            )
        except (ExtractionServiceFailure, TimeoutError) as e:
            logger.warning(f"Narrative generation unavailable, using templated rationale: {e}")
            return templated_rationale(discrepancies), True
        return text, False
