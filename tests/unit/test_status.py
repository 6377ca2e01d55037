"""Unit tests for document status transitions."""

import pytest

from services.domain.models import Contract, Invoice
from services.domain.status import (
    INVOICE_PROCESSING_STATE,
    ContractStatus,
    InvoiceStatus,
    can_transition,
    ensure_transition,
)
from services.shared.errors import InvalidStatusTransition


class TestContractTransitions:
    """Test the contract lifecycle."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ContractStatus.NEEDS_REVIEW, ContractStatus.ACTIVE),
            (ContractStatus.ACTIVE, ContractStatus.INACTIVE),
            (ContractStatus.ACTIVE, ContractStatus.EXPIRED),
            (ContractStatus.INACTIVE, ContractStatus.ACTIVE),
            (ContractStatus.EXPIRED, ContractStatus.INACTIVE),
        ],
    )
    def test_allowed(self, current: ContractStatus, target: ContractStatus) -> None:
        assert can_transition(current, target) is True

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ContractStatus.EXPIRED, ContractStatus.ACTIVE),
            (ContractStatus.NEEDS_REVIEW, ContractStatus.EXPIRED),
        ],
    )
    def test_rejected(self, current: ContractStatus, target: ContractStatus) -> None:
        assert can_transition(current, target) is False

    def test_contract_transition_to(self) -> None:
        contract = Contract(vendor_id="v", file_key="k", file_name="c.pdf")
        before = contract.updated_at

        contract.transition_to(ContractStatus.ACTIVE)

        assert contract.status == ContractStatus.ACTIVE
        assert contract.updated_at >= before


class TestInvoiceTransitions:
    """Test the invoice lifecycle."""

    def test_pending_to_outcomes(self) -> None:
        assert can_transition(InvoiceStatus.PENDING, InvoiceStatus.RECONCILED)
        assert can_transition(InvoiceStatus.PENDING, InvoiceStatus.FLAGGED)

    def test_review_decisions(self) -> None:
        for current in (InvoiceStatus.RECONCILED, InvoiceStatus.FLAGGED):
            assert can_transition(current, InvoiceStatus.APPROVED)
            assert can_transition(current, InvoiceStatus.REJECTED)

    @pytest.mark.parametrize("terminal", [InvoiceStatus.APPROVED, InvoiceStatus.REJECTED])
    def test_terminal_statuses(self, terminal: InvoiceStatus) -> None:
        assert not any(can_transition(terminal, target) for target in InvoiceStatus)

    def test_pending_cannot_be_approved(self) -> None:
        invoice = Invoice(vendor_id="v", file_key="k", file_name="i.pdf", invoice_number="INV-1")
        with pytest.raises(InvalidStatusTransition) as exc_info:
            invoice.transition_to(InvoiceStatus.APPROVED)

        assert exc_info.value.entity == "Invoice"
        assert exc_info.value.current == "pending"
        assert exc_info.value.requested == "approved"
        assert invoice.status == InvoiceStatus.PENDING

    def test_processing_state_for_every_status(self) -> None:
        assert set(INVOICE_PROCESSING_STATE) == set(InvoiceStatus)
        assert INVOICE_PROCESSING_STATE[InvoiceStatus.PENDING] == "processing"


def test_mixed_status_kinds_rejected() -> None:
    assert can_transition(ContractStatus.ACTIVE, InvoiceStatus.PENDING) is False
    with pytest.raises(InvalidStatusTransition):
        ensure_transition("Contract", ContractStatus.ACTIVE, InvoiceStatus.PENDING)
