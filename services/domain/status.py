"""Document lifecycle statuses and their allowed transitions.

Status changes go through ``ensure_transition`` so an illegal move is rejected
in one place instead of being checked ad hoc by each caller.
"""

from enum import StrEnum

from services.shared.errors import InvalidStatusTransition


class ContractStatus(StrEnum):
    """Lifecycle of a contract document."""

    NEEDS_REVIEW = "needs_review"
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class InvoiceStatus(StrEnum):
    """Lifecycle of an invoice document."""

    PENDING = "pending"
    RECONCILED = "reconciled"
    FLAGGED = "flagged"
    APPROVED = "approved"
    REJECTED = "rejected"


# Reprocessing a document may send it back to its review-pending status,
# so every non-terminal status can return there.
CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.NEEDS_REVIEW: frozenset(
        {ContractStatus.NEEDS_REVIEW, ContractStatus.ACTIVE, ContractStatus.INACTIVE}
    ),
    ContractStatus.ACTIVE: frozenset(
        {
            ContractStatus.ACTIVE,
            ContractStatus.INACTIVE,
            ContractStatus.EXPIRED,
            ContractStatus.NEEDS_REVIEW,
        }
    ),
    ContractStatus.INACTIVE: frozenset(
        {ContractStatus.INACTIVE, ContractStatus.ACTIVE, ContractStatus.NEEDS_REVIEW}
    ),
    ContractStatus.EXPIRED: frozenset({ContractStatus.EXPIRED, ContractStatus.INACTIVE}),
}

INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset(
        {InvoiceStatus.PENDING, InvoiceStatus.RECONCILED, InvoiceStatus.FLAGGED}
    ),
    InvoiceStatus.RECONCILED: frozenset(
        {InvoiceStatus.APPROVED, InvoiceStatus.REJECTED, InvoiceStatus.PENDING}
    ),
    InvoiceStatus.FLAGGED: frozenset(
        {InvoiceStatus.APPROVED, InvoiceStatus.REJECTED, InvoiceStatus.PENDING}
    ),
    InvoiceStatus.APPROVED: frozenset(),
    InvoiceStatus.REJECTED: frozenset(),
}

# Human-readable processing state shown alongside an invoice status.
INVOICE_PROCESSING_STATE: dict[InvoiceStatus, str] = {
    InvoiceStatus.PENDING: "processing",
    InvoiceStatus.RECONCILED: "completed",
    InvoiceStatus.FLAGGED: "flagged",
    InvoiceStatus.APPROVED: "approved",
    InvoiceStatus.REJECTED: "rejected",
}


def can_transition(current: ContractStatus | InvoiceStatus, target: ContractStatus | InvoiceStatus) -> bool:
    """Check whether ``current`` may move to ``target``."""
    if isinstance(current, ContractStatus) and isinstance(target, ContractStatus):
        return target in CONTRACT_TRANSITIONS[current]
    if isinstance(current, InvoiceStatus) and isinstance(target, InvoiceStatus):
        return target in INVOICE_TRANSITIONS[current]
    return False


def ensure_transition(
    entity: str,
    current: ContractStatus | InvoiceStatus,
    target: ContractStatus | InvoiceStatus,
) -> None:
    """Raise InvalidStatusTransition unless ``current`` may move to ``target``."""
    if not can_transition(current, target):
        raise InvalidStatusTransition(entity, str(current), str(target))
