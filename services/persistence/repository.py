"""Persistence interface for vendors, contracts, invoices and reports.

``InMemoryRepository`` is the reference implementation used by the worker in
local mode and by the tests. It serializes every mutation behind one
``asyncio.Lock`` and hands out deep copies, so callers never share state.

Invariants enforced here:
- vendor canonical names are unique
- invoice numbers are unique
- at most one active contract per vendor (saving an active contract
  deactivates the vendor's previous one in the same critical section)
- one reconciliation report per invoice, created once
- vendor metrics change only through atomic increments
"""

import asyncio
import logging
from typing import Protocol

from services.domain.models import Contract, Invoice, ReconciliationReport, Vendor, utcnow
from services.domain.status import ContractStatus, InvoiceStatus
from services.shared.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class Repository(Protocol):
    """Async persistence operations consumed by the pipeline and lifecycle services."""

    async def add_vendor(self, vendor: Vendor) -> Vendor: ...

    async def get_vendor(self, vendor_id: str, include_deleted: bool = False) -> Vendor: ...

    async def list_vendors(self, include_deleted: bool = False) -> list[Vendor]: ...

    async def save_vendor(self, vendor: Vendor) -> Vendor: ...

    async def increment_vendor_metrics(
        self, vendor_id: str, invoices: int, discrepancies: float, savings: float
    ) -> Vendor: ...

    async def add_contract(self, contract: Contract) -> Contract: ...

    async def get_contract(self, contract_id: str, include_deleted: bool = False) -> Contract: ...

    async def save_contract(self, contract: Contract) -> Contract: ...

    async def list_contracts(
        self, vendor_id: str | None = None, status: ContractStatus | None = None
    ) -> list[Contract]: ...

    async def find_active_contract(self, vendor_id: str) -> Contract | None: ...

    async def add_invoice(self, invoice: Invoice) -> Invoice: ...

    async def get_invoice(self, invoice_id: str, include_deleted: bool = False) -> Invoice: ...

    async def save_invoice(self, invoice: Invoice) -> Invoice: ...

    async def list_invoices(
        self, vendor_id: str | None = None, status: InvoiceStatus | None = None
    ) -> list[Invoice]: ...

    async def add_report(self, report: ReconciliationReport) -> ReconciliationReport: ...

    async def get_report_for_invoice(self, invoice_id: str) -> ReconciliationReport | None: ...


class InMemoryRepository:
    """Dictionary-backed repository."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._vendors: dict[str, Vendor] = {}
        self._contracts: dict[str, Contract] = {}
        self._invoices: dict[str, Invoice] = {}
        self._reports: dict[str, ReconciliationReport] = {}  # keyed by invoice id

    # --- Vendors ----------------------------------------------------------

    async def add_vendor(self, vendor: Vendor) -> Vendor:
        async with self._lock:
            if any(v.canonical_name == vendor.canonical_name for v in self._vendors.values()):
                raise ConflictError(f"Vendor with canonical name '{vendor.canonical_name}' exists")
            self._vendors[vendor.id] = vendor.model_copy(deep=True)
            return vendor.model_copy(deep=True)

    def _vendor(self, vendor_id: str, include_deleted: bool = False) -> Vendor:
        vendor = self._vendors.get(vendor_id)
        if vendor is None or (vendor.is_deleted and not include_deleted):
            raise NotFoundError(f"Vendor {vendor_id} not found")
        return vendor

    async def get_vendor(self, vendor_id: str, include_deleted: bool = False) -> Vendor:
        async with self._lock:
            return self._vendor(vendor_id, include_deleted).model_copy(deep=True)

    async def list_vendors(self, include_deleted: bool = False) -> list[Vendor]:
        async with self._lock:
            return [
                v.model_copy(deep=True)
                for v in self._vendors.values()
                if include_deleted or not v.is_deleted
            ]

    async def save_vendor(self, vendor: Vendor) -> Vendor:
        async with self._lock:
            self._vendor(vendor.id, include_deleted=True)
            if any(
                v.canonical_name == vendor.canonical_name and v.id != vendor.id
                for v in self._vendors.values()
            ):
                raise ConflictError(f"Vendor with canonical name '{vendor.canonical_name}' exists")
            vendor.updated_at = utcnow()
            self._vendors[vendor.id] = vendor.model_copy(deep=True)
            return vendor.model_copy(deep=True)

    async def increment_vendor_metrics(
        self, vendor_id: str, invoices: int, discrepancies: float, savings: float
    ) -> Vendor:
        async with self._lock:
            vendor = self._vendor(vendor_id, include_deleted=True)
            vendor.total_invoices += invoices
            vendor.total_discrepancies += discrepancies
            vendor.total_savings += savings
            vendor.updated_at = utcnow()
            return vendor.model_copy(deep=True)

    # --- Contracts --------------------------------------------------------

    def _contract(self, contract_id: str, include_deleted: bool = False) -> Contract:
        contract = self._contracts.get(contract_id)
        if contract is None or (contract.is_deleted and not include_deleted):
            raise NotFoundError(f"Contract {contract_id} not found")
        return contract

    def _store_contract(self, contract: Contract) -> Contract:
        if contract.status == ContractStatus.ACTIVE:
            for other in self._contracts.values():
                if (
                    other.id != contract.id
                    and other.vendor_id == contract.vendor_id
                    and other.status == ContractStatus.ACTIVE
                ):
                    other.transition_to(ContractStatus.INACTIVE)
                    logger.info(f"Deactivated contract {other.id} for vendor {other.vendor_id}")
        contract.updated_at = utcnow()
        self._contracts[contract.id] = contract.model_copy(deep=True)
        return contract.model_copy(deep=True)

    async def add_contract(self, contract: Contract) -> Contract:
        async with self._lock:
            self._vendor(contract.vendor_id)
            if contract.id in self._contracts:
                raise ConflictError(f"Contract {contract.id} already exists")
            return self._store_contract(contract)

    async def get_contract(self, contract_id: str, include_deleted: bool = False) -> Contract:
        async with self._lock:
            return self._contract(contract_id, include_deleted).model_copy(deep=True)

    async def save_contract(self, contract: Contract) -> Contract:
        """Persist a contract; an active contract replaces the vendor's previous one."""
        async with self._lock:
            self._contract(contract.id, include_deleted=True)
            return self._store_contract(contract)

    async def list_contracts(
        self, vendor_id: str | None = None, status: ContractStatus | None = None
    ) -> list[Contract]:
        async with self._lock:
            return [
                c.model_copy(deep=True)
                for c in self._contracts.values()
                if not c.is_deleted
                and (vendor_id is None or c.vendor_id == vendor_id)
                and (status is None or c.status == status)
            ]

    async def find_active_contract(self, vendor_id: str) -> Contract | None:
        async with self._lock:
            for contract in self._contracts.values():
                if (
                    contract.vendor_id == vendor_id
                    and contract.status == ContractStatus.ACTIVE
                    and not contract.is_deleted
                ):
                    return contract.model_copy(deep=True)
            return None

    # --- Invoices ---------------------------------------------------------

    def _invoice(self, invoice_id: str, include_deleted: bool = False) -> Invoice:
        invoice = self._invoices.get(invoice_id)
        if invoice is None or (invoice.is_deleted and not include_deleted):
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def _check_invoice_number(self, invoice: Invoice) -> None:
        if any(
            i.invoice_number == invoice.invoice_number and i.id != invoice.id
            for i in self._invoices.values()
        ):
            raise ConflictError(f"Invoice number '{invoice.invoice_number}' already exists")

    async def add_invoice(self, invoice: Invoice) -> Invoice:
        async with self._lock:
            self._vendor(invoice.vendor_id)
            if invoice.id in self._invoices:
                raise ConflictError(f"Invoice {invoice.id} already exists")
            self._check_invoice_number(invoice)
            self._invoices[invoice.id] = invoice.model_copy(deep=True)
            return invoice.model_copy(deep=True)

    async def get_invoice(self, invoice_id: str, include_deleted: bool = False) -> Invoice:
        async with self._lock:
            return self._invoice(invoice_id, include_deleted).model_copy(deep=True)

    async def save_invoice(self, invoice: Invoice) -> Invoice:
        async with self._lock:
            self._invoice(invoice.id, include_deleted=True)
            self._check_invoice_number(invoice)
            invoice.updated_at = utcnow()
            self._invoices[invoice.id] = invoice.model_copy(deep=True)
            return invoice.model_copy(deep=True)

    async def list_invoices(
        self, vendor_id: str | None = None, status: InvoiceStatus | None = None
    ) -> list[Invoice]:
        async with self._lock:
            return [
                i.model_copy(deep=True)
                for i in self._invoices.values()
                if not i.is_deleted
                and (vendor_id is None or i.vendor_id == vendor_id)
                and (status is None or i.status == status)
            ]

    # --- Reports ----------------------------------------------------------

    async def add_report(self, report: ReconciliationReport) -> ReconciliationReport:
        async with self._lock:
            self._invoice(report.invoice_id, include_deleted=True)
            if report.invoice_id in self._reports:
                raise ConflictError(f"Invoice {report.invoice_id} already has a reconciliation report")
            self._reports[report.invoice_id] = report.model_copy(deep=True)
            return report.model_copy(deep=True)

    async def get_report_for_invoice(self, invoice_id: str) -> ReconciliationReport | None:
        async with self._lock:
            report = self._reports.get(invoice_id)
            return report.model_copy(deep=True) if report else None
