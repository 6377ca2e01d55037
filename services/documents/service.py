"""Document lifecycle operations.

Uploads store the file, create the document in its initial status and
enqueue its processing job. The remaining operations are explicit status
changes (activate, approve, reject, expire), soft-delete/restore and
read-side views. Pipeline-driven changes live in ``services.queue.pipelines``.
"""

import logging
from datetime import date
from uuid import uuid4

from pydantic import BaseModel

from services.domain.models import (
    Contract,
    Invoice,
    ReconciliationReport,
    Vendor,
    utcnow,
)
from services.domain.status import INVOICE_PROCESSING_STATE, ContractStatus, InvoiceStatus
from services.persistence.repository import Repository
from services.queue.job_queue import PROCESS_CONTRACT, PROCESS_INVOICE, JobQueue
from services.shared.config import Settings
from services.shared.errors import ConflictError, InvalidDocument, NotFoundError
from services.storage.service import BlobStore
from services.vendors.matcher import VendorMatcher

logger = logging.getLogger(__name__)


class UploadReceipt(BaseModel):
    """Identifiers returned when a document is accepted for processing."""

    document_id: str
    job_id: str
    file_key: str


class InvoiceStatusView(BaseModel):
    status: InvoiceStatus
    processing_state: str
    last_updated: str
    job_metadata: dict[str, object]


class VendorStats(BaseModel):
    total_invoices: int
    total_contracts: int  # active contracts
    total_discrepancies: float
    total_savings: float
    average_savings_per_invoice: float


class DocumentService:
    """Caller-facing operations on vendors, contracts and invoices."""

    def __init__(
        self,
        settings: Settings,
        repository: Repository,
        blob_store: BlobStore,
        job_queue: JobQueue,
        matcher: VendorMatcher,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.blob_store = blob_store
        self.job_queue = job_queue
        self.matcher = matcher

    # --- Vendors ----------------------------------------------------------

    async def register_vendor(self, name: str, business_description: str | None = None) -> Vendor:
        """Create a vendor under its canonical name.

        Raises:
            ConflictError: If the name canonicalizes to an existing vendor
            ExtractionServiceFailure: If the embedding service fails
        """
        vendors = await self.repository.list_vendors(include_deleted=True)
        canonical = await self.matcher.canonicalize(name, [v.canonical_name for v in vendors])
        if any(v.canonical_name == canonical for v in vendors):
            raise ConflictError(f"Vendor with canonical name '{canonical}' already exists")

        vendor = await self.repository.add_vendor(
            Vendor(name=name.strip(), canonical_name=canonical, business_description=business_description)
        )
        logger.info(f"Registered vendor {vendor.id} as '{canonical}'")
        return vendor

    async def find_vendor_for_invoice(self, vendor_name: str) -> str | None:
        """Route an invoice's vendor name to a known active vendor id."""
        vendors = [v for v in await self.repository.list_vendors() if v.active]
        return await self.matcher.match_vendor(vendor_name, vendors)

    async def soft_delete_vendor(self, vendor_id: str) -> Vendor:
        vendor = await self.repository.get_vendor(vendor_id)
        vendor.deleted_at = utcnow()
        vendor.active = False
        return await self.repository.save_vendor(vendor)

    async def restore_vendor(self, vendor_id: str) -> Vendor:
        vendor = await self.repository.get_vendor(vendor_id, include_deleted=True)
        vendor.deleted_at = None
        vendor.active = True
        return await self.repository.save_vendor(vendor)

    async def vendor_stats(self, vendor_id: str) -> VendorStats:
        vendor = await self.repository.get_vendor(vendor_id)
        active = await self.repository.list_contracts(vendor_id, ContractStatus.ACTIVE)
        average = vendor.total_savings / vendor.total_invoices if vendor.total_invoices else 0.0
        return VendorStats(
            total_invoices=vendor.total_invoices,
            total_contracts=len(active),
            total_discrepancies=vendor.total_discrepancies,
            total_savings=vendor.total_savings,
            average_savings_per_invoice=average,
        )

    # --- Uploads ----------------------------------------------------------

    def _check_size(self, data: bytes) -> None:
        if not data:
            raise InvalidDocument("Uploaded file is empty")
        if len(data) > self.settings.max_document_size_bytes:
            raise InvalidDocument(
                f"File size exceeds maximum limit of {self.settings.max_document_size_bytes} bytes"
            )

    async def upload_contract(
        self, vendor_id: str, data: bytes, file_name: str, mime_type: str = "application/pdf"
    ) -> UploadReceipt:
        """Store a contract PDF and schedule its processing.

        Raises:
            InvalidDocument: If the file is empty or too large
            NotFoundError: If the vendor does not exist
        """
        self._check_size(data)
        await self.repository.get_vendor(vendor_id)

        blob = await self.blob_store.put(data, file_name, mime_type, "contracts")
        contract = await self.repository.add_contract(
            Contract(vendor_id=vendor_id, file_key=blob.key, file_name=file_name, file_url=blob.url)
        )
        job_id = await self.job_queue.enqueue(
            PROCESS_CONTRACT, {"contract_id": contract.id, "file_key": blob.key}
        )
        logger.info(f"Contract {contract.id} uploaded for vendor {vendor_id} (job {job_id})")
        return UploadReceipt(document_id=contract.id, job_id=job_id, file_key=blob.key)

    async def upload_invoice(
        self, vendor_id: str, data: bytes, file_name: str, mime_type: str = "application/pdf"
    ) -> UploadReceipt:
        """Store an invoice PDF and schedule its processing.

        The invoice carries a temporary number until its job parses the real one.

        Raises:
            InvalidDocument: If the file is empty or too large
            NotFoundError: If the vendor does not exist
        """
        self._check_size(data)
        await self.repository.get_vendor(vendor_id)

        blob = await self.blob_store.put(data, file_name, mime_type, "invoices")
        invoice = await self.repository.add_invoice(
            Invoice(
                vendor_id=vendor_id,
                file_key=blob.key,
                file_name=file_name,
                file_url=blob.url,
                invoice_number=f"TEMP-{uuid4().hex}",
            )
        )
        job_id = await self.job_queue.enqueue(
            PROCESS_INVOICE, {"invoice_id": invoice.id, "file_key": blob.key}
        )
        logger.info(f"Invoice {invoice.id} uploaded for vendor {vendor_id} (job {job_id})")
        return UploadReceipt(document_id=invoice.id, job_id=job_id, file_key=blob.key)

    # --- Contracts --------------------------------------------------------

    async def activate_contract(self, contract_id: str) -> Contract:
        """Make a contract the vendor's active one, deactivating any other."""
        contract = await self.repository.get_contract(contract_id)
        contract.transition_to(ContractStatus.ACTIVE)
        return await self.repository.save_contract(contract)

    async def deactivate_contract(self, contract_id: str) -> Contract:
        contract = await self.repository.get_contract(contract_id)
        contract.transition_to(ContractStatus.INACTIVE)
        return await self.repository.save_contract(contract)

    async def soft_delete_contract(self, contract_id: str) -> Contract:
        contract = await self.repository.get_contract(contract_id)
        contract.mark_deleted()
        return await self.repository.save_contract(contract)

    async def restore_contract(self, contract_id: str) -> Contract:
        """Clear a contract's tombstone.

        Restoring an active contract makes it the vendor's active contract again.
        """
        contract = await self.repository.get_contract(contract_id, include_deleted=True)
        contract.restore()
        return await self.repository.save_contract(contract)

    async def expire_contracts(self, today: date | None = None) -> list[str]:
        """Flip active contracts whose end date has passed to expired.

        Returns:
            Ids of the contracts that expired
        """
        today = today or utcnow().date()
        expired: list[str] = []
        for contract in await self.repository.list_contracts(status=ContractStatus.ACTIVE):
            if contract.end_date is not None and contract.end_date < today:
                contract.transition_to(ContractStatus.EXPIRED)
                await self.repository.save_contract(contract)
                expired.append(contract.id)
        if expired:
            logger.info(f"Expired {len(expired)} contracts ending before {today.isoformat()}")
        return expired

    # --- Invoices ---------------------------------------------------------

    async def approve_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id)
        invoice.transition_to(InvoiceStatus.APPROVED)
        return await self.repository.save_invoice(invoice)

    async def reject_invoice(self, invoice_id: str, reason: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id)
        invoice.transition_to(InvoiceStatus.REJECTED)
        invoice.metadata.rejection_reason = reason
        return await self.repository.save_invoice(invoice)

    async def soft_delete_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id)
        invoice.mark_deleted()
        return await self.repository.save_invoice(invoice)

    async def restore_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id, include_deleted=True)
        invoice.restore()
        return await self.repository.save_invoice(invoice)

    async def get_invoice_status(self, invoice_id: str) -> InvoiceStatusView:
        invoice = await self.repository.get_invoice(invoice_id)
        return InvoiceStatusView(
            status=invoice.status,
            processing_state=INVOICE_PROCESSING_STATE[invoice.status],
            last_updated=invoice.updated_at.isoformat(),
            job_metadata=invoice.metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    async def get_reconciliation_report(self, invoice_id: str) -> ReconciliationReport:
        """Raises NotFoundError if the invoice has not been reconciled."""
        await self.repository.get_invoice(invoice_id)
        report = await self.repository.get_report_for_invoice(invoice_id)
        if report is None:
            raise NotFoundError(f"Reconciliation report for invoice {invoice_id} not found")
        return report
