"""Contract and invoice processing pipelines.

Each job runs its stages strictly in sequence:

    fetch file -> extract text -> redact -> structured extraction
        contracts: derive dates -> confidence-gated status -> backfill vendor description
        invoices:  active contract lookup -> reconcile -> report -> status -> vendor metrics

Every external call is bounded by ``external_call_timeout_seconds``. Any
failure is caught at the job boundary: the document goes back to its
review-pending status with the error and processing time recorded in its
metadata, and the job is not retried.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable
from typing import Literal, TypeVar

from pydantic import BaseModel

from services.domain.models import DocumentMetadata, Invoice
from services.domain.status import ContractStatus, InvoiceStatus, can_transition
from services.extraction.schema import InvoiceParseResult
from services.extraction.service import StructuredExtractionEngine, derive_contract_dates, parse_date
from services.ingestion.redaction import redact
from services.ingestion.text_extractor import TextExtractionResult, TextExtractor, hash_text
from services.persistence.repository import Repository
from services.queue import metrics
from services.reconciliation.engine import ReconciliationEngine
from services.shared.config import Settings
from services.shared.errors import (
    ConflictError,
    ExtractionFailure,
    ExtractionServiceFailure,
    PipelineError,
    SchemaValidationFailure,
)
from services.storage.service import BlobStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobOutcome(BaseModel):
    """Result of one pipeline job.

    Attributes:
        document_id: Contract or invoice id
        document_type: "contract" or "invoice"
        status: Document status after the job
        success: False if the job failed and the document was sent back for review
        skipped: True if a redelivered job found the work already done
        processing_time_ms: Wall-clock job duration
        error: Failure message (if failed)
        report_id: Reconciliation report created by an invoice job
    """

    document_id: str
    document_type: Literal["contract", "invoice"]
    status: str
    success: bool
    skipped: bool = False
    processing_time_ms: int = 0
    error: str | None = None
    report_id: str | None = None


class DocumentPipeline:
    """Runs contract and invoice processing jobs."""

    def __init__(
        self,
        settings: Settings,
        repository: Repository,
        blob_store: BlobStore,
        text_extractor: TextExtractor,
        extraction_engine: StructuredExtractionEngine,
        reconciliation_engine: ReconciliationEngine,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.blob_store = blob_store
        self.text_extractor = text_extractor
        self.extraction_engine = extraction_engine
        self.reconciliation_engine = reconciliation_engine
        self.timeout = settings.external_call_timeout_seconds

    @property
    def ai_model(self) -> str:
        return self.extraction_engine.provider.model_name

    async def _bounded(
        self, awaitable: Awaitable[T], failure: type[PipelineError], operation: str
    ) -> T:
        """Await an external call, converting timeout expiry into ``failure``."""
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except TimeoutError as e:
            raise failure(f"{operation} timed out after {self.timeout:g}s") from e

    async def _read_document(self, file_key: str) -> tuple[TextExtractionResult, str]:
        """Fetch, extract and redact a stored document."""
        data = await self._bounded(
            self.blob_store.get(file_key), ExtractionServiceFailure, "File fetch"
        )
        extraction = await self._bounded(
            asyncio.to_thread(self.text_extractor.extract, data),
            ExtractionFailure,
            "Text extraction",
        )
        metrics.text_extraction_total.labels(method=extraction.method).inc()
        logger.info(
            f"Extracted {extraction.page_count} pages from {file_key} using {extraction.method} "
            f"(confidence {extraction.confidence:.2f})"
        )
        return extraction, redact(extraction.text)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    # --- Contracts --------------------------------------------------------

    async def process_contract(self, contract_id: str, file_key: str | None = None) -> JobOutcome:
        """Extract a contract's terms and assign its status.

        A redelivered job re-extracts and re-applies status, except for an
        expired contract, which is left as it is.
        """
        started = time.perf_counter()
        logger.info(f"Processing contract {contract_id}")

        try:
            contract = await self.repository.get_contract(contract_id)
            if contract.status == ContractStatus.EXPIRED:
                logger.info(f"Contract {contract_id} already expired; skipping redelivered job")
                return JobOutcome(
                    document_id=contract_id,
                    document_type="contract",
                    status=contract.status.value,
                    success=True,
                    skipped=True,
                    processing_time_ms=self._elapsed_ms(started),
                )
            extraction, text = await self._read_document(file_key or contract.file_key)

            result = await self._bounded(
                self.extraction_engine.extract_contract(text),
                ExtractionServiceFailure,
                "Contract extraction",
            )
            logger.info(f"AI extraction completed with confidence: {result.confidence:.2f}")
            dates = derive_contract_dates(result)

            contract.effective_date = dates.effective_date
            contract.renewal_date = dates.renewal_date
            contract.end_date = dates.end_date
            contract.terms = result.terms
            contract.extracted_text = text
            contract.metadata = DocumentMetadata(
                extraction_method=extraction.method,
                extraction_confidence=extraction.confidence,
                confidence=result.confidence,
                ai_model=self.ai_model,
                page_count=extraction.page_count,
                text_hash=hash_text(extraction.text),
                clause_spans=result.clause_spans,
                processing_time_ms=self._elapsed_ms(started),
            )

            if result.confidence < self.settings.contract_confidence_threshold:
                logger.warning(
                    f"Low confidence extraction for contract {contract_id} "
                    f"({result.confidence:.2f}); needs review"
                )
                contract.transition_to(ContractStatus.NEEDS_REVIEW)
            else:
                contract.transition_to(ContractStatus.ACTIVE)

            contract = await self.repository.save_contract(contract)

            vendor = await self.repository.get_vendor(contract.vendor_id, include_deleted=True)
            if result.business_description and not vendor.business_description:
                vendor.business_description = result.business_description
                await self.repository.save_vendor(vendor)
                logger.info(f"Backfilled business description for vendor {vendor.id}")

        except Exception as e:
            logger.exception(f"Failed to process contract {contract_id}: {e}")
            return await self._fail_contract(contract_id, e, started)

        metrics.documents_processed_total.labels(
            document_type="contract", outcome=contract.status.value
        ).inc()
        metrics.pipeline_duration_seconds.labels(document_type="contract").observe(
            time.perf_counter() - started
        )
        logger.info(f"Contract {contract_id} processed with status: {contract.status}")
        return JobOutcome(
            document_id=contract_id,
            document_type="contract",
            status=contract.status.value,
            success=True,
            processing_time_ms=self._elapsed_ms(started),
        )

    async def _fail_contract(self, contract_id: str, error: Exception, started: float) -> JobOutcome:
        elapsed = self._elapsed_ms(started)
        status = ContractStatus.NEEDS_REVIEW.value
        try:
            contract = await self.repository.get_contract(contract_id, include_deleted=True)
            if can_transition(contract.status, ContractStatus.NEEDS_REVIEW):
                contract.transition_to(ContractStatus.NEEDS_REVIEW)
            contract.metadata = DocumentMetadata(error=str(error), processing_time_ms=elapsed)
            contract = await self.repository.save_contract(contract)
            status = contract.status.value
        except Exception:
            logger.exception(f"Could not record failure on contract {contract_id}")

        metrics.documents_processed_total.labels(document_type="contract", outcome="failed").inc()
        return JobOutcome(
            document_id=contract_id,
            document_type="contract",
            status=status,
            success=False,
            processing_time_ms=elapsed,
            error=str(error),
        )

    # --- Invoices ---------------------------------------------------------

    @staticmethod
    def _apply_invoice_fields(invoice: Invoice, parsed: InvoiceParseResult) -> None:
        invoice_date = parse_date(parsed.invoice_date)
        if invoice_date is None:
            raise SchemaValidationFailure(f"Unparseable invoice date: {parsed.invoice_date!r}")
        due_date = parse_date(parsed.due_date)
        if parsed.due_date and due_date is None:
            logger.warning(f"Ignoring unparseable due date: {parsed.due_date!r}")

        invoice.invoice_number = parsed.invoice_number
        invoice.invoice_date = invoice_date
        invoice.due_date = due_date
        invoice.total_amount = parsed.total_amount
        invoice.subtotal = parsed.subtotal
        invoice.tax_amount = parsed.tax_amount
        invoice.line_items = parsed.line_items
        invoice.fees = parsed.fees

    async def process_invoice(self, invoice_id: str, file_key: str | None = None) -> JobOutcome:
        """Parse an invoice and reconcile it against the vendor's active contract.

        A redelivered job for an invoice that already has a reconciliation
        report is skipped, so vendor metrics are incremented once.
        """
        started = time.perf_counter()
        logger.info(f"Processing invoice {invoice_id}")

        try:
            invoice = await self.repository.get_invoice(invoice_id)
            existing = await self.repository.get_report_for_invoice(invoice_id)
            if existing is not None or invoice.status in (
                InvoiceStatus.APPROVED,
                InvoiceStatus.REJECTED,
            ):
                logger.info(f"Invoice {invoice_id} already reconciled; skipping redelivered job")
                return JobOutcome(
                    document_id=invoice_id,
                    document_type="invoice",
                    status=invoice.status.value,
                    success=True,
                    skipped=True,
                    processing_time_ms=self._elapsed_ms(started),
                    report_id=existing.id if existing else None,
                )
            if invoice.status != InvoiceStatus.PENDING:
                # Flagged without a report: reprocess from the start
                invoice.transition_to(InvoiceStatus.PENDING)

            extraction, text = await self._read_document(file_key or invoice.file_key)
            parsed = await self._bounded(
                self.extraction_engine.parse_invoice(text),
                ExtractionServiceFailure,
                "Invoice parsing",
            )
            logger.info(f"AI parsing completed with confidence: {parsed.confidence:.2f}")

            self._apply_invoice_fields(invoice, parsed)
            invoice.extracted_text = text
            invoice.metadata = DocumentMetadata(
                extraction_method=extraction.method,
                extraction_confidence=extraction.confidence,
                confidence=parsed.confidence,
                ai_model=self.ai_model,
                page_count=extraction.page_count,
                text_hash=hash_text(extraction.text),
                processing_time_ms=self._elapsed_ms(started),
            )

            contract = await self.repository.find_active_contract(invoice.vendor_id)
            if contract is None:
                logger.warning(f"No active contract found for vendor {invoice.vendor_id}")
                invoice.transition_to(InvoiceStatus.FLAGGED)
                invoice = await self.repository.save_invoice(invoice)
                return self._invoice_done(invoice, started)

            # Persist parsed fields before reconciling
            invoice = await self.repository.save_invoice(invoice)

            report = await self.reconciliation_engine.reconcile(invoice, contract)
            report.metadata.update(
                {
                    "processingTimeMs": self._elapsed_ms(started),
                    "aiModel": self.ai_model,
                    "confidenceScore": parsed.confidence,
                }
            )
            try:
                report = await self.repository.add_report(report)
            except ConflictError:
                # A concurrent delivery of this job reconciled the invoice first
                return await self._skip_reconciled_invoice(invoice_id, started)

            invoice.transition_to(
                InvoiceStatus.FLAGGED if report.has_discrepancies else InvoiceStatus.RECONCILED
            )
            invoice = await self.repository.save_invoice(invoice)

            amount = report.total_discrepancy_amount
            await self.repository.increment_vendor_metrics(
                invoice.vendor_id, invoices=1, discrepancies=amount, savings=amount
            )
            for d in report.discrepancies:
                metrics.discrepancies_detected_total.labels(
                    type=d.type.value, priority=d.priority.value
                ).inc()

        except Exception as e:
            logger.exception(f"Failed to process invoice {invoice_id}: {e}")
            return await self._fail_invoice(invoice_id, e, started)

        return self._invoice_done(invoice, started, report_id=report.id)

    async def _skip_reconciled_invoice(self, invoice_id: str, started: float) -> JobOutcome:
        existing = await self.repository.get_report_for_invoice(invoice_id)
        invoice = await self.repository.get_invoice(invoice_id, include_deleted=True)
        if existing is not None and invoice.status == InvoiceStatus.PENDING:
            # This job's parsed-field save may have overwritten the final status
            invoice.transition_to(
                InvoiceStatus.FLAGGED if existing.has_discrepancies else InvoiceStatus.RECONCILED
            )
            invoice = await self.repository.save_invoice(invoice)
        logger.info(f"Invoice {invoice_id} reconciled by a concurrent job; skipping")
        return JobOutcome(
            document_id=invoice_id,
            document_type="invoice",
            status=invoice.status.value,
            success=True,
            skipped=True,
            processing_time_ms=self._elapsed_ms(started),
            report_id=existing.id if existing else None,
        )

    def _invoice_done(self, invoice: Invoice, started: float, report_id: str | None = None) -> JobOutcome:
        metrics.documents_processed_total.labels(
            document_type="invoice", outcome=invoice.status.value
        ).inc()
        metrics.pipeline_duration_seconds.labels(document_type="invoice").observe(
            time.perf_counter() - started
        )
        logger.info(f"Invoice {invoice.id} processed with status: {invoice.status}")
        return JobOutcome(
            document_id=invoice.id,
            document_type="invoice",
            status=invoice.status.value,
            success=True,
            processing_time_ms=self._elapsed_ms(started),
            report_id=report_id,
        )

    async def _fail_invoice(self, invoice_id: str, error: Exception, started: float) -> JobOutcome:
        elapsed = self._elapsed_ms(started)
        status = InvoiceStatus.PENDING.value
        try:
            # Reload so partially applied fields (e.g. a conflicting number) are discarded
            invoice = await self.repository.get_invoice(invoice_id, include_deleted=True)
            if can_transition(invoice.status, InvoiceStatus.PENDING):
                invoice.transition_to(InvoiceStatus.PENDING)
            invoice.metadata = DocumentMetadata(error=str(error), processing_time_ms=elapsed)
            invoice = await self.repository.save_invoice(invoice)
            status = invoice.status.value
        except Exception:
            logger.exception(f"Could not record failure on invoice {invoice_id}")

        metrics.documents_processed_total.labels(document_type="invoice", outcome="failed").inc()
        return JobOutcome(
            document_id=invoice_id,
            document_type="invoice",
            status=status,
            success=False,
            processing_time_ms=elapsed,
            error=str(error),
        )
