"""Unit tests for the contract and invoice pipelines.

The blob store is a temporary directory, the repository is in-memory, text
extraction returns the stored bytes as text and the AI provider is scripted.
"""

import asyncio
import time
from datetime import date
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import REGISTRY

from services.domain.models import Cap, Contract, ContractTerms, Invoice, Rate, Vendor
from services.domain.status import ContractStatus, InvoiceStatus
from services.extraction.schema import CONTRACT_SYSTEM_PROMPT
from services.extraction.service import StructuredExtractionEngine
from services.ingestion.redaction import EMAIL_PLACEHOLDER
from services.ingestion.text_extractor import TextExtractionResult, hash_text
from services.persistence.repository import InMemoryRepository
from services.queue.pipelines import DocumentPipeline
from services.reconciliation.engine import ReconciliationEngine
from services.shared.config import Settings
from services.storage.service import LocalBlobStore

CONTRACT_TEXT = "Master services agreement with Acme Corp. Contact legal@acme.com for notices."
INVOICE_TEXT = "Invoice INV-2024-001 from Acme Corp."

CONTRACT_PAYLOAD: dict[str, Any] = {
    "vendorName": "Acme Corp",
    "businessDescription": "IT consulting",
    "effectiveDate": "2024-01-01",
    "duration": "12 months",
    "terms": {
        "rates": [{"description": "Consulting", "rate": 95, "unit": "hour"}],
        "caps": [{"type": "monthly", "amount": 10000}],
        "paymentTerms": {"netDays": 30},
    },
    "confidence": 0.93,
}

INVOICE_PAYLOAD: dict[str, Any] = {
    "vendorName": "Acme Corp",
    "invoiceNumber": "INV-2024-001",
    "invoiceDate": "2024-03-01",
    "dueDate": "2024-03-31",
    "totalAmount": 5000,
    "subtotal": 5000,
    "lineItems": [
        {"description": "Consulting", "quantity": 40, "rate": 125, "unit": "hour", "total": 5000}
    ],
}


class EchoTextExtractor:
    """Treats stored bytes as the document text."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    def extract(self, data: bytes) -> TextExtractionResult:
        if self.delay:
            time.sleep(self.delay)
        return TextExtractionResult(text=data.decode(), method="pdfplumber", page_count=1, confidence=0.9)


@pytest.fixture
def settings() -> Settings:
    return Settings(ai_provider="disabled", external_call_timeout_seconds=5)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path)


@pytest.fixture
def pipeline(
    settings: Settings,
    repository: InMemoryRepository,
    blob_store: LocalBlobStore,
    fake_provider: Any,
) -> DocumentPipeline:
    def handler(system: str, text: str) -> dict[str, Any]:
        return CONTRACT_PAYLOAD if system == CONTRACT_SYSTEM_PROMPT else INVOICE_PAYLOAD

    fake_provider.json_handler = handler
    return DocumentPipeline(
        settings=settings,
        repository=repository,
        blob_store=blob_store,
        text_extractor=EchoTextExtractor(),  # type: ignore[arg-type]
        extraction_engine=StructuredExtractionEngine(fake_provider, settings),
        reconciliation_engine=ReconciliationEngine(fake_provider, settings),
    )


@pytest_asyncio.fixture
async def vendor(repository: InMemoryRepository) -> Vendor:
    return await repository.add_vendor(Vendor(name="Acme Corp", canonical_name="acmecorp"))


async def upload_contract(
    repository: InMemoryRepository, blob_store: LocalBlobStore, vendor: Vendor, text: str = CONTRACT_TEXT
) -> Contract:
    blob = await blob_store.put(text.encode(), "contract.pdf", "application/pdf", "contracts")
    return await repository.add_contract(
        Contract(vendor_id=vendor.id, file_key=blob.key, file_name="contract.pdf")
    )


async def upload_invoice(
    repository: InMemoryRepository, blob_store: LocalBlobStore, vendor: Vendor
) -> Invoice:
    blob = await blob_store.put(INVOICE_TEXT.encode(), "invoice.pdf", "application/pdf", "invoices")
    return await repository.add_invoice(
        Invoice(vendor_id=vendor.id, file_key=blob.key, file_name="invoice.pdf", invoice_number="TEMP-1")
    )


async def add_active_contract(repository: InMemoryRepository, vendor: Vendor, **terms: Any) -> Contract:
    return await repository.add_contract(
        Contract(
            vendor_id=vendor.id,
            file_key="contracts/existing.pdf",
            file_name="existing.pdf",
            status=ContractStatus.ACTIVE,
            effective_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31),
            terms=ContractTerms(**terms),
        )
    )


class TestContractPipeline:
    """Test contract processing."""

    @pytest.mark.asyncio
    async def test_high_confidence_contract_activated(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        contract = await upload_contract(repository, blob_store, vendor)

        outcome = await pipeline.process_contract(contract.id)

        assert outcome.success is True
        assert outcome.status == "active"
        stored = await repository.get_contract(contract.id)
        assert stored.status == ContractStatus.ACTIVE
        assert stored.effective_date == date(2024, 1, 1)
        assert stored.end_date == date(2025, 1, 1)
        assert stored.renewal_date == date(2024, 12, 2)
        assert stored.terms.rates[0].rate == 95
        assert stored.metadata.ai_model == "fake-model"
        assert stored.metadata.confidence == 0.93
        assert stored.metadata.extraction_method == "pdfplumber"
        assert stored.metadata.text_hash == hash_text(CONTRACT_TEXT)

    @pytest.mark.asyncio
    async def test_text_redacted_before_ai(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        contract = await upload_contract(repository, blob_store, vendor)

        await pipeline.process_contract(contract.id)

        assert "legal@acme.com" not in fake_provider.completion_calls[0]
        assert EMAIL_PLACEHOLDER in fake_provider.completion_calls[0]
        stored = await repository.get_contract(contract.id)
        assert stored.extracted_text is not None
        assert EMAIL_PLACEHOLDER in stored.extracted_text

    @pytest.mark.asyncio
    async def test_vendor_description_backfilled(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        contract = await upload_contract(repository, blob_store, vendor)
        await pipeline.process_contract(contract.id)

        assert (await repository.get_vendor(vendor.id)).business_description == "IT consulting"

    @pytest.mark.asyncio
    async def test_low_confidence_needs_review(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        fake_provider.json_handler = lambda system, text: {**CONTRACT_PAYLOAD, "confidence": 0.6}
        contract = await upload_contract(repository, blob_store, vendor)

        outcome = await pipeline.process_contract(contract.id)

        assert outcome.success is True
        assert outcome.status == "needs_review"
        assert await repository.find_active_contract(vendor.id) is None

    @pytest.mark.asyncio
    async def test_new_active_contract_replaces_previous(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        previous = await add_active_contract(repository, vendor)
        contract = await upload_contract(repository, blob_store, vendor)

        await pipeline.process_contract(contract.id)

        assert (await repository.get_contract(previous.id)).status == ContractStatus.INACTIVE
        active = await repository.find_active_contract(vendor.id)
        assert active is not None
        assert active.id == contract.id

    @pytest.mark.asyncio
    async def test_ai_failure_sends_contract_to_review(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        fake_provider.json_handler = None
        contract = await upload_contract(repository, blob_store, vendor)

        outcome = await pipeline.process_contract(contract.id)

        assert outcome.success is False
        assert outcome.status == "needs_review"
        assert outcome.error is not None
        stored = await repository.get_contract(contract.id)
        assert stored.metadata.error == outcome.error
        assert stored.metadata.processing_time_ms is not None

    @pytest.mark.asyncio
    async def test_invalid_effective_date_fails(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        fake_provider.json_handler = lambda system, text: {**CONTRACT_PAYLOAD, "effectiveDate": "TBD"}
        contract = await upload_contract(repository, blob_store, vendor)

        outcome = await pipeline.process_contract(contract.id)

        assert outcome.success is False
        assert "effective date" in (outcome.error or "")

    @pytest.mark.asyncio
    async def test_extraction_timeout(
        self,
        settings: Settings,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        fast_timeout = settings.model_copy(update={"external_call_timeout_seconds": 0.05})
        pipeline = DocumentPipeline(
            settings=fast_timeout,
            repository=repository,
            blob_store=blob_store,
            text_extractor=EchoTextExtractor(delay=0.5),  # type: ignore[arg-type]
            extraction_engine=StructuredExtractionEngine(fake_provider, fast_timeout),
            reconciliation_engine=ReconciliationEngine(fake_provider, fast_timeout),
        )
        contract = await upload_contract(repository, blob_store, vendor)

        outcome = await pipeline.process_contract(contract.id)

        assert outcome.success is False
        assert outcome.error == "Text extraction timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_missing_file(
        self, pipeline: DocumentPipeline, repository: InMemoryRepository, vendor: Vendor
    ) -> None:
        contract = await repository.add_contract(
            Contract(vendor_id=vendor.id, file_key="contracts/gone.pdf", file_name="gone.pdf")
        )

        outcome = await pipeline.process_contract(contract.id)

        assert outcome.success is False
        assert "not found" in (outcome.error or "")

    @pytest.mark.asyncio
    async def test_redelivered_job_for_expired_contract_skipped(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        contract = await upload_contract(repository, blob_store, vendor)
        await pipeline.process_contract(contract.id)
        stored = await repository.get_contract(contract.id)
        stored.transition_to(ContractStatus.EXPIRED)
        await repository.save_contract(stored)
        calls = len(fake_provider.completion_calls)

        outcome = await pipeline.process_contract(contract.id)

        assert outcome.success is True
        assert outcome.skipped is True
        assert outcome.status == "expired"
        assert len(fake_provider.completion_calls) == calls
        expired = await repository.get_contract(contract.id)
        assert expired.status == ContractStatus.EXPIRED
        assert expired.metadata.error is None


class TestInvoicePipeline:
    """Test invoice processing and reconciliation."""

    @pytest.mark.asyncio
    async def test_discrepancies_flag_invoice(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        contract = await add_active_contract(repository, vendor, rates=[Rate(description="Consulting", rate=95)])
        invoice = await upload_invoice(repository, blob_store, vendor)

        outcome = await pipeline.process_invoice(invoice.id)

        assert outcome.success is True
        assert outcome.status == "flagged"
        report = await repository.get_report_for_invoice(invoice.id)
        assert report is not None
        assert outcome.report_id == report.id
        assert report.contract_id == contract.id
        assert report.total_discrepancy_amount == pytest.approx(1200.0)
        assert report.metadata["aiModel"] == "fake-model"
        assert report.metadata["confidenceScore"] == 0.8
        assert "processingTimeMs" in report.metadata

        stored = await repository.get_invoice(invoice.id)
        assert stored.invoice_number == "INV-2024-001"
        assert stored.invoice_date == date(2024, 3, 1)
        assert stored.line_items[0].quantity == 40

        updated_vendor = await repository.get_vendor(vendor.id)
        assert updated_vendor.total_invoices == 1
        assert updated_vendor.total_discrepancies == pytest.approx(1200.0)
        assert updated_vendor.total_savings == pytest.approx(1200.0)

    @pytest.mark.asyncio
    async def test_clean_invoice_reconciled(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        await add_active_contract(
            repository, vendor, rates=[Rate(description="Consulting", rate=125)], caps=[Cap(amount=6000)]
        )
        invoice = await upload_invoice(repository, blob_store, vendor)

        outcome = await pipeline.process_invoice(invoice.id)

        assert outcome.status == "reconciled"
        assert (await repository.get_vendor(vendor.id)).total_invoices == 1

    @pytest.mark.asyncio
    async def test_redelivered_job_skipped(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        await add_active_contract(repository, vendor, rates=[Rate(description="Consulting", rate=95)])
        invoice = await upload_invoice(repository, blob_store, vendor)

        first = await pipeline.process_invoice(invoice.id)
        second = await pipeline.process_invoice(invoice.id)

        assert second.skipped is True
        assert second.report_id == first.report_id
        assert (await repository.get_vendor(vendor.id)).total_invoices == 1

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_reconcile_once(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        await add_active_contract(repository, vendor, rates=[Rate(description="Consulting", rate=95)])
        invoice = await upload_invoice(repository, blob_store, vendor)

        outcomes = await asyncio.gather(
            pipeline.process_invoice(invoice.id), pipeline.process_invoice(invoice.id)
        )

        assert all(o.success for o in outcomes)
        assert sorted(o.skipped for o in outcomes) == [False, True]
        assert {o.status for o in outcomes} == {"flagged"}
        report = await repository.get_report_for_invoice(invoice.id)
        assert report is not None
        assert {o.report_id for o in outcomes} == {report.id}

        stored = await repository.get_invoice(invoice.id)
        assert stored.status == InvoiceStatus.FLAGGED
        assert stored.metadata.error is None
        assert (await repository.get_vendor(vendor.id)).total_invoices == 1

        again = await pipeline.process_invoice(invoice.id)
        assert again.skipped is True
        assert again.status == "flagged"

    @pytest.mark.asyncio
    async def test_no_active_contract_flags_without_report(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        invoice = await upload_invoice(repository, blob_store, vendor)

        outcome = await pipeline.process_invoice(invoice.id)

        assert outcome.status == "flagged"
        assert outcome.report_id is None
        assert await repository.get_report_for_invoice(invoice.id) is None
        assert (await repository.get_vendor(vendor.id)).total_invoices == 0

    @pytest.mark.asyncio
    async def test_flagged_invoice_reprocessed_once_contract_active(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        invoice = await upload_invoice(repository, blob_store, vendor)
        await pipeline.process_invoice(invoice.id)
        await add_active_contract(repository, vendor, rates=[Rate(description="Consulting", rate=125)])

        outcome = await pipeline.process_invoice(invoice.id)

        assert outcome.skipped is False
        assert outcome.status == "reconciled"
        assert outcome.report_id is not None

    @pytest.mark.asyncio
    async def test_unparseable_invoice_date_reverts_to_pending(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        fake_provider.json_handler = lambda system, text: {**INVOICE_PAYLOAD, "invoiceDate": "soon"}
        invoice = await upload_invoice(repository, blob_store, vendor)

        outcome = await pipeline.process_invoice(invoice.id)

        assert outcome.success is False
        assert outcome.status == "pending"
        stored = await repository.get_invoice(invoice.id)
        assert stored.invoice_number == "TEMP-1"
        assert stored.metadata.error is not None
        assert "invoice date" in stored.metadata.error

    @pytest.mark.asyncio
    async def test_duplicate_invoice_number_fails(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        await repository.add_invoice(
            Invoice(vendor_id=vendor.id, file_key="k", file_name="old.pdf", invoice_number="INV-2024-001")
        )
        invoice = await upload_invoice(repository, blob_store, vendor)

        outcome = await pipeline.process_invoice(invoice.id)

        assert outcome.success is False
        assert "INV-2024-001" in (outcome.error or "")
        assert (await repository.get_invoice(invoice.id)).invoice_number == "TEMP-1"

    @pytest.mark.asyncio
    async def test_approved_invoice_not_reprocessed(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
        fake_provider: Any,
    ) -> None:
        invoice = await upload_invoice(repository, blob_store, vendor)
        invoice.transition_to(InvoiceStatus.FLAGGED)
        invoice.transition_to(InvoiceStatus.APPROVED)
        await repository.save_invoice(invoice)

        outcome = await pipeline.process_invoice(invoice.id)

        assert outcome.skipped is True
        assert outcome.status == "approved"
        assert fake_provider.completion_calls == []


class TestPipelineMetrics:
    """Test Prometheus counters updated by the pipelines."""

    @pytest.mark.asyncio
    async def test_outcomes_counted(
        self,
        pipeline: DocumentPipeline,
        repository: InMemoryRepository,
        blob_store: LocalBlobStore,
        vendor: Vendor,
    ) -> None:
        def sample(name: str, labels: dict[str, str]) -> float:
            return REGISTRY.get_sample_value(name, labels) or 0.0

        contract_labels = {"document_type": "contract", "outcome": "active"}
        rate_labels = {"type": "rate_overage", "priority": "high"}
        contracts_before = sample("documents_processed_total", contract_labels)
        overages_before = sample("discrepancies_detected_total", rate_labels)

        contract = await upload_contract(repository, blob_store, vendor)
        await pipeline.process_contract(contract.id)
        invoice = await upload_invoice(repository, blob_store, vendor)
        await pipeline.process_invoice(invoice.id)

        assert sample("documents_processed_total", contract_labels) == contracts_before + 1
        assert sample("discrepancies_detected_total", rate_labels) == overages_before + 1
