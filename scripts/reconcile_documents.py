#!/usr/bin/env python3
"""Reconcile one invoice PDF against one contract PDF locally.

Runs the full pipeline in-process (local blob store, in-memory repository,
in-process job queue) with the configured AI provider and prints the
reconciliation report as JSON.

Usage:
    python scripts/reconcile_documents.py --vendor "Acme Corp" \\
        --contract contract.pdf --invoice invoice.pdf

Requirements:
    - APP_AI_PROVIDER / OPENAI_API_KEY (or a running Ollama) configured
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from services.domain.status import ContractStatus
from services.persistence.repository import InMemoryRepository
from services.queue.job_queue import PROCESS_CONTRACT, PROCESS_INVOICE, InProcessJobQueue
from services.queue.tasks import build_document_service, build_pipeline
from services.shared.config import get_settings
from services.shared.errors import NotFoundError
from services.storage.service import LocalBlobStore

logger = logging.getLogger(__name__)


async def reconcile(vendor: str, contract_path: Path, invoice_path: Path, activate: bool) -> int:
    settings = get_settings()
    repository = InMemoryRepository()
    blob_store = LocalBlobStore(settings.storage_local_path)

    pipeline = build_pipeline(settings, repository, blob_store)
    queue = InProcessJobQueue(
        {
            PROCESS_CONTRACT: pipeline.process_contract,
            PROCESS_INVOICE: pipeline.process_invoice,
        },
        max_jobs=settings.queue_max_jobs,
    )
    documents = build_document_service(settings, repository, blob_store, queue)

    registered = await documents.register_vendor(vendor)
    logger.info(f"Vendor registered as '{registered.canonical_name}'")

    receipt = await documents.upload_contract(
        registered.id, contract_path.read_bytes(), contract_path.name
    )
    contract_outcome = await queue.result(receipt.job_id)
    print(f"Contract {receipt.document_id}: {contract_outcome.status}", file=sys.stderr)
    if contract_outcome.status == ContractStatus.NEEDS_REVIEW and activate:
        await documents.activate_contract(receipt.document_id)
        print("Contract activated despite review status (--activate)", file=sys.stderr)

    receipt = await documents.upload_invoice(
        registered.id, invoice_path.read_bytes(), invoice_path.name
    )
    invoice_outcome = await queue.result(receipt.job_id)
    print(f"Invoice {receipt.document_id}: {invoice_outcome.status}", file=sys.stderr)

    try:
        report = await documents.get_reconciliation_report(receipt.document_id)
    except NotFoundError:
        print(json.dumps(invoice_outcome.model_dump(), indent=2))
        return 1

    print(json.dumps(report.model_dump(mode="json", by_alias=True), indent=2))
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reconcile an invoice against a contract")
    parser.add_argument("--vendor", required=True, help="Vendor name")
    parser.add_argument("--contract", type=Path, required=True, help="Contract PDF path")
    parser.add_argument("--invoice", type=Path, required=True, help="Invoice PDF path")
    parser.add_argument(
        "--activate",
        action="store_true",
        help="Activate the contract even if extraction confidence needs review",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, get_settings().log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(reconcile(args.vendor, args.contract, args.invoice, args.activate)))
