"""Async task definitions for contract and invoice processing.

Uses arq (async Redis queue) for background task processing. Worker startup
builds the pipeline collaborators once and shares them through the arq
context; each task delegates to ``DocumentPipeline`` and returns its
``JobOutcome`` as a dict. Pipeline failures are recorded on the document,
so tasks never raise for them and arq does not retry.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings
from arq.cron import CronJob

from services.ai.factory import create_ai_provider
from services.documents.service import DocumentService
from services.extraction.service import StructuredExtractionEngine
from services.ingestion.text_extractor import TextExtractor
from services.persistence.repository import InMemoryRepository, Repository
from services.queue.job_queue import ArqJobQueue, JobQueue, redis_settings_from_url
from services.queue.pipelines import DocumentPipeline
from services.reconciliation.engine import ReconciliationEngine
from services.shared.config import Settings, get_settings
from services.storage.service import BlobStore, create_blob_store
from services.vendors.matcher import VendorMatcher

logger = logging.getLogger(__name__)


def build_pipeline(
    settings: Settings,
    repository: Repository,
    blob_store: BlobStore,
    text_extractor: TextExtractor | None = None,
) -> DocumentPipeline:
    """Wire a pipeline around the configured AI provider."""
    provider = create_ai_provider(settings)
    return DocumentPipeline(
        settings=settings,
        repository=repository,
        blob_store=blob_store,
        text_extractor=text_extractor or TextExtractor(settings),
        extraction_engine=StructuredExtractionEngine(provider, settings),
        reconciliation_engine=ReconciliationEngine(provider, settings),
    )


def build_document_service(
    settings: Settings,
    repository: Repository,
    blob_store: BlobStore,
    job_queue: JobQueue,
) -> DocumentService:
    matcher = VendorMatcher(create_ai_provider(settings), settings)
    return DocumentService(settings, repository, blob_store, job_queue, matcher)


async def process_contract(
    ctx: dict[str, Any], contract_id: str, file_key: str | None = None
) -> dict[str, Any]:
    """Extract terms from an uploaded contract.

    Args:
        ctx: arq context (contains the shared pipeline)
        contract_id: Contract to process
        file_key: Blob key of the uploaded PDF (defaults to the contract's own)

    Returns:
        JobOutcome as dict
    """
    pipeline: DocumentPipeline = ctx["pipeline"]
    logger.info(f"Processing contract job {ctx.get('job_id')} for contract {contract_id}")
    outcome = await pipeline.process_contract(contract_id, file_key)
    return outcome.model_dump()


async def process_invoice(
    ctx: dict[str, Any], invoice_id: str, file_key: str | None = None
) -> dict[str, Any]:
    """Parse and reconcile an uploaded invoice.

    Returns:
        JobOutcome as dict
    """
    pipeline: DocumentPipeline = ctx["pipeline"]
    logger.info(f"Processing invoice job {ctx.get('job_id')} for invoice {invoice_id}")
    outcome = await pipeline.process_invoice(invoice_id, file_key)
    return outcome.model_dump()


async def expire_contracts(ctx: dict[str, Any]) -> list[str]:
    """Daily sweep moving contracts past their end date to expired."""
    documents: DocumentService = ctx["documents"]
    return await documents.expire_contracts()


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Called once when the worker starts so jobs share one repository,
    blob store and AI provider. Persistence is not built in: inject a shared
    ``Repository`` as ``ctx["repository"]``, otherwise each worker process
    keeps its own in-memory store.
    """
    logger.info("Initializing worker services...")
    settings: Settings = ctx.get("settings") or get_settings()
    repository: Repository | None = ctx.get("repository")
    if repository is None:
        logger.warning(
            "No repository injected; using a process-local in-memory repository. "
            "Jobs will only see documents created by this worker process."
        )
        repository = InMemoryRepository()
    blob_store = ctx.get("blob_store") or create_blob_store(settings)

    ctx["settings"] = settings
    ctx["repository"] = repository
    ctx["blob_store"] = blob_store
    ctx["pipeline"] = build_pipeline(settings, repository, blob_store)
    ctx["documents"] = build_document_service(
        settings, repository, blob_store, ArqJobQueue(ctx["redis"])
    )
    logger.info(
        f"Worker services initialized (ai={settings.ai_provider}, storage={settings.storage_backend})"
    )


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")


def build_cron_jobs(settings: Settings) -> list[CronJob]:
    return [cron(expire_contracts, hour={settings.expiration_sweep_hour}, minute={0})]


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Daily contract expiration sweep
    - Redis connection settings
    - Job timeout settings
    """

    functions = [process_contract, process_invoice]
    cron_jobs = build_cron_jobs(get_settings())
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300
    max_tries = 1

    @classmethod
    def get_redis_settings(cls) -> RedisSettings:
        """Get Redis settings from configuration."""
        return redis_settings_from_url(get_settings().redis_url)
