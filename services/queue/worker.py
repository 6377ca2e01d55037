"""arq worker runner.

Run with: python -m services.queue.worker
Or: arq services.queue.tasks.WorkerSettings

This module configures and runs the contract and invoice worker.

The worker has no persistent repository of its own. Started this way it
uses a process-local in-memory repository, so it only sees contracts and
invoices created inside the same process. Embed the worker and inject a
shared ``Repository`` through the arq context to process documents created
elsewhere.
"""

import logging

from arq import run_worker
from prometheus_client import start_http_server

from services.queue.tasks import WorkerSettings, build_cron_jobs
from services.shared.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")
    logger.info(f"Expiration sweep at {settings.expiration_sweep_hour:02d}:00 UTC")

    # Update worker settings from config
    WorkerSettings.redis_settings = WorkerSettings.get_redis_settings()
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout
    WorkerSettings.cron_jobs = build_cron_jobs(settings)

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Serving Prometheus metrics on port {settings.metrics_port}")

    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
