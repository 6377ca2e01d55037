"""Job queues that hand uploaded documents to the processing pipelines.

- ArqJobQueue: arq (async Redis queue); jobs run in ``services.queue.worker``
- InProcessJobQueue: asyncio tasks bounded by a semaphore, for local runs and tests

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol
from uuid import uuid4

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from services.shared.config import Settings

logger = logging.getLogger(__name__)

PROCESS_CONTRACT = "process_contract"
PROCESS_INVOICE = "process_invoice"

JobHandler = Callable[..., Awaitable[Any]]


class JobQueue(Protocol):
    """Protocol for job queues (at-least-once delivery)."""

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> str:
        """Schedule a job and return its id."""
        ...


def redis_settings_from_url(url: str) -> RedisSettings:
    """Build arq Redis settings from a ``redis://host:port/db`` URL."""
    return RedisSettings.from_dsn(url)


class ArqJobQueue:
    """Redis-backed queue consumed by arq workers."""

    def __init__(self, redis: ArqRedis) -> None:
        self._redis = redis

    @classmethod
    async def connect(cls, settings: Settings) -> "ArqJobQueue":
        """Open a Redis pool for the configured URL."""
        redis = await create_pool(redis_settings_from_url(settings.redis_url))
        logger.info(f"Connected job queue to Redis: {settings.redis_url}")
        return cls(redis)

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> str:
        job = await self._redis.enqueue_job(job_type, **payload)
        if job is None:
            raise RuntimeError(f"arq refused to enqueue {job_type} job")
        logger.info(f"Enqueued {job_type} job {job.job_id}")
        return job.job_id

    async def close(self) -> None:
        await self._redis.aclose()


class InProcessJobQueue:
    """Runs jobs as asyncio tasks in the current event loop.

    At most ``max_jobs`` handlers run at once; jobs are not ordered relative
    to each other.
    """

    def __init__(self, handlers: dict[str, JobHandler], max_jobs: int = 10) -> None:
        self._handlers = dict(handlers)
        self._semaphore = asyncio.Semaphore(max_jobs)
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> str:
        handler = self._handlers.get(job_type)
        if handler is None:
            available = ", ".join(self._handlers)
            raise ValueError(f"Unknown job type: '{job_type}'. Available: {available}")

        job_id = uuid4().hex
        self._tasks[job_id] = asyncio.create_task(self._run(job_id, job_type, handler, payload))
        logger.info(f"Enqueued {job_type} job {job_id}")
        return job_id

    async def _run(
        self, job_id: str, job_type: str, handler: JobHandler, payload: dict[str, Any]
    ) -> Any:
        async with self._semaphore:
            logger.info(f"Running {job_type} job {job_id}")
            try:
                return await handler(**payload)
            except Exception:
                logger.exception(f"{job_type} job {job_id} raised")
                raise

    async def result(self, job_id: str) -> Any:
        """Wait for a job and return its handler's result.

        Raises:
            KeyError: If no job with ``job_id`` was enqueued
        """
        return await self._tasks[job_id]

    async def join(self) -> None:
        """Wait until every enqueued job has finished."""
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
