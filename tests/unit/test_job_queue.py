"""Unit tests for the job queues."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.queue.job_queue import (
    PROCESS_CONTRACT,
    PROCESS_INVOICE,
    ArqJobQueue,
    InProcessJobQueue,
    redis_settings_from_url,
)
from services.shared.config import Settings


class TestInProcessJobQueue:
    """Test the asyncio-backed queue."""

    @pytest.mark.asyncio
    async def test_enqueue_runs_handler_with_payload(self) -> None:
        calls: list[dict[str, Any]] = []

        async def handler(**payload: Any) -> str:
            calls.append(payload)
            return "done"

        queue = InProcessJobQueue({PROCESS_CONTRACT: handler})
        job_id = await queue.enqueue(PROCESS_CONTRACT, {"contract_id": "c-1", "file_key": "k"})

        assert await queue.result(job_id) == "done"
        assert calls == [{"contract_id": "c-1", "file_key": "k"}]

    @pytest.mark.asyncio
    async def test_unknown_job_type(self) -> None:
        queue = InProcessJobQueue({PROCESS_CONTRACT: AsyncMock()})

        with pytest.raises(ValueError, match="Unknown job type"):
            await queue.enqueue("resize_images", {})

    @pytest.mark.asyncio
    async def test_unknown_job_id(self) -> None:
        with pytest.raises(KeyError):
            await InProcessJobQueue({}).result("missing")

    @pytest.mark.asyncio
    async def test_handler_error_surfaces_in_result(self) -> None:
        async def failing(**payload: Any) -> None:
            raise RuntimeError("boom")

        queue = InProcessJobQueue({PROCESS_INVOICE: failing})
        job_id = await queue.enqueue(PROCESS_INVOICE, {"invoice_id": "i-1"})

        with pytest.raises(RuntimeError, match="boom"):
            await queue.result(job_id)

    @pytest.mark.asyncio
    async def test_join_waits_for_all_jobs(self) -> None:
        finished: list[str] = []

        async def handler(name: str) -> None:
            await asyncio.sleep(0.01)
            finished.append(name)

        queue = InProcessJobQueue({PROCESS_INVOICE: handler})
        for name in ("a", "b", "c"):
            await queue.enqueue(PROCESS_INVOICE, {"name": name})

        await queue.join()

        assert sorted(finished) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self) -> None:
        running = 0
        peak = 0

        async def handler() -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        queue = InProcessJobQueue({PROCESS_INVOICE: handler}, max_jobs=2)
        for _ in range(6):
            await queue.enqueue(PROCESS_INVOICE, {})
        await queue.join()

        assert peak == 2


class TestArqJobQueue:
    """Test the Redis-backed queue with a mocked arq pool."""

    @pytest.mark.asyncio
    async def test_enqueue(self) -> None:
        redis = MagicMock()
        redis.enqueue_job = AsyncMock(return_value=MagicMock(job_id="job-123"))
        queue = ArqJobQueue(redis)

        job_id = await queue.enqueue(PROCESS_INVOICE, {"invoice_id": "i-1", "file_key": "invoices/a.pdf"})

        assert job_id == "job-123"
        redis.enqueue_job.assert_awaited_once_with(
            PROCESS_INVOICE, invoice_id="i-1", file_key="invoices/a.pdf"
        )

    @pytest.mark.asyncio
    async def test_enqueue_refused(self) -> None:
        redis = MagicMock()
        redis.enqueue_job = AsyncMock(return_value=None)

        with pytest.raises(RuntimeError, match="refused"):
            await ArqJobQueue(redis).enqueue(PROCESS_CONTRACT, {"contract_id": "c-1"})

    @pytest.mark.asyncio
    async def test_connect_uses_configured_url(self) -> None:
        pool = MagicMock()
        with patch("services.queue.job_queue.create_pool", AsyncMock(return_value=pool)) as create:
            queue = await ArqJobQueue.connect(Settings(redis_url="redis://queue-host:6380/2"))

        redis_settings = create.await_args.args[0]
        assert redis_settings.host == "queue-host"
        assert redis_settings.port == 6380
        assert redis_settings.database == 2
        assert queue._redis is pool

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        redis = MagicMock()
        redis.aclose = AsyncMock()

        await ArqJobQueue(redis).close()

        redis.aclose.assert_awaited_once()


def test_redis_settings_from_url_defaults() -> None:
    settings = redis_settings_from_url("redis://localhost:6379/0")
    assert settings.host == "localhost"
    assert settings.port == 6379
    assert settings.database == 0
