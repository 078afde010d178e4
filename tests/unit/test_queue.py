"""Unit tests for the arq task layer.

Tests cover the pipeline task, its retry scheduling and the worker
configuration.
"""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from invoice_ocr.queue.tasks import (
    WorkerSettings,
    notify_ocr_job_completed,
    process_invoice_ocr,
    shutdown,
    startup,
)
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.container import ServiceContainer
from invoice_ocr.shared.errors import ExtractionError
from invoice_ocr.store.models import Invoice, JobStatus, new_id, utcnow
from invoice_ocr.store.repository import OcrRepository

TENANT_ID = "tenant-a"


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create mock arq Redis connection."""
    mock = AsyncMock()
    mock.enqueue_job.return_value = MagicMock(job_id="arq-job-1")
    return mock


@pytest.fixture
def ctx(container: ServiceContainer, mock_redis: AsyncMock) -> dict[str, Any]:
    return {"container": container, "redis": mock_redis}


def _payload(invoice: Invoice, job_id: str | None = None) -> dict[str, Any]:
    return {
        "invoice_id": invoice.id,
        "tenant_id": invoice.tenant_id,
        "file_path": invoice.file_path,
        "job_id": job_id,
    }


class TestProcessInvoiceTask:
    @pytest.mark.asyncio
    async def test_successful_run_returns_outcome(
        self, ctx: dict[str, Any], make_invoice: Callable[..., Invoice], mock_redis: AsyncMock
    ) -> None:
        invoice = make_invoice()

        result = await process_invoice_ocr(ctx, _payload(invoice))

        assert result["status"] == "completed"
        assert result["invoice_id"] == invoice.id
        assert result["invoice_status"] == "EXTRACTED"
        assert result["overall_confidence"] == 92
        mock_redis.enqueue_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retriable_failure_is_rescheduled_with_backoff(
        self,
        ctx: dict[str, Any],
        make_invoice: Callable[..., Invoice],
        extraction_provider: MagicMock,
        mock_redis: AsyncMock,
    ) -> None:
        extraction_provider.extract.side_effect = ExtractionError("AI extraction failed: 502")
        invoice = make_invoice()

        result = await process_invoice_ocr(ctx, _payload(invoice))

        assert result["status"] == "failed"
        assert result["step"] == "AI_EXTRACT"
        assert result["will_retry"] is True
        mock_redis.enqueue_job.assert_awaited_once_with(
            "process_invoice_ocr",
            _payload(invoice, result["job_id"]),
            _defer_by=10,
        )

    @pytest.mark.asyncio
    async def test_backoff_grows_with_retry_count(
        self,
        ctx: dict[str, Any],
        repository: OcrRepository,
        make_invoice: Callable[..., Invoice],
        extraction_provider: MagicMock,
        mock_redis: AsyncMock,
    ) -> None:
        extraction_provider.extract.side_effect = ExtractionError("AI extraction failed: 502")
        invoice = make_invoice()
        job = repository.create_job(invoice.id, TENANT_ID, JobStatus.QUEUED, 3)
        repository.fail_job(job.id, "AI extraction failed: 502", utcnow())

        result = await process_invoice_ocr(ctx, _payload(invoice, job.id))

        assert result["will_retry"] is True
        assert repository.get_job(job.id).retry_count == 1
        assert mock_redis.enqueue_job.await_args.kwargs["_defer_by"] == 20

    @pytest.mark.asyncio
    async def test_retried_event_completes_same_job(
        self,
        ctx: dict[str, Any],
        repository: OcrRepository,
        make_invoice: Callable[..., Invoice],
        extraction_provider: MagicMock,
        mock_redis: AsyncMock,
    ) -> None:
        good_result = extraction_provider.extract.return_value
        extraction_provider.extract.side_effect = [ExtractionError("rate limited"), good_result]
        invoice = make_invoice()

        first = await process_invoice_ocr(ctx, _payload(invoice))
        retry_payload = mock_redis.enqueue_job.await_args.args[1]
        second = await process_invoice_ocr(ctx, retry_payload)

        assert second["status"] == "completed"
        assert second["job_id"] == first["job_id"]
        job = repository.get_job(first["job_id"])
        assert job.status == JobStatus.COMPLETED
        assert job.retry_count == 1

    @pytest.mark.asyncio
    async def test_non_retriable_failure_is_not_rescheduled(
        self, ctx: dict[str, Any], mock_redis: AsyncMock
    ) -> None:
        payload = {
            "invoice_id": new_id(),
            "tenant_id": TENANT_ID,
            "file_path": "tenant-a/missing.png",
        }

        result = await process_invoice_ocr(ctx, payload)

        assert result["status"] == "failed"
        assert result["step"] == "INITIALIZE"
        assert result["job_id"] is None
        assert result["will_retry"] is False
        mock_redis.enqueue_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_budget_is_not_rescheduled(
        self,
        ctx: dict[str, Any],
        repository: OcrRepository,
        make_invoice: Callable[..., Invoice],
        extraction_provider: MagicMock,
        mock_redis: AsyncMock,
    ) -> None:
        extraction_provider.extract.side_effect = ExtractionError("AI extraction failed: 502")
        invoice = make_invoice()
        job = repository.create_job(invoice.id, TENANT_ID, JobStatus.QUEUED, 0)

        result = await process_invoice_ocr(ctx, _payload(invoice, job.id))

        assert result["will_retry"] is False
        assert repository.get_job(job.id).status == JobStatus.FAILED
        mock_redis.enqueue_job.assert_not_awaited()


@pytest.mark.asyncio
async def test_completion_consumer_accepts_event() -> None:
    event = {"job_id": new_id(), "invoice_id": new_id(), "tenant_id": TENANT_ID}

    assert await notify_ocr_job_completed({}, event) is None


class TestWorkerLifecycle:
    @pytest.mark.asyncio
    async def test_startup_builds_container_and_shutdown_closes_it(
        self, settings: Settings, mock_redis: AsyncMock
    ) -> None:
        ctx: dict[str, Any] = {"redis": mock_redis}
        container = MagicMock()

        with (
            patch("invoice_ocr.queue.tasks.get_settings", return_value=settings),
            patch("invoice_ocr.queue.tasks.build_container", return_value=container) as build,
        ):
            await startup(ctx)

        assert ctx["container"] is container
        assert build.call_args.args[0] is settings
        assert build.call_args.args[1].redis is mock_redis

        await shutdown(ctx)
        container.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_shutdown_without_container(self) -> None:
        await shutdown({})


class TestWorkerSettings:
    def test_registers_pipeline_tasks(self) -> None:
        names = {func.__name__ for func in WorkerSettings.functions}
        assert names == {"process_invoice_ocr", "notify_ocr_job_completed"}

    def test_arq_retries_disabled(self) -> None:
        assert WorkerSettings.max_tries == 1

    def test_configure_from_settings(self) -> None:
        settings = Settings(
            redis_url="redis://cache.internal:6380/2",
            queue_max_jobs=4,
            queue_job_timeout=90,
        )

        WorkerSettings.configure(settings)

        assert WorkerSettings.redis_settings is not None
        assert WorkerSettings.redis_settings.host == "cache.internal"
        assert WorkerSettings.redis_settings.port == 6380
        assert WorkerSettings.redis_settings.database == 2
        assert WorkerSettings.max_jobs == 4
        assert WorkerSettings.job_timeout == 90
