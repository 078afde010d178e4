"""arq task definitions for the OCR pipeline.

The worker is the orchestration runtime: it runs the orchestrator for each
upload event and owns the retry policy. A retriable failure is re-enqueued
with the job id, deferred by a linear backoff, until the job's retry budget
is spent. Non-retriable failures end the job immediately.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from typing import Any

from arq.connections import RedisSettings

from invoice_ocr.pipeline.events import (
    ArqEventPublisher,
    InvoiceUploaded,
    OcrJobCompleted,
)
from invoice_ocr.shared.config import Settings, get_settings
from invoice_ocr.shared.container import ServiceContainer, build_container
from invoice_ocr.shared.errors import StepFailedError
from invoice_ocr.shared.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def redis_settings_from(settings: Settings) -> RedisSettings:
    """Build arq Redis settings from the configured redis URL."""
    return RedisSettings.from_dsn(settings.redis_url)


async def process_invoice_ocr(ctx: dict[str, Any], event: dict[str, Any]) -> dict[str, Any]:
    """Run the OCR pipeline for one InvoiceUploaded event.

    Args:
        ctx: arq context (contains redis connection and the service container)
        event: Serialized InvoiceUploaded event

    Returns:
        Outcome summary as dict
    """
    container: ServiceContainer = ctx["container"]
    uploaded = InvoiceUploaded.model_validate(event)

    try:
        outcome = await container.orchestrator.process(uploaded)
    except StepFailedError as e:
        return await _handle_failure(ctx, container, uploaded, e)

    return {"status": "completed", **outcome.model_dump(mode="json")}


async def _handle_failure(
    ctx: dict[str, Any],
    container: ServiceContainer,
    event: InvoiceUploaded,
    error: StepFailedError,
) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "status": "failed",
        "job_id": error.job_id or None,
        "invoice_id": event.invoice_id,
        "step": error.step,
        "error": str(error.cause),
        "will_retry": False,
    }

    if not error.retriable:
        logger.warning(f"Job for invoice {event.invoice_id} failed permanently: {error}")
        return summary

    job = container.repository.get_job(error.job_id)
    if job is None or job.retry_count >= job.max_retries:
        logger.error(f"Job {error.job_id} exhausted its retries: {error}")
        return summary

    delay = container.settings.retry_backoff_seconds * (job.retry_count + 1)
    retry_event = event.model_copy(update={"job_id": job.id})
    await ArqEventPublisher(ctx["redis"]).schedule_retry(retry_event, delay)
    logger.info(
        f"Retrying job {job.id} in {delay}s (attempt {job.retry_count + 2} "
        f"of {job.max_retries + 1})"
    )
    summary["will_retry"] = True
    return summary


async def notify_ocr_job_completed(ctx: dict[str, Any], event: dict[str, Any]) -> None:
    """Consume OcrJobCompleted events.

    Notification delivery is handled elsewhere; this consumer records the
    completion so downstream senders can hook in.
    """
    completed = OcrJobCompleted.model_validate(event)
    logger.info(
        f"OCR job {completed.job_id} completed for invoice {completed.invoice_id} "
        f"(tenant {completed.tenant_id})"
    )


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - build the service container.

    Called once when worker starts so services are shared across jobs.
    """
    settings = get_settings()
    configure_logging(settings)
    logger.info("Initializing worker services...")
    ctx["container"] = build_container(settings, ArqEventPublisher(ctx["redis"]))
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    container: ServiceContainer | None = ctx.get("container")
    if container is not None:
        container.close()


class WorkerSettings:
    """arq worker settings.

    Retries are scheduled explicitly by process_invoice_ocr, so arq's own
    retry mechanism is limited to a single try.
    """

    functions = [process_invoice_ocr, notify_ocr_job_completed]
    on_startup = startup
    on_shutdown = shutdown

    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300
    max_tries = 1

    @classmethod
    def configure(cls, settings: Settings) -> None:
        """Apply queue configuration from settings."""
        cls.redis_settings = redis_settings_from(settings)
        cls.max_jobs = settings.queue_max_jobs
        cls.job_timeout = settings.queue_job_timeout
