"""Pipeline events and their delivery over the arq queue.

An InvoiceUploaded event starts the orchestrator; OcrJobCompleted is emitted
for downstream consumers such as notification senders. Events travel as
plain JSON-compatible dicts so that arq can serialize them.
"""

import logging
from typing import Any, Protocol

from arq.connections import ArqRedis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PROCESS_INVOICE_TASK = "process_invoice_ocr"
JOB_COMPLETED_TASK = "notify_ocr_job_completed"


class InvoiceUploaded(BaseModel):
    """Trigger for one orchestrator run.

    Attributes:
        invoice_id: Invoice to process
        tenant_id: Owning tenant
        file_path: Object name of the stored file
        job_id: Pre-created job to claim (queued by the API or a retry)
    """

    invoice_id: str
    tenant_id: str
    file_path: str
    job_id: str | None = None


class OcrJobCompleted(BaseModel):
    job_id: str
    invoice_id: str
    tenant_id: str


class EventPublisher(Protocol):
    """Outbound event channel used by the orchestrator."""

    async def publish_invoice_uploaded(self, event: InvoiceUploaded) -> None: ...

    async def publish_job_completed(self, event: OcrJobCompleted) -> None: ...


class ArqEventPublisher:
    """Publishes events by enqueueing the matching arq task."""

    def __init__(self, redis: ArqRedis) -> None:
        self.redis = redis

    async def _enqueue(self, task: str, payload: dict[str, Any], **options: Any) -> None:
        job = await self.redis.enqueue_job(task, payload, **options)
        if job is None:
            logger.warning(f"Task {task} was not enqueued (duplicate arq job id)")
        else:
            logger.info(f"Enqueued {task} as arq job {job.job_id}")

    async def publish_invoice_uploaded(self, event: InvoiceUploaded) -> None:
        await self._enqueue(PROCESS_INVOICE_TASK, event.model_dump(mode="json"))

    async def publish_job_completed(self, event: OcrJobCompleted) -> None:
        await self._enqueue(JOB_COMPLETED_TASK, event.model_dump(mode="json"))

    async def schedule_retry(self, event: InvoiceUploaded, defer_seconds: float) -> None:
        """Re-deliver an InvoiceUploaded event after a delay."""
        await self._enqueue(
            PROCESS_INVOICE_TASK,
            event.model_dump(mode="json"),
            _defer_by=defer_seconds,
        )
