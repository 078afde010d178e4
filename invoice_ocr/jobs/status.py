"""Read-only projection of OCR job progress for polling clients.

The payload shape depends on the job status. Unknown jobs and jobs of
another tenant are indistinguishable: both raise JobNotFoundError.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel

from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import JobNotFoundError
from invoice_ocr.store.models import JobStatus, OcrJob, ProcessingStep, as_utc
from invoice_ocr.store.repository import OcrRepository

logger = logging.getLogger(__name__)

STEP_PROGRESS: dict[ProcessingStep, int] = {
    ProcessingStep.UPLOAD: 10,
    ProcessingStep.PREPROCESS: 20,
    ProcessingStep.OCR: 50,
    ProcessingStep.AI_EXTRACT: 80,
    ProcessingStep.VALIDATE: 90,
    ProcessingStep.SAVE: 95,
}

# Assumed step when no processing log entry exists yet
DEFAULT_STEP = ProcessingStep.OCR


class JobResult(BaseModel):
    extracted_data: dict[str, Any] | None = None
    confidence_scores: dict[str, Any] | None = None
    ocr_confidence_overall: int | None = None
    requires_review: bool = False
    validation_errors: list[str] = []
    raw_ocr_text: str | None = None


class JobError(BaseModel):
    message: str
    step: ProcessingStep


class JobStatusView(BaseModel):
    """Status payload; fields outside the job's current status stay None."""

    job_id: str
    invoice_id: str
    status: JobStatus
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    # QUEUED
    queue_position: int | None = None

    # PROCESSING
    current_step: ProcessingStep | None = None
    progress: int | None = None
    estimated_completion: datetime | None = None

    # COMPLETED
    duration_ms: int | None = None
    result: JobResult | None = None

    # FAILED
    error: JobError | None = None
    retry_count: int | None = None
    will_retry: bool | None = None


class JobStatusService:
    """Builds status payloads from jobs, logs and invoices."""

    def __init__(self, settings: Settings, repository: OcrRepository) -> None:
        self.settings = settings
        self.repository = repository

    def get_status(self, job_id: str, tenant_id: str) -> JobStatusView:
        """Get the current status of a job.

        Args:
            job_id: Job identifier
            tenant_id: Tenant the caller acts for

        Returns:
            JobStatusView shaped by the job status

        Raises:
            JobNotFoundError: If the job does not exist for this tenant
        """
        job = self.repository.get_job(job_id, tenant_id)
        if job is None:
            raise JobNotFoundError(job_id)

        view = JobStatusView(
            job_id=job.id,
            invoice_id=job.invoice_id,
            status=job.status,
            created_at=as_utc(job.created_at),
            started_at=as_utc(job.started_at),
            completed_at=as_utc(job.completed_at),
        )

        if job.status == JobStatus.QUEUED:
            view.queue_position = (
                self.repository.count_queued_before(tenant_id, job.created_at, job.id) + 1
            )
        elif job.status == JobStatus.PROCESSING:
            step = self._current_step(job)
            view.current_step = step
            view.progress = STEP_PROGRESS[step]
            started_at = view.started_at or view.created_at
            view.estimated_completion = started_at + timedelta(
                seconds=self.settings.estimated_processing_seconds
            )
        elif job.status == JobStatus.COMPLETED:
            view.result = self._build_result(job, tenant_id)
            if view.started_at and view.completed_at:
                elapsed = view.completed_at - view.started_at
                view.duration_ms = int(elapsed.total_seconds() * 1000)
        elif job.status == JobStatus.FAILED:
            view.error = JobError(
                message=job.error_message or "Unknown error",
                step=self._current_step(job),
            )
            view.retry_count = job.retry_count
            view.will_retry = job.retry_count < job.max_retries

        return view

    def _current_step(self, job: OcrJob) -> ProcessingStep:
        entry = self.repository.latest_log(job.id)
        return entry.step if entry is not None else DEFAULT_STEP

    def _build_result(self, job: OcrJob, tenant_id: str) -> JobResult:
        summary = job.result or {}
        invoice = self.repository.get_invoice(job.invoice_id, tenant_id)
        if invoice is None:
            logger.warning(f"Invoice {job.invoice_id} of completed job {job.id} is missing")
            return JobResult(
                ocr_confidence_overall=summary.get("overall_confidence"),
                requires_review=summary.get("requires_review", False),
                validation_errors=summary.get("validation_errors", []),
            )

        return JobResult(
            extracted_data=invoice.extracted_data,
            confidence_scores=invoice.confidence_scores,
            ocr_confidence_overall=invoice.overall_confidence,
            requires_review=bool(invoice.requires_review),
            validation_errors=summary.get("validation_errors", []),
            raw_ocr_text=invoice.raw_ocr_text,
        )
