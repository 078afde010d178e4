"""Unit tests for the job status projection."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from invoice_ocr.jobs.status import JobStatusService
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import JobNotFoundError
from invoice_ocr.store.models import (
    Invoice,
    InvoiceStatus,
    JobStatus,
    ProcessingStep,
    StepStatus,
)
from invoice_ocr.store.repository import OcrRepository

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"

STARTED_AT = datetime(2024, 3, 15, 10, 0, 0, tzinfo=UTC)

MakeInvoice = Callable[..., Invoice]


@pytest.fixture
def service(settings: Settings, repository: OcrRepository) -> JobStatusService:
    return JobStatusService(settings, repository)


def _queued_job(
    repository: OcrRepository,
    make_invoice: MakeInvoice,
    created_at: datetime,
    tenant_id: str = TENANT_ID,
) -> str:
    invoice = make_invoice(tenant_id=tenant_id)
    job = repository.create_job(invoice.id, tenant_id, JobStatus.QUEUED, 3)
    repository.update_job(job.id, created_at=created_at)
    return job.id


class TestQueued:
    def test_queue_position_counts_older_jobs_of_same_tenant(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        _queued_job(repository, make_invoice, STARTED_AT)
        _queued_job(repository, make_invoice, STARTED_AT + timedelta(seconds=1))
        _queued_job(repository, make_invoice, STARTED_AT, tenant_id=OTHER_TENANT_ID)
        job_id = _queued_job(repository, make_invoice, STARTED_AT + timedelta(seconds=2))

        view = service.get_status(job_id, TENANT_ID)

        assert view.status == JobStatus.QUEUED
        assert view.queue_position == 3
        assert view.progress is None
        assert view.result is None

    def test_oldest_job_is_first(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        job_id = _queued_job(repository, make_invoice, STARTED_AT)

        assert service.get_status(job_id, TENANT_ID).queue_position == 1


class TestProcessing:
    def test_progress_follows_latest_log_step(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        invoice = make_invoice()
        job = repository.create_job(
            invoice.id, TENANT_ID, JobStatus.PROCESSING, 3, started_at=STARTED_AT
        )
        repository.append_log(job.id, TENANT_ID, ProcessingStep.OCR, StepStatus.STARTED)
        repository.append_log(job.id, TENANT_ID, ProcessingStep.OCR, StepStatus.COMPLETED)
        repository.append_log(job.id, TENANT_ID, ProcessingStep.AI_EXTRACT, StepStatus.STARTED)

        view = service.get_status(job.id, TENANT_ID)

        assert view.current_step == ProcessingStep.AI_EXTRACT
        assert view.progress == 80
        assert view.estimated_completion == STARTED_AT + timedelta(seconds=30)
        assert view.queue_position is None

    def test_defaults_to_ocr_without_logs(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        invoice = make_invoice()
        job = repository.create_job(
            invoice.id, TENANT_ID, JobStatus.PROCESSING, 3, started_at=STARTED_AT
        )

        view = service.get_status(job.id, TENANT_ID)

        assert view.current_step == ProcessingStep.OCR
        assert view.progress == 50


class TestCompleted:
    def test_result_comes_from_invoice(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        invoice = make_invoice()
        job = repository.create_job(
            invoice.id, TENANT_ID, JobStatus.PROCESSING, 3, started_at=STARTED_AT
        )
        repository.save_extraction(
            invoice.id,
            {
                "status": InvoiceStatus.NEEDS_REVIEW,
                "extracted_data": {"invoice_number": "FV/2024/001"},
                "confidence_scores": {"invoice_number": 92},
                "overall_confidence": 74,
                "requires_review": True,
                "raw_ocr_text": "Faktura VAT FV/2024/001",
            },
            job.id,
            {
                "overall_confidence": 74,
                "validation_errors": ["Buyer NIP invalid: 123"],
                "requires_review": True,
            },
            STARTED_AT + timedelta(milliseconds=1500),
        )

        view = service.get_status(job.id, TENANT_ID)

        assert view.status == JobStatus.COMPLETED
        assert view.duration_ms == 1500
        assert view.result is not None
        assert view.result.extracted_data == {"invoice_number": "FV/2024/001"}
        assert view.result.confidence_scores == {"invoice_number": 92}
        assert view.result.ocr_confidence_overall == 74
        assert view.result.requires_review is True
        assert view.result.validation_errors == ["Buyer NIP invalid: 123"]
        assert view.result.raw_ocr_text == "Faktura VAT FV/2024/001"
        assert view.error is None


class TestFailed:
    def test_error_reports_failed_step_and_retry(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        invoice = make_invoice()
        job = repository.create_job(
            invoice.id, TENANT_ID, JobStatus.PROCESSING, 3, started_at=STARTED_AT
        )
        repository.append_log(job.id, TENANT_ID, ProcessingStep.OCR, StepStatus.STARTED)
        repository.append_log(
            job.id, TENANT_ID, ProcessingStep.OCR, StepStatus.FAILED, {"error": "No text detected"}
        )
        repository.fail_job(job.id, "No text detected", STARTED_AT + timedelta(seconds=5))

        view = service.get_status(job.id, TENANT_ID)

        assert view.status == JobStatus.FAILED
        assert view.error is not None
        assert view.error.message == "No text detected"
        assert view.error.step == ProcessingStep.OCR
        assert view.retry_count == 0
        assert view.will_retry is True

    def test_exhausted_budget_will_not_retry(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        invoice = make_invoice()
        job = repository.create_job(invoice.id, TENANT_ID, JobStatus.PROCESSING, 0)
        repository.fail_job(job.id, "AI extraction failed: 500", STARTED_AT)

        view = service.get_status(job.id, TENANT_ID)

        assert view.will_retry is False
        assert view.error.step == ProcessingStep.OCR

    def test_non_retriable_failure_will_not_retry(
        self, service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
    ) -> None:
        invoice = make_invoice()
        job = repository.create_job(invoice.id, TENANT_ID, JobStatus.PROCESSING, 3)
        repository.fail_job(job.id, "Unsupported document format", STARTED_AT, retriable=False)

        view = service.get_status(job.id, TENANT_ID)

        assert view.status == JobStatus.FAILED
        assert view.retry_count == 0
        assert view.will_retry is False


def test_unknown_job_raises(service: JobStatusService) -> None:
    with pytest.raises(JobNotFoundError):
        service.get_status("00000000-0000-0000-0000-000000000000", TENANT_ID)


def test_foreign_tenant_job_is_not_found(
    service: JobStatusService, repository: OcrRepository, make_invoice: MakeInvoice
) -> None:
    job_id = _queued_job(repository, make_invoice, STARTED_AT)

    with pytest.raises(JobNotFoundError):
        service.get_status(job_id, OTHER_TENANT_ID)
