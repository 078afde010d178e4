"""OCR job orchestration.

Drives one invoice through OCR -> AI_EXTRACT -> VALIDATE -> SAVE. The
orchestrator owns the job state machine and the processing log; adapters
only raise. It performs no retries itself: failures are classified and
handed to the queue runtime, which decides whether to run the job again.

Adapter calls are blocking, so they run in worker threads under
``asyncio.wait_for`` with the timeouts from settings.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from invoice_ocr.extraction.base import ExtractionProvider
from invoice_ocr.extraction.schema import ExtractionResult
from invoice_ocr.ocr.service import TextRecognizer
from invoice_ocr.pipeline.events import EventPublisher, InvoiceUploaded, OcrJobCompleted
from invoice_ocr.pipeline.steps import StepRunner
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import (
    InvalidInvoiceStateError,
    InvoiceNotFoundError,
    JobNotFoundError,
    NonRetriableError,
    StepFailedError,
    UnsupportedFormatError,
)
from invoice_ocr.shared.metrics import (
    extraction_tokens_total,
    invoices_routed_total,
    ocr_jobs_total,
)
from invoice_ocr.storage.service import StorageService
from invoice_ocr.store.models import (
    PROCESSABLE_INVOICE_STATUSES,
    Invoice,
    InvoiceStatus,
    JobStatus,
    OcrJob,
    ProcessingStep,
    utcnow,
)
from invoice_ocr.store.repository import OcrRepository
from invoice_ocr.validation.confidence import critical_scores, overall_confidence, requires_review
from invoice_ocr.validation.engine import ValidationReport, validate_extracted_data

logger = logging.getLogger(__name__)

T = TypeVar("T")

INITIALIZE_STEP = "INITIALIZE"


def is_retriable(error: Exception) -> bool:
    """Unsupported documents and orchestration errors never succeed on retry."""
    return not isinstance(error, NonRetriableError | UnsupportedFormatError)


class PipelineOutcome(BaseModel):
    """Summary of a completed pipeline run."""

    job_id: str
    invoice_id: str
    invoice_status: InvoiceStatus
    overall_confidence: int
    requires_review: bool
    validation_errors: list[str] = Field(default_factory=list)


@dataclass
class _PipelineRun:
    """State handed from step to step within one run."""

    event: InvoiceUploaded
    invoice: Invoice
    job: OcrJob
    download_url: str | None = None
    raw_text: str = ""
    ocr_confidence: float = 0.0
    extraction: ExtractionResult | None = None
    report: ValidationReport | None = None
    outcome: PipelineOutcome | None = None


class OcrOrchestrator:
    """Runs the OCR/extraction pipeline for uploaded invoices."""

    def __init__(
        self,
        settings: Settings,
        repository: OcrRepository,
        storage: StorageService,
        recognizer: TextRecognizer,
        extraction_provider: ExtractionProvider,
        publisher: EventPublisher,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.storage = storage
        self.recognizer = recognizer
        self.extraction_provider = extraction_provider
        self.publisher = publisher

    def _load_processable_invoice(self, invoice_id: str, tenant_id: str) -> Invoice:
        invoice = self.repository.get_invoice(invoice_id, tenant_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        if invoice.status not in PROCESSABLE_INVOICE_STATUSES:
            raise InvalidInvoiceStateError(invoice_id, invoice.status)
        return invoice

    async def enqueue(self, invoice_id: str, tenant_id: str) -> OcrJob:
        """Create a QUEUED job for an invoice and publish its upload event.

        Args:
            invoice_id: Invoice to process
            tenant_id: Tenant the caller acts for

        Returns:
            The queued job

        Raises:
            InvoiceNotFoundError: If the invoice is unknown to the tenant
            InvalidInvoiceStateError: If the invoice was already processed
            DuplicateJobError: If a job is already queued or processing
        """
        invoice = self._load_processable_invoice(invoice_id, tenant_id)
        job = self.repository.create_job(
            invoice.id, tenant_id, JobStatus.QUEUED, self.settings.ocr_max_retries
        )

        event = InvoiceUploaded(
            invoice_id=invoice.id,
            tenant_id=tenant_id,
            file_path=invoice.file_path,
            job_id=job.id,
        )
        try:
            await self.publisher.publish_invoice_uploaded(event)
        except Exception as e:
            logger.exception(f"Failed to publish upload event for job {job.id}")
            self.repository.fail_job(
                job.id, f"Failed to queue OCR job: {e}", utcnow(), retriable=False
            )
            raise

        ocr_jobs_total.labels(status="queued").inc()
        logger.info(f"Queued OCR job {job.id} for invoice {invoice.id}")
        return job

    async def process(self, event: InvoiceUploaded) -> PipelineOutcome:
        """Run the full pipeline for one upload event.

        Raises:
            StepFailedError: On any failure; ``retriable`` tells the runtime
                whether running the job again can help
        """
        logger.info(f"Starting OCR processing for invoice {event.invoice_id}")
        run = self._initialize(event)

        runner = StepRunner(self.repository, run.job.id, event.tenant_id, is_retriable)
        try:
            await runner.run(
                [
                    (ProcessingStep.OCR, lambda: self._recognize(run)),
                    (ProcessingStep.AI_EXTRACT, lambda: self._extract(run)),
                    (ProcessingStep.VALIDATE, lambda: self._validate(run)),
                    (ProcessingStep.SAVE, lambda: self._save(run)),
                ]
            )
        except StepFailedError as e:
            message = str(e.cause) or type(e.cause).__name__
            self.repository.fail_job(run.job.id, message, utcnow(), retriable=e.retriable)
            ocr_jobs_total.labels(status="failed").inc()
            logger.error(f"OCR job {run.job.id} failed at {e.step}: {message}")
            raise

        ocr_jobs_total.labels(status="completed").inc()
        await self._emit_completed(run)

        assert run.outcome is not None
        logger.info(
            f"OCR job {run.job.id} completed: invoice {run.invoice.id} -> "
            f"{run.outcome.invoice_status}"
        )
        return run.outcome

    def _initialize(self, event: InvoiceUploaded) -> _PipelineRun:
        """Load and check the invoice, then create or claim the job."""
        try:
            invoice = self._load_processable_invoice(event.invoice_id, event.tenant_id)
            started_at = utcnow()
            if event.job_id is None:
                job = self.repository.create_job(
                    invoice.id,
                    event.tenant_id,
                    JobStatus.PROCESSING,
                    self.settings.ocr_max_retries,
                    started_at=started_at,
                )
            else:
                job = self.repository.claim_job(event.job_id, invoice.id, started_at)
        except (NonRetriableError, JobNotFoundError) as e:
            if event.job_id is not None:
                # A job queued for an unprocessable invoice must not stay active
                self.repository.fail_queued_job(event.job_id, str(e), utcnow())
            ocr_jobs_total.labels(status="rejected").inc()
            logger.warning(f"Rejected OCR run for invoice {event.invoice_id}: {e}")
            raise StepFailedError(INITIALIZE_STEP, event.job_id or "", e, retriable=False) from e

        logger.info(
            f"Processing job {job.id} for invoice {invoice.id} (attempt {job.retry_count + 1})"
        )
        return _PipelineRun(event=event, invoice=invoice, job=job)

    @staticmethod
    async def _call(func: Callable[..., T], *args: Any, timeout: float) -> T:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)

    async def _recognize(self, run: _PipelineRun) -> dict[str, Any]:
        file_path = run.event.file_path or run.invoice.file_path
        run.download_url = await self._call(
            self.storage.get_presigned_url,
            file_path,
            self.settings.signed_url_expiry_seconds,
            timeout=self.settings.download_timeout_seconds,
        )

        client_text = run.invoice.client_ocr_text
        if client_text and client_text.strip():
            run.raw_text = client_text
            run.ocr_confidence = run.invoice.client_ocr_confidence or 0.0
            logger.info(f"Using client-side OCR for invoice {run.invoice.id}")
            return {
                "source": "client-side",
                "confidence": run.ocr_confidence,
                "char_count": len(run.raw_text),
            }

        document = await self._call(
            self.storage.download,
            run.download_url,
            timeout=self.settings.download_timeout_seconds,
        )
        result = await self._call(
            self.recognizer.recognize,
            document,
            timeout=self.settings.ocr_timeout_seconds,
        )
        run.raw_text = result.text
        run.ocr_confidence = result.confidence
        return {
            "source": "server-side",
            "confidence": result.confidence,
            "char_count": len(result.text),
            "word_count": result.word_count,
        }

    async def _extract(self, run: _PipelineRun) -> dict[str, Any]:
        result = await self._call(
            self.extraction_provider.extract,
            run.raw_text,
            timeout=self.settings.extraction_timeout_seconds,
        )
        run.extraction = result

        extraction_tokens_total.labels(provider=result.provider, kind="prompt").inc(
            result.usage.prompt_tokens
        )
        extraction_tokens_total.labels(provider=result.provider, kind="completion").inc(
            result.usage.completion_tokens
        )
        return {"token_usage": result.usage.model_dump(), "provider": result.provider}

    async def _validate(self, run: _PipelineRun) -> dict[str, Any]:
        assert run.extraction is not None
        run.report = validate_extracted_data(run.extraction.fields)
        if not run.report.valid:
            logger.info(f"Validation found {len(run.report.errors)} issue(s) on {run.invoice.id}")
        return {"valid": run.report.valid, "errors": run.report.errors}

    async def _save(self, run: _PipelineRun) -> dict[str, Any]:
        assert run.extraction is not None and run.report is not None
        fields = run.extraction.fields
        confidence = run.extraction.confidence

        overall = overall_confidence(confidence)
        review = requires_review(
            overall, critical_scores(confidence), self.settings.confidence_threshold
        )
        status = (
            InvoiceStatus.NEEDS_REVIEW
            if run.report.errors or review
            else InvoiceStatus.EXTRACTED
        )
        completed_at = utcnow()

        self.repository.save_extraction(
            run.invoice.id,
            {
                "invoice_number": fields.invoice_number,
                "issue_date": fields.issue_date,
                "due_date": fields.due_date,
                "net_amount": fields.net_amount,
                "vat_amount": fields.vat_amount,
                "gross_amount": fields.gross_amount,
                "currency": fields.currency,
                "seller_name": fields.seller.name,
                "seller_nip": fields.seller.nip,
                "buyer_name": fields.buyer.name,
                "buyer_nip": fields.buyer.nip,
                "extracted_data": fields.model_dump(mode="json"),
                "confidence_scores": confidence.model_dump(),
                "overall_confidence": overall,
                "requires_review": review,
                "raw_ocr_text": run.raw_text,
                "ocr_confidence": run.ocr_confidence,
                "status": status,
                "processed_at": completed_at,
            },
            run.job.id,
            {
                "overall_confidence": overall,
                "validation_errors": run.report.errors,
                "requires_review": review,
            },
            completed_at,
        )
        invoices_routed_total.labels(status=status.value).inc()

        run.outcome = PipelineOutcome(
            job_id=run.job.id,
            invoice_id=run.invoice.id,
            invoice_status=status,
            overall_confidence=overall,
            requires_review=review,
            validation_errors=run.report.errors,
        )
        return {"status": status.value, "overall_confidence": overall}

    async def _emit_completed(self, run: _PipelineRun) -> None:
        event = OcrJobCompleted(
            job_id=run.job.id,
            invoice_id=run.invoice.id,
            tenant_id=run.event.tenant_id,
        )
        try:
            await self.publisher.publish_job_completed(event)
        except Exception:
            # The job is already COMPLETED; a lost notification must not fail it
            logger.exception(f"Failed to emit completion event for job {run.job.id}")
