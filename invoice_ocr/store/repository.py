"""Repository over invoices, OCR jobs, processing logs and corrections.

Every public method runs in its own transaction. Returned ORM objects are
detached (the session factory does not expire on commit), so callers can read
their attributes freely but must write through the repository.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from invoice_ocr.shared.errors import (
    ConflictError,
    DuplicateJobError,
    InvoiceNotFoundError,
    JobNotFoundError,
)
from invoice_ocr.store.database import Database
from invoice_ocr.store.models import (
    ACTIVE_JOB_STATUSES,
    CorrectionRecord,
    Invoice,
    InvoiceStatus,
    JobStatus,
    OcrJob,
    ProcessingLog,
    ProcessingStep,
    StepStatus,
)

logger = logging.getLogger(__name__)


class OcrRepository:
    """Persistence gateway used by the orchestrator and satellite services."""

    def __init__(self, database: Database) -> None:
        self.database = database

    # Invoices

    def add_invoice(self, invoice: Invoice) -> Invoice:
        with self.database.session() as session:
            session.add(invoice)
        return invoice

    def get_invoice(self, invoice_id: str, tenant_id: str) -> Invoice | None:
        with self.database.session() as session:
            stmt = select(Invoice).where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id)
            return session.scalars(stmt).first()

    def update_invoice(self, invoice_id: str, **values: Any) -> Invoice:
        with self.database.session() as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            for key, value in values.items():
                setattr(invoice, key, value)
        return invoice

    # Jobs

    def create_job(
        self,
        invoice_id: str,
        tenant_id: str,
        status: JobStatus,
        max_retries: int,
        started_at: datetime | None = None,
    ) -> OcrJob:
        """Insert a job; the active-job unique index turns races into DuplicateJobError."""
        job = OcrJob(
            invoice_id=invoice_id,
            tenant_id=tenant_id,
            status=status,
            max_retries=max_retries,
            retry_count=0,
            started_at=started_at,
        )
        try:
            with self.database.session() as session:
                session.add(job)
        except IntegrityError as e:
            active = self.find_active_job(invoice_id)
            logger.warning(f"Rejected duplicate OCR job for invoice {invoice_id}")
            raise DuplicateJobError(invoice_id, active.id if active else None) from e
        return job

    def get_job(self, job_id: str, tenant_id: str | None = None) -> OcrJob | None:
        with self.database.session() as session:
            stmt = select(OcrJob).where(OcrJob.id == job_id)
            if tenant_id is not None:
                stmt = stmt.where(OcrJob.tenant_id == tenant_id)
            return session.scalars(stmt).first()

    def find_active_job(self, invoice_id: str) -> OcrJob | None:
        with self.database.session() as session:
            stmt = (
                select(OcrJob)
                .where(OcrJob.invoice_id == invoice_id, OcrJob.status.in_(ACTIVE_JOB_STATUSES))
                .order_by(OcrJob.created_at.desc())
            )
            return session.scalars(stmt).first()

    def update_job(self, job_id: str, **values: Any) -> OcrJob:
        """Apply column changes to a job.

        Raises:
            DuplicateJobError: If the change would make a second job active
        """
        with self.database.session() as session:
            job = session.get(OcrJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            invoice_id = job.invoice_id
            for key, value in values.items():
                setattr(job, key, value)
            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicateJobError(invoice_id) from e
        return job

    def claim_job(self, job_id: str, invoice_id: str, started_at: datetime) -> OcrJob:
        """Move a pre-created job into PROCESSING.

        A QUEUED job is claimed as is; a FAILED job is claimed as a retry while
        its retry budget allows. The transition is a conditional update, so
        two workers can never claim the same job.

        Raises:
            JobNotFoundError: If the job does not exist for this invoice
            DuplicateJobError: If the job cannot be claimed
        """
        job = self.get_job(job_id)
        if job is None or job.invoice_id != invoice_id:
            raise JobNotFoundError(job_id)

        values: dict[str, Any] = {
            "status": JobStatus.PROCESSING,
            "started_at": started_at,
            "completed_at": None,
            "error_message": None,
        }
        if job.status == JobStatus.FAILED and job.retry_count < job.max_retries:
            values["retry_count"] = job.retry_count + 1
        elif job.status != JobStatus.QUEUED:
            raise DuplicateJobError(invoice_id, job_id)

        try:
            with self.database.session() as session:
                result = session.execute(
                    update(OcrJob)
                    .where(
                        OcrJob.id == job_id,
                        OcrJob.status == job.status,
                        OcrJob.retry_count == job.retry_count,
                    )
                    .values(**values)
                )
                claimed = result.rowcount == 1
        except IntegrityError as e:
            raise DuplicateJobError(invoice_id) from e

        if not claimed:
            logger.warning(f"Job {job_id} was claimed concurrently")
            raise DuplicateJobError(invoice_id, job_id)

        for key, value in values.items():
            setattr(job, key, value)
        return job

    def fail_job(
        self,
        job_id: str,
        error_message: str,
        completed_at: datetime,
        retriable: bool = True,
    ) -> OcrJob:
        """Mark a job FAILED.

        A non-retriable failure closes the retry budget by lowering
        ``max_retries`` to the retries already spent, so the job never
        reports a pending retry.
        """
        with self.database.session() as session:
            job = session.get(OcrJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.status = JobStatus.FAILED
            job.error_message = error_message
            job.completed_at = completed_at
            if not retriable:
                job.max_retries = job.retry_count
        return job

    def fail_queued_job(self, job_id: str, error_message: str, completed_at: datetime) -> bool:
        """Fail a job only if it is still QUEUED.

        The failure is never retried, so the retry budget is closed.

        Returns:
            True if the job was failed by this call
        """
        with self.database.session() as session:
            result = session.execute(
                update(OcrJob)
                .where(OcrJob.id == job_id, OcrJob.status == JobStatus.QUEUED)
                .values(
                    status=JobStatus.FAILED,
                    error_message=error_message,
                    completed_at=completed_at,
                    max_retries=OcrJob.retry_count,
                )
            )
            return result.rowcount == 1

    def save_extraction(
        self,
        invoice_id: str,
        invoice_values: dict[str, Any],
        job_id: str,
        job_result: dict[str, Any],
        completed_at: datetime,
    ) -> tuple[Invoice, OcrJob]:
        """Write extraction results and complete the job in one transaction."""
        with self.database.session() as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            job = session.get(OcrJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            for key, value in invoice_values.items():
                setattr(invoice, key, value)
            job.status = JobStatus.COMPLETED
            job.completed_at = completed_at
            job.result = job_result
        return invoice, job

    def count_queued_before(self, tenant_id: str, created_at: datetime, job_id: str) -> int:
        with self.database.session() as session:
            stmt = select(func.count(OcrJob.id)).where(
                OcrJob.tenant_id == tenant_id,
                OcrJob.status == JobStatus.QUEUED,
                OcrJob.created_at < created_at,
                OcrJob.id != job_id,
            )
            return int(session.scalar(stmt) or 0)

    # Processing logs

    def append_log(
        self,
        job_id: str,
        tenant_id: str,
        step: ProcessingStep,
        status: StepStatus,
        metadata: dict[str, Any] | None = None,
    ) -> ProcessingLog:
        entry = ProcessingLog(
            job_id=job_id,
            tenant_id=tenant_id,
            step=step,
            status=status,
            metadata_=metadata,
        )
        with self.database.session() as session:
            session.add(entry)
        return entry

    def list_logs(self, job_id: str) -> list[ProcessingLog]:
        with self.database.session() as session:
            stmt = select(ProcessingLog).where(ProcessingLog.job_id == job_id).order_by(
                ProcessingLog.id
            )
            return list(session.scalars(stmt))

    def latest_log(self, job_id: str) -> ProcessingLog | None:
        with self.database.session() as session:
            stmt = (
                select(ProcessingLog)
                .where(ProcessingLog.job_id == job_id)
                .order_by(ProcessingLog.id.desc())
                .limit(1)
            )
            return session.scalars(stmt).first()

    # Review ledger

    def save_review(
        self,
        invoice_id: str,
        values: dict[str, Any],
        records: list[CorrectionRecord],
    ) -> Invoice:
        """Write corrected invoice values and their correction records atomically.

        Raises:
            ConflictError: If the invoice was approved in the meantime
        """
        with self.database.session() as session:
            invoice = session.get(Invoice, invoice_id, with_for_update=True)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            if invoice.approved_at is not None:
                raise ConflictError("Cannot edit approved invoice")
            for key, value in values.items():
                setattr(invoice, key, value)
            session.add_all(records)
        return invoice

    def list_corrections(self, invoice_id: str) -> list[CorrectionRecord]:
        with self.database.session() as session:
            stmt = (
                select(CorrectionRecord)
                .where(CorrectionRecord.invoice_id == invoice_id)
                .order_by(CorrectionRecord.created_at)
            )
            return list(session.scalars(stmt))

    def approve_invoice(self, invoice_id: str, actor: str, approved_at: datetime) -> bool:
        """Mark a reviewed, not yet approved invoice as VERIFIED.

        Returns:
            True if the invoice was approved by this call
        """
        with self.database.session() as session:
            result = session.execute(
                update(Invoice)
                .where(
                    Invoice.id == invoice_id,
                    Invoice.reviewed_at.is_not(None),
                    Invoice.approved_at.is_(None),
                )
                .values(
                    approved_at=approved_at,
                    approved_by=actor,
                    status=InvoiceStatus.VERIFIED,
                )
            )
            return result.rowcount == 1
