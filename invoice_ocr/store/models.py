"""SQLAlchemy models for invoices, OCR jobs, processing logs and corrections."""

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class InvoiceStatus(StrEnum):
    UPLOADED = "UPLOADED"
    UPLOADED_WITH_OCR = "UPLOADED_WITH_OCR"
    PROCESSING = "PROCESSING"
    EXTRACTED = "EXTRACTED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


PROCESSABLE_INVOICE_STATUSES = (InvoiceStatus.UPLOADED, InvoiceStatus.UPLOADED_WITH_OCR)


class JobStatus(StrEnum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)


class ProcessingStep(StrEnum):
    UPLOAD = "UPLOAD"
    PREPROCESS = "PREPROCESS"
    OCR = "OCR"
    AI_EXTRACT = "AI_EXTRACT"
    VALIDATE = "VALIDATE"
    SAVE = "SAVE"


class StepStatus(StrEnum):
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    file_path: Mapped[str] = mapped_column(Text)
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, native_enum=False, length=32), default=InvoiceStatus.UPLOADED
    )

    # Denormalized extracted fields
    invoice_number: Mapped[str | None] = mapped_column(String(128))
    issue_date: Mapped[date | None] = mapped_column(Date)
    due_date: Mapped[date | None] = mapped_column(Date)
    net_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    vat_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    gross_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    currency: Mapped[str | None] = mapped_column(String(3))
    seller_name: Mapped[str | None] = mapped_column(Text)
    seller_nip: Mapped[str | None] = mapped_column(String(32))
    buyer_name: Mapped[str | None] = mapped_column(Text)
    buyer_nip: Mapped[str | None] = mapped_column(String(32))

    extracted_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    confidence_scores: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    overall_confidence: Mapped[int | None] = mapped_column(Integer)
    requires_review: Mapped[bool] = mapped_column(Boolean, default=False)

    # OCR text: client-side result captured at upload, and the text actually used
    client_ocr_text: Mapped[str | None] = mapped_column(Text)
    client_ocr_confidence: Mapped[float | None] = mapped_column(Float)
    raw_ocr_text: Mapped[str | None] = mapped_column(Text)
    ocr_confidence: Mapped[float | None] = mapped_column(Float)

    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class OcrJob(Base):
    __tablename__ = "ocr_jobs"
    __table_args__ = (
        # At most one QUEUED/PROCESSING job per invoice, enforced by the store.
        Index(
            "uq_ocr_jobs_active_invoice",
            "invoice_id",
            unique=True,
            sqlite_where=text("status IN ('QUEUED', 'PROCESSING')"),
            postgresql_where=text("status IN ('QUEUED', 'PROCESSING')"),
        ),
        Index("ix_ocr_jobs_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"))
    tenant_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, native_enum=False, length=32), default=JobStatus.QUEUED
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ProcessingLog(Base):
    __tablename__ = "processing_logs"

    # Autoincrement id doubles as the append order within a job.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("ocr_jobs.id", ondelete="CASCADE"), index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    step: Mapped[ProcessingStep] = mapped_column(Enum(ProcessingStep, native_enum=False, length=32))
    status: Mapped[StepStatus] = mapped_column(Enum(StepStatus, native_enum=False, length=32))
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class CorrectionRecord(Base):
    __tablename__ = "correction_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    invoice_id: Mapped[str] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), index=True
    )
    field_name: Mapped[str] = mapped_column(String(128))
    original_value: Mapped[str | None] = mapped_column(Text)
    corrected_value: Mapped[str | None] = mapped_column(Text)
    original_confidence: Mapped[int | None] = mapped_column(Integer)
    corrected_by: Mapped[str] = mapped_column(String(64))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
