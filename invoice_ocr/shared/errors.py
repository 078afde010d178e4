"""Error taxonomy for the OCR pipeline.

Orchestration errors that must never be retried derive from
NonRetriableError. Adapter failures (recognition, extraction, storage) are
retriable unless the orchestrator decides otherwise.
"""


class InvoiceOcrError(Exception):
    """Base class for all pipeline errors."""


class NonRetriableError(InvoiceOcrError):
    """Failure that must terminate the job without consuming retry budget."""


class InvoiceNotFoundError(NonRetriableError):
    """Invoice does not exist or belongs to another tenant."""

    def __init__(self, invoice_id: str) -> None:
        super().__init__(f"Invoice not found: {invoice_id}")
        self.invoice_id = invoice_id


class InvalidInvoiceStateError(NonRetriableError):
    """Invoice is not in a status that allows processing."""

    def __init__(self, invoice_id: str, status: str) -> None:
        super().__init__(
            f"Invoice {invoice_id} status must be UPLOADED or UPLOADED_WITH_OCR, got {status}"
        )
        self.invoice_id = invoice_id
        self.status = status


class DuplicateJobError(NonRetriableError):
    """Another OCR job is already queued or processing for the invoice."""

    def __init__(self, invoice_id: str, job_id: str | None = None) -> None:
        detail = f": {job_id}" if job_id else ""
        super().__init__(f"OCR job already in progress for invoice {invoice_id}{detail}")
        self.invoice_id = invoice_id
        self.job_id = job_id


class RecognitionError(InvoiceOcrError):
    """Text recognition failed."""


class UnsupportedFormatError(RecognitionError):
    """Document is neither an image nor a PDF."""


class ExtractionError(InvoiceOcrError):
    """Structured extraction failed or returned unusable content."""


class StorageError(InvoiceOcrError):
    """File storage could not provide or serve the document."""


class StepFailedError(InvoiceOcrError):
    """A pipeline step failed; carries the retry classification."""

    def __init__(self, step: str, job_id: str, cause: Exception, retriable: bool) -> None:
        super().__init__(f"Step {step} failed for job {job_id}: {cause}")
        self.step = step
        self.job_id = job_id
        self.cause = cause
        self.retriable = retriable


class JobNotFoundError(InvoiceOcrError):
    """Job does not exist or is not visible to the requesting tenant."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class ConflictError(InvoiceOcrError):
    """Operation conflicts with the current review/approval state."""


class UnsupportedFieldPathError(InvoiceOcrError):
    """Correction targets a field path deeper than two levels."""

    def __init__(self, field_name: str) -> None:
        super().__init__(
            f"Unsupported field path '{field_name}': only one- or two-level paths are allowed"
        )
        self.field_name = field_name


class CorrectionValidationError(InvoiceOcrError):
    """Corrected values do not form a valid invoice structure."""
