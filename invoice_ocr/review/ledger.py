"""Manual review corrections and approval of extracted invoices.

Corrections are applied to the invoice's extracted-data snapshot by dotted
field path and recorded in an append-only history, together with the
confidence the model originally reported for the field. Approval is a
separate step that requires a completed review.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from invoice_ocr.extraction.schema import CompanyInfo, ExtractedData
from invoice_ocr.shared.errors import (
    ConflictError,
    CorrectionValidationError,
    InvoiceNotFoundError,
    UnsupportedFieldPathError,
)
from invoice_ocr.store.models import CorrectionRecord, Invoice, InvoiceStatus, utcnow
from invoice_ocr.store.repository import OcrRepository

logger = logging.getLogger(__name__)

# Correction field path -> confidence score key. Addresses and currency have
# no score of their own and borrow a related one.
CONFIDENCE_KEY_MAP: dict[str, str] = {
    "invoice_number": "invoice_number",
    "issue_date": "issue_date",
    "due_date": "due_date",
    "seller.name": "seller_name",
    "seller.nip": "seller_nip",
    "seller.address": "seller_name",
    "buyer.name": "buyer_name",
    "buyer.nip": "buyer_nip",
    "buyer.address": "buyer_name",
    "currency": "gross_amount",
    "net_amount": "net_amount",
    "vat_amount": "vat_amount",
    "gross_amount": "gross_amount",
}

COMPANY_FIELDS = ("seller", "buyer")


class Correction(BaseModel):
    """Single field correction submitted by a reviewer."""

    field_name: str = Field(..., min_length=1)
    corrected_value: str | int | float
    original_value: str | int | float | None = None


class CorrectionOutcome(BaseModel):
    invoice_id: str
    corrections_applied: int
    reviewed_at: datetime
    reviewed_by: str
    updated_data: dict[str, Any]


class ApprovalOutcome(BaseModel):
    invoice_id: str
    approved_at: datetime
    approved_by: str
    status: InvoiceStatus


def split_field_path(field_name: str) -> tuple[str, ...]:
    """Split and check a dotted correction path.

    Only top-level invoice fields and ``seller.*`` / ``buyer.*`` fields are
    correctable.

    Raises:
        UnsupportedFieldPathError: For deeper or unknown paths
    """
    parts = tuple(field_name.split("."))
    if len(parts) == 1 and parts[0] in ExtractedData.model_fields:
        return parts
    if len(parts) == 2 and parts[0] in COMPANY_FIELDS and parts[1] in CompanyInfo.model_fields:
        return parts
    raise UnsupportedFieldPathError(field_name)


def field_confidence(confidence_scores: dict[str, Any] | None, field_name: str) -> int | None:
    key = CONFIDENCE_KEY_MAP.get(field_name)
    if key is None or not confidence_scores:
        return None
    score = confidence_scores.get(key)
    return int(score) if score is not None else None


class ReviewService:
    """Applies reviewer corrections and approves reviewed invoices."""

    def __init__(self, repository: OcrRepository) -> None:
        self.repository = repository

    def _get_invoice(self, invoice_id: str, tenant_id: str) -> Invoice:
        invoice = self.repository.get_invoice(invoice_id, tenant_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def submit_corrections(
        self,
        invoice_id: str,
        tenant_id: str,
        corrections: list[Correction],
        actor: str,
        notes: str | None = None,
    ) -> CorrectionOutcome:
        """Apply corrections to an invoice and record them.

        Either every correction is applied and recorded, or none is.

        Args:
            invoice_id: Invoice to correct
            tenant_id: Tenant the reviewer acts for
            corrections: Field corrections in submission order
            actor: Reviewer identity
            notes: Optional free-text note stored with each record

        Returns:
            CorrectionOutcome with the updated extracted data

        Raises:
            InvoiceNotFoundError: If the invoice is unknown to the tenant
            ConflictError: If the invoice is approved, being processed, or has no extraction
            UnsupportedFieldPathError: If any path is not correctable
            CorrectionValidationError: If the corrected data is structurally invalid
        """
        invoice = self._get_invoice(invoice_id, tenant_id)
        if invoice.approved_at is not None:
            raise ConflictError("Cannot edit approved invoice")
        if self.repository.find_active_job(invoice_id) is not None:
            raise ConflictError("Invoice is being processed by an OCR job")
        if invoice.extracted_data is None:
            raise ConflictError("Invoice has no extracted data to review")

        paths = [split_field_path(c.field_name) for c in corrections]

        updated: dict[str, Any] = dict(invoice.extracted_data)
        for path, correction in zip(paths, corrections, strict=True):
            if len(path) == 1:
                updated[path[0]] = correction.corrected_value
            else:
                company = dict(updated.get(path[0]) or {})
                company[path[1]] = correction.corrected_value
                updated[path[0]] = company

        try:
            data = ExtractedData.model_validate(updated)
        except ValidationError as e:
            raise CorrectionValidationError(f"Corrected data is invalid: {e}") from e

        reviewed_at = utcnow()
        records = [
            CorrectionRecord(
                tenant_id=tenant_id,
                invoice_id=invoice_id,
                field_name=correction.field_name,
                original_value=(
                    str(correction.original_value)
                    if correction.original_value is not None
                    else None
                ),
                corrected_value=str(correction.corrected_value),
                original_confidence=field_confidence(
                    invoice.confidence_scores, correction.field_name
                ),
                corrected_by=actor,
                notes=notes,
                created_at=reviewed_at,
            )
            for correction in corrections
        ]

        updated_data = data.model_dump(mode="json")
        self.repository.save_review(
            invoice_id,
            {
                "extracted_data": updated_data,
                "invoice_number": data.invoice_number,
                "issue_date": data.issue_date,
                "due_date": data.due_date,
                "net_amount": data.net_amount,
                "vat_amount": data.vat_amount,
                "gross_amount": data.gross_amount,
                "currency": data.currency,
                "seller_name": data.seller.name,
                "seller_nip": data.seller.nip,
                "buyer_name": data.buyer.name,
                "buyer_nip": data.buyer.nip,
                "reviewed_at": reviewed_at,
                "reviewed_by": actor,
            },
            records,
        )

        logger.info(f"Applied {len(records)} correction(s) to invoice {invoice_id} by {actor}")
        return CorrectionOutcome(
            invoice_id=invoice_id,
            corrections_applied=len(records),
            reviewed_at=reviewed_at,
            reviewed_by=actor,
            updated_data=updated_data,
        )

    def approve(self, invoice_id: str, tenant_id: str, actor: str) -> ApprovalOutcome:
        """Approve a reviewed invoice, moving it to VERIFIED.

        Raises:
            InvoiceNotFoundError: If the invoice is unknown to the tenant
            ConflictError: If the invoice was not reviewed or is already approved
        """
        invoice = self._get_invoice(invoice_id, tenant_id)
        if invoice.reviewed_at is None:
            raise ConflictError("Invoice must be reviewed before approval")
        if invoice.approved_at is not None:
            raise ConflictError("Invoice already approved")

        approved_at = utcnow()
        if not self.repository.approve_invoice(invoice_id, actor, approved_at):
            # Lost a race against another approval
            raise ConflictError("Invoice already approved")

        logger.info(f"Invoice {invoice_id} approved by {actor}")
        return ApprovalOutcome(
            invoice_id=invoice_id,
            approved_at=approved_at,
            approved_by=actor,
            status=InvoiceStatus.VERIFIED,
        )
