"""Business-rule validation of extracted invoice data.

Rules run in a fixed order and every violation is collected, so callers
always see the complete list. Violations are data-quality findings that
route an invoice to review; they are never raised as errors.
"""

import re
from decimal import Decimal

from pydantic import BaseModel, Field

from invoice_ocr.extraction.schema import ExtractedData

NIP_PATTERN = re.compile(r"[0-9]{10}")

# Rounding tolerance for gross = net + vat, in currency units
AMOUNT_TOLERANCE = Decimal("1")


class ValidationReport(BaseModel):
    """Outcome of validating one extraction.

    Attributes:
        valid: True when no rule was violated
        errors: Human-readable violations in rule order
    """

    valid: bool
    errors: list[str] = Field(default_factory=list)


def _valid_nip(nip: str | None) -> bool:
    return nip is not None and NIP_PATTERN.fullmatch(nip) is not None


def validate_extracted_data(data: ExtractedData) -> ValidationReport:
    """Check extracted invoice data for basic consistency.

    Args:
        data: Structured invoice data

    Returns:
        ValidationReport listing every violated rule
    """
    errors: list[str] = []

    if not data.invoice_number or not data.invoice_number.strip():
        errors.append("Invoice number is missing")

    if data.issue_date is None:
        errors.append("Issue date is missing")

    if not _valid_nip(data.seller.nip):
        errors.append(f"Seller NIP invalid: {data.seller.nip}")
    if not _valid_nip(data.buyer.nip):
        errors.append(f"Buyer NIP invalid: {data.buyer.nip}")

    calculated_gross = data.net_amount + data.vat_amount
    if abs(calculated_gross - data.gross_amount) > AMOUNT_TOLERANCE:
        errors.append(
            f"Amount mismatch: net ({data.net_amount}) + VAT ({data.vat_amount}) "
            f"!= gross ({data.gross_amount})"
        )

    if data.net_amount < 0 or data.vat_amount < 0 or data.gross_amount < 0:
        errors.append("Amounts cannot be negative")

    return ValidationReport(valid=not errors, errors=errors)
