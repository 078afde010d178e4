"""Invoice data models for structured extraction.

The schema mirrors the JSON structure the extraction prompt asks for. It
checks shape and types only; business rules (tax-ID format, arithmetic
consistency, required identifiers) belong to the validation engine so that
they surface as review findings instead of extraction failures.
"""

from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CompanyInfo(BaseModel):
    """Seller or buyer details."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = Field(None, description="Company name")
    nip: str | None = Field(None, description="Tax identification number (NIP)")
    address: str | None = Field(None, description="Postal address")

    @field_validator("nip", mode="before")
    @classmethod
    def strip_separators(cls, value: object) -> object:
        # NIPs are often printed as XXX-XXX-XX-XX
        if isinstance(value, str):
            return value.replace("-", "").replace(" ", "")
        if isinstance(value, int):
            return str(value)
        return value


class LineItem(BaseModel):
    """Single invoice position."""

    description: str
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    vat_rate: int | None = None
    net: Decimal | None = None
    vat: Decimal | None = None
    gross: Decimal | None = None


class ExtractedData(BaseModel):
    """Structured invoice data extracted from OCR text."""

    model_config = ConfigDict(extra="ignore")

    invoice_number: str | None = Field(None, description="Invoice number, e.g. FV/2024/001")
    issue_date: date | None = Field(None, description="Date the invoice was issued")
    due_date: date | None = Field(None, description="Payment due date")

    seller: CompanyInfo = Field(default_factory=CompanyInfo)
    buyer: CompanyInfo = Field(default_factory=CompanyInfo)

    currency: Literal["PLN", "EUR", "USD"] = Field("PLN", description="ISO 4217 currency")
    net_amount: Decimal = Field(..., description="Total before VAT")
    vat_amount: Decimal = Field(..., description="Total VAT")
    gross_amount: Decimal = Field(..., description="Total including VAT")

    line_items: list[LineItem] = Field(default_factory=list)
    invoice_type: Literal["SALE", "PURCHASE", "CORRECTION"] = "SALE"

    @field_validator("seller", "buyer", mode="before")
    @classmethod
    def none_to_empty_company(cls, value: object) -> object:
        return {} if value is None else value


class ConfidenceScores(BaseModel):
    """Per-field extraction confidence (0-100)."""

    invoice_number: int = Field(0, ge=0, le=100)
    issue_date: int = Field(0, ge=0, le=100)
    due_date: int = Field(0, ge=0, le=100)
    seller_name: int = Field(0, ge=0, le=100)
    seller_nip: int = Field(0, ge=0, le=100)
    buyer_name: int = Field(0, ge=0, le=100)
    buyer_nip: int = Field(0, ge=0, le=100)
    net_amount: int = Field(0, ge=0, le=100)
    vat_amount: int = Field(0, ge=0, le=100)
    gross_amount: int = Field(0, ge=0, le=100)
    line_items: int = Field(0, ge=0, le=100)


class TokenUsage(BaseModel):
    """Token accounting reported by the extraction backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ExtractionResponse(BaseModel):
    """Top-level JSON object the model must return."""

    extracted_data: ExtractedData
    confidence: ConfidenceScores


class ExtractionResult(BaseModel):
    """Result of a successful extraction.

    Attributes:
        fields: Structured invoice data
        confidence: Per-field confidence scores
        usage: Token usage of the upstream call
        provider: Name of provider that performed extraction (e.g., 'openai', 'ollama')
    """

    fields: ExtractedData
    confidence: ConfidenceScores
    usage: TokenUsage = Field(default_factory=TokenUsage)
    provider: str
