"""Shared fixtures: settings, an in-memory database and sample extractions."""

import json
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from invoice_ocr.extraction.schema import (
    ConfidenceScores,
    ExtractedData,
    ExtractionResult,
    TokenUsage,
)
from invoice_ocr.ocr.service import RecognitionResult
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.container import ServiceContainer, build_container
from invoice_ocr.store.database import Database
from invoice_ocr.store.models import Invoice, InvoiceStatus, new_id
from invoice_ocr.store.repository import OcrRepository

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"


@pytest.fixture
def settings() -> Settings:
    """Test settings backed by an in-memory database."""
    return Settings(
        database_url="sqlite://",
        storage_access_key="test-access-key",
        storage_secret_key="test-secret-key",
        ocr_max_retries=3,
        retry_backoff_seconds=10,
    )


@pytest.fixture
def database(settings: Settings) -> Iterator[Database]:
    db = Database(settings.database_url)
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def repository(database: Database) -> OcrRepository:
    return OcrRepository(database)


@pytest.fixture
def make_invoice(repository: OcrRepository) -> Callable[..., Invoice]:
    """Factory persisting an invoice for TENANT_ID unless overridden."""

    def _make(**overrides: Any) -> Invoice:
        values: dict[str, Any] = {
            "id": new_id(),
            "tenant_id": TENANT_ID,
            "file_path": f"{TENANT_ID}/invoice.png",
            "status": InvoiceStatus.UPLOADED,
        }
        values.update(overrides)
        return repository.add_invoice(Invoice(**values))

    return _make


@pytest.fixture
def extraction_payload() -> dict[str, Any]:
    """A consistent Polish invoice as returned by the model."""
    return {
        "extracted_data": {
            "invoice_number": "FV/2024/001",
            "issue_date": "2024-03-15",
            "due_date": "2024-03-29",
            "seller": {"name": "ACME Sp. z o.o.", "nip": "1234567890", "address": "Warszawa"},
            "buyer": {"name": "Klient S.A.", "nip": "0987654321", "address": None},
            "currency": "PLN",
            "net_amount": 1000.00,
            "vat_amount": 230.00,
            "gross_amount": 1230.00,
            "line_items": [
                {
                    "description": "Usługa programistyczna",
                    "quantity": 1,
                    "unit_price": 1000.00,
                    "vat_rate": 23,
                    "net": 1000.00,
                    "vat": 230.00,
                    "gross": 1230.00,
                }
            ],
            "invoice_type": "SALE",
        },
        "confidence": {
            "invoice_number": 92,
            "issue_date": 92,
            "due_date": 92,
            "seller_name": 92,
            "seller_nip": 92,
            "buyer_name": 92,
            "buyer_nip": 92,
            "net_amount": 92,
            "vat_amount": 92,
            "gross_amount": 92,
            "line_items": 92,
        },
    }


@pytest.fixture
def extraction_json(extraction_payload: dict[str, Any]) -> str:
    return json.dumps(extraction_payload)


@pytest.fixture
def make_extraction(extraction_payload: dict[str, Any]) -> Callable[..., ExtractionResult]:
    """Factory for ExtractionResult with optional field/score overrides."""

    def _make(scores: dict[str, int] | None = None, **fields: Any) -> ExtractionResult:
        data = dict(extraction_payload["extracted_data"])
        data.update(fields)
        confidence = dict(extraction_payload["confidence"])
        confidence.update(scores or {})
        return ExtractionResult(
            fields=ExtractedData.model_validate(data),
            confidence=ConfidenceScores.model_validate(confidence),
            usage=TokenUsage(prompt_tokens=900, completion_tokens=300, total_tokens=1200),
            provider="openai",
        )

    return _make


@pytest.fixture
def valid_data(make_extraction: Callable[..., ExtractionResult]) -> ExtractedData:
    return make_extraction().fields


@pytest.fixture
def storage() -> MagicMock:
    mock = MagicMock()
    mock.get_presigned_url.return_value = "http://localhost:9000/invoices/signed"
    mock.download.return_value = b"\x89PNG fake image"
    mock.health_check.return_value = True
    return mock


@pytest.fixture
def text_recognizer() -> MagicMock:
    mock = MagicMock()
    mock.recognize.return_value = RecognitionResult(
        text="Faktura VAT FV/2024/001\nRazem do zapłaty 1230,00 PLN",
        confidence=87.5,
        word_count=42,
    )
    return mock


@pytest.fixture
def extraction_provider(make_extraction: Callable[..., ExtractionResult]) -> MagicMock:
    mock = MagicMock()
    mock.provider_name = "openai"
    mock.extract.return_value = make_extraction()
    return mock


@pytest.fixture
def publisher() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def container(
    settings: Settings,
    database: Database,
    storage: MagicMock,
    text_recognizer: MagicMock,
    extraction_provider: MagicMock,
    publisher: AsyncMock,
) -> ServiceContainer:
    """Fully wired services with mocked adapters and a real in-memory store."""
    return build_container(
        settings,
        publisher,
        database=database,
        storage=storage,
        recognizer=text_recognizer,
        extraction_provider=extraction_provider,
    )
