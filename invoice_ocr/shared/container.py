"""Explicit wiring of the pipeline's collaborators.

A container is built once per process (API lifespan or worker startup) and
passed to whatever needs it. Nothing here is cached at module level.
"""

import logging
from dataclasses import dataclass

from invoice_ocr.extraction.base import ExtractionProvider
from invoice_ocr.extraction.factory import create_extraction_provider
from invoice_ocr.jobs.status import JobStatusService
from invoice_ocr.ocr.service import TesseractRecognizer, TextRecognizer
from invoice_ocr.pipeline.events import EventPublisher
from invoice_ocr.pipeline.orchestrator import OcrOrchestrator
from invoice_ocr.review.ledger import ReviewService
from invoice_ocr.shared.config import Settings
from invoice_ocr.storage.service import StorageService
from invoice_ocr.store.database import Database
from invoice_ocr.store.repository import OcrRepository

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    repository: OcrRepository
    storage: StorageService
    recognizer: TextRecognizer
    extraction_provider: ExtractionProvider
    publisher: EventPublisher
    orchestrator: OcrOrchestrator
    status_service: JobStatusService
    review_service: ReviewService

    def close(self) -> None:
        self.storage.close()
        self.database.dispose()
        logger.info("Service container closed")


def build_container(
    settings: Settings,
    publisher: EventPublisher,
    *,
    database: Database | None = None,
    storage: StorageService | None = None,
    recognizer: TextRecognizer | None = None,
    extraction_provider: ExtractionProvider | None = None,
) -> ServiceContainer:
    """Construct every service from settings.

    Args:
        settings: Application settings
        publisher: Outbound event channel
        database: Database to use instead of one built from settings.database_url
        storage: Storage service override
        recognizer: Text recognizer override
        extraction_provider: Extraction provider override

    Returns:
        Fully wired ServiceContainer
    """
    database = database or Database(settings.database_url)
    database.create_schema()
    repository = OcrRepository(database)

    storage = storage or StorageService(settings)
    recognizer = recognizer or TesseractRecognizer(settings)
    extraction_provider = extraction_provider or create_extraction_provider(settings)

    orchestrator = OcrOrchestrator(
        settings=settings,
        repository=repository,
        storage=storage,
        recognizer=recognizer,
        extraction_provider=extraction_provider,
        publisher=publisher,
    )

    logger.info(
        f"Services initialized (provider={extraction_provider.provider_name}, "
        f"database={database.engine.url.get_backend_name()})"
    )
    return ServiceContainer(
        settings=settings,
        database=database,
        repository=repository,
        storage=storage,
        recognizer=recognizer,
        extraction_provider=extraction_provider,
        publisher=publisher,
        orchestrator=orchestrator,
        status_service=JobStatusService(settings, repository),
        review_service=ReviewService(repository),
    )
