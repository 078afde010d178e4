"""arq worker runner.

Run with: python -m invoice_ocr.queue.worker

This module configures and runs the OCR pipeline worker.
"""

import logging

from arq import run_worker

from invoice_ocr.queue.tasks import WorkerSettings
from invoice_ocr.shared.config import get_settings
from invoice_ocr.shared.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()
    configure_logging(settings)

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")

    WorkerSettings.configure(settings)
    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
