"""Generic sequential step runner.

Each step is a ``(ProcessingStep, operation)`` pair. The runner writes one
processing-log entry per transition (STARTED, then COMPLETED or FAILED),
records step durations, and wraps failures in StepFailedError classified by
the caller-supplied predicate.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from invoice_ocr.shared.errors import StepFailedError
from invoice_ocr.shared.metrics import pipeline_step_duration_seconds
from invoice_ocr.store.models import ProcessingStep, StepStatus
from invoice_ocr.store.repository import OcrRepository

logger = logging.getLogger(__name__)

# An operation returns the metadata stored on its COMPLETED log entry.
StepOperation = Callable[[], Awaitable[dict[str, Any] | None]]


class StepRunner:
    """Runs pipeline steps strictly in order for a single job."""

    def __init__(
        self,
        repository: OcrRepository,
        job_id: str,
        tenant_id: str,
        is_retriable: Callable[[Exception], bool],
    ) -> None:
        self.repository = repository
        self.job_id = job_id
        self.tenant_id = tenant_id
        self.is_retriable = is_retriable

    async def run(self, steps: Sequence[tuple[ProcessingStep, StepOperation]]) -> None:
        for step, operation in steps:
            await self.run_step(step, operation)

    async def run_step(self, step: ProcessingStep, operation: StepOperation) -> dict[str, Any] | None:
        """Run one step and log its transitions.

        Raises:
            StepFailedError: If the operation raises
        """
        self.repository.append_log(self.job_id, self.tenant_id, step, StepStatus.STARTED)
        started = time.perf_counter()

        try:
            metadata = await operation()
        except Exception as e:
            elapsed = time.perf_counter() - started
            pipeline_step_duration_seconds.labels(step=step.value, status="failed").observe(elapsed)
            message = str(e) or type(e).__name__
            retriable = self.is_retriable(e)
            logger.error(
                f"Step {step} failed for job {self.job_id} "
                f"({'retriable' if retriable else 'non-retriable'}): {message}"
            )
            self.repository.append_log(
                self.job_id, self.tenant_id, step, StepStatus.FAILED, {"error": message}
            )
            raise StepFailedError(step.value, self.job_id, e, retriable) from e

        elapsed = time.perf_counter() - started
        pipeline_step_duration_seconds.labels(step=step.value, status="completed").observe(elapsed)
        self.repository.append_log(
            self.job_id, self.tenant_id, step, StepStatus.COMPLETED, metadata
        )
        logger.info(f"Step {step} completed for job {self.job_id} in {elapsed:.2f}s")
        return metadata
