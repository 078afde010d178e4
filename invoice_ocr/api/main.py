"""FastAPI application for the invoice OCR pipeline.

Exposes:
- Health, readiness and Prometheus metrics endpoints
- OCR job submission and status polling
- Manual review corrections and approval

Run with: uvicorn invoice_ocr.api.main:create_app --factory

Services are built once in the lifespan handler (or passed in by tests) and
reached through ``app.state.container``.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Annotated

from arq import create_pool
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from invoice_ocr.jobs.status import JobStatusView
from invoice_ocr.pipeline.events import ArqEventPublisher
from invoice_ocr.queue.tasks import redis_settings_from
from invoice_ocr.review.ledger import ApprovalOutcome, Correction, CorrectionOutcome
from invoice_ocr.shared import metrics
from invoice_ocr.shared.config import get_settings
from invoice_ocr.shared.container import ServiceContainer, build_container
from invoice_ocr.shared.errors import (
    ConflictError,
    CorrectionValidationError,
    DuplicateJobError,
    InvalidInvoiceStateError,
    InvoiceNotFoundError,
    InvoiceOcrError,
    JobNotFoundError,
    UnsupportedFieldPathError,
)
from invoice_ocr.shared.logging_setup import configure_logging
from invoice_ocr.store.models import JobStatus, as_utc

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[InvoiceOcrError], int] = {
    InvoiceNotFoundError: status.HTTP_404_NOT_FOUND,
    JobNotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateJobError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    InvalidInvoiceStateError: status.HTTP_400_BAD_REQUEST,
    UnsupportedFieldPathError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CorrectionValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, bool]


class ProcessRequest(BaseModel):
    invoice_id: uuid.UUID


class ProcessResponse(BaseModel):
    """Accepted OCR job."""

    job_id: str
    invoice_id: str
    status: JobStatus
    created_at: datetime
    estimated_completion: datetime


class ReviewRequest(BaseModel):
    corrections: list[Correction] = Field(..., min_length=1)
    notes: str | None = Field(None, max_length=500)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def require_tenant(x_tenant_id: Annotated[str | None, Header()] = None) -> str:
    if not x_tenant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tenant ID required")
    return x_tenant_id


def require_actor(x_user_id: Annotated[str | None, Header()] = None) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id


def _require_uuid(value: str, label: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {label} ID format"
        ) from None
    return value


Container = Annotated[ServiceContainer, Depends(get_container)]
TenantId = Annotated[str, Depends(require_tenant)]
ActorId = Annotated[str, Depends(require_actor)]


@asynccontextmanager
async def _queue_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services against the real queue for the lifetime of the app."""
    settings = get_settings()
    configure_logging(settings)

    redis = await create_pool(redis_settings_from(settings))
    container = build_container(settings, ArqEventPublisher(redis))
    app.state.container = container
    logger.info(f"{settings.service_name} {settings.service_version} started")
    try:
        yield
    finally:
        container.close()
        await redis.aclose()


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        container: Pre-built services; when omitted they are built on startup

    Returns:
        Configured FastAPI app
    """
    settings = container.settings if container is not None else get_settings()
    app = FastAPI(
        title="Invoice OCR Pipeline",
        description="Asynchronous OCR and AI extraction for Polish invoices",
        version=settings.service_version,
        lifespan=None if container is not None else _queue_lifespan,
    )
    if container is not None:
        app.state.container = container

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Collect request count and duration by method, route and status."""
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        route = request.scope.get("route")
        endpoint = route.path if route is not None else request.url.path
        metrics.http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()
        metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response

    @app.exception_handler(InvoiceOcrError)
    async def pipeline_error_handler(request: Request, exc: InvoiceOcrError) -> JSONResponse:
        status_code = next(
            (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        if status_code >= 500:
            logger.error(f"Unhandled pipeline error on {request.url.path}: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check() -> HealthResponse:
        """Health check endpoint for liveness probe."""
        return HealthResponse(
            status="healthy", version=settings.service_version, service=settings.service_name
        )

    @app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
    def readiness_check(response: Response, services: Container) -> ReadinessResponse:
        """Readiness check endpoint for Kubernetes readiness probe.

        Returns 503 while the database or object storage is unreachable.
        """
        checks = {
            "database": services.database.ping(),
            "storage": services.storage.health_check(),
        }
        ready = all(checks.values())
        if not ready:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(ready=ready, checks=checks)

    @app.get("/metrics", tags=["Monitoring"])
    def get_metrics() -> Response:
        """Prometheus metrics endpoint."""
        metrics_data, content_type = metrics.get_metrics()
        return Response(content=metrics_data, media_type=content_type)

    @app.post(
        "/api/v1/ocr/process",
        response_model=ProcessResponse,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["OCR"],
    )
    async def process_invoice(
        body: ProcessRequest, services: Container, tenant_id: TenantId
    ) -> ProcessResponse:
        """Queue an uploaded invoice for OCR and extraction.

        Returns 404 for unknown invoices, 400 for invoices that were already
        processed and 409 while another job for the invoice is active.
        """
        job = await services.orchestrator.enqueue(str(body.invoice_id), tenant_id)
        created_at = as_utc(job.created_at)
        return ProcessResponse(
            job_id=job.id,
            invoice_id=job.invoice_id,
            status=job.status,
            created_at=created_at,
            estimated_completion=created_at
            + timedelta(seconds=services.settings.estimated_processing_seconds),
        )

    @app.get(
        "/api/v1/ocr/status/{job_id}",
        response_model=JobStatusView,
        response_model_exclude_none=True,
        tags=["OCR"],
    )
    def get_job_status(job_id: str, services: Container, tenant_id: TenantId) -> JobStatusView:
        """Poll the status of an OCR job.

        Jobs of other tenants are reported as not found.
        """
        _require_uuid(job_id, "job")
        return services.status_service.get_status(job_id, tenant_id)

    @app.post(
        "/api/v1/invoices/{invoice_id}/review",
        response_model=CorrectionOutcome,
        tags=["Review"],
    )
    def review_invoice(
        invoice_id: str,
        body: ReviewRequest,
        services: Container,
        tenant_id: TenantId,
        actor: ActorId,
    ) -> CorrectionOutcome:
        """Submit manual corrections to extracted invoice data.

        Corrections are recorded for later model improvement; the invoice is
        not approved by this call.
        """
        _require_uuid(invoice_id, "invoice")
        return services.review_service.submit_corrections(
            invoice_id, tenant_id, body.corrections, actor, body.notes
        )

    @app.post(
        "/api/v1/invoices/{invoice_id}/approve",
        response_model=ApprovalOutcome,
        tags=["Review"],
    )
    def approve_invoice(
        invoice_id: str, services: Container, tenant_id: TenantId, actor: ActorId
    ) -> ApprovalOutcome:
        """Approve a reviewed invoice (status becomes VERIFIED)."""
        _require_uuid(invoice_id, "invoice")
        return services.review_service.approve(invoice_id, tenant_id, actor)

    return app
