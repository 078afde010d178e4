"""Shared configuration management for the invoice OCR pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-ocr-pipeline",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Persistence
    database_url: str = Field(
        default="sqlite:///./invoice_ocr.db",
        description="SQLAlchemy database URL (postgresql+psycopg://... in production)",
    )

    # Queue configuration (arq / Redis)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used by the arq worker and event publisher",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Maximum concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Hard timeout for a single pipeline run in seconds",
    )

    # Pipeline behaviour
    ocr_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retry budget stored on every new OCR job",
    )
    retry_backoff_seconds: int = Field(
        default=10,
        ge=0,
        description="Base delay before a failed job is re-run (multiplied by attempt)",
    )
    ocr_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single recognition call",
    )
    extraction_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound for a single extraction call",
    )
    download_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for downloading the stored document",
    )
    confidence_threshold: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Overall confidence below which an invoice needs review",
    )
    estimated_processing_seconds: int = Field(
        default=30,
        description="Budget used to estimate completion time of a processing job",
    )

    # Extraction provider configuration
    extraction_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description="Extraction provider: openai (cloud API), ollama (self-hosted LLM)",
    )
    extraction_temperature: float = Field(
        default=0.1,
        description="Sampling temperature (low for consistent extraction)",
    )
    extraction_max_tokens: int = Field(
        default=2000,
        description="Completion token limit for a single extraction",
    )
    openai_model: str = Field(
        default="gpt-4-turbo-preview",
        description="OpenAI chat model used for extraction",
    )

    # Ollama configuration (for extraction_provider="ollama")
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="Ollama model to use for extraction (e.g., qwen2.5:7b, llama3.1:8b)",
    )

    # Tesseract configuration
    tesseract_languages: str = Field(
        default="pol+eng",
        description="Tesseract language packs",
    )
    tesseract_psm: int = Field(
        default=3,
        description="Tesseract page segmentation mode",
    )
    tesseract_oem: int = Field(
        default=1,
        description="Tesseract OCR engine mode",
    )
    pdf_render_dpi: int = Field(
        default=300,
        description="Resolution used when rendering the first PDF page for OCR",
    )

    # Storage configuration (S3-compatible object storage)
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Bucket holding uploaded invoice files",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )
    signed_url_expiry_seconds: int = Field(
        default=3600,
        description="Lifetime of the download URL handed to the pipeline",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
