"""Abstract base class for extraction providers.

Enables switching between different extraction providers (OpenAI, Ollama)
while maintaining consistent interface and type safety.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError

from invoice_ocr.extraction.schema import ExtractionResponse, ExtractionResult, TokenUsage
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import ExtractionError

logger = logging.getLogger(__name__)


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    Providers never retry internally and never return partial results: every
    failure is raised as ExtractionError.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def extract(self, raw_text: str) -> ExtractionResult:
        """Extract structured invoice data from OCR text.

        Args:
            raw_text: Raw text from OCR

        Returns:
            ExtractionResult with fields, confidence and token usage

        Raises:
            ExtractionError: If the upstream call fails or returns unusable content
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics."""
        pass

    @staticmethod
    def _require_text(raw_text: str) -> None:
        if not raw_text or not raw_text.strip():
            raise ExtractionError("Empty OCR text provided")

    def _parse_response(self, content: str | None, usage: TokenUsage) -> ExtractionResult:
        """Parse and schema-validate the model's JSON answer.

        Raises:
            ExtractionError: If content is empty, not JSON, or fails validation
        """
        if not content or not content.strip():
            raise ExtractionError(f"No response content from {self.provider_name}")

        try:
            payload = self._load_json(content)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"JSON parsing failed: {e}") from e

        try:
            response = ExtractionResponse.model_validate(payload)
        except ValidationError as e:
            raise ExtractionError(
                f"AI extraction produced invalid data structure: {e.error_count()} error(s): "
                f"{e.errors()[0]['loc']} {e.errors()[0]['msg']}"
            ) from e

        return ExtractionResult(
            fields=response.extracted_data,
            confidence=response.confidence,
            usage=usage,
            provider=self.provider_name,
        )

    @staticmethod
    def _load_json(content: str) -> dict[str, Any]:
        """Load a JSON object, tolerating markdown code fences around it."""
        fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if fenced:
            content = fenced.group(1)
        else:
            embedded = re.search(r"\{[\s\S]*\}", content)
            if embedded:
                content = embedded.group(0)

        result = json.loads(content.strip())
        if not isinstance(result, dict):
            raise json.JSONDecodeError("Expected a JSON object", content, 0)
        return result
