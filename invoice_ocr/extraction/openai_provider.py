"""OpenAI-based extraction provider for invoice field extraction.

Uses the chat completions API in JSON mode. The provider performs a single
call per extraction; retry policy belongs to the pipeline runtime, so the
SDK's own retries are disabled.
"""

import logging
import os
from typing import Any

from openai import OpenAI, OpenAIError

from invoice_ocr.extraction.base import ExtractionProvider
from invoice_ocr.extraction.prompts import SYSTEM_PROMPT, build_extraction_prompt
from invoice_ocr.extraction.schema import ExtractionResult, TokenUsage
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import ExtractionError

logger = logging.getLogger(__name__)


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI-based extraction provider.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self) -> OpenAI:
        api_key = os.getenv("OPENAI_API_KEY")
        if self._client is None or self._client.api_key != api_key:
            self._client = OpenAI(
                api_key=api_key,
                max_retries=0,
                timeout=self.settings.extraction_timeout_seconds,
            )
        return self._client

    def extract(self, raw_text: str) -> ExtractionResult:
        """Extract structured invoice data from OCR text using OpenAI.

        Args:
            raw_text: Raw text from OCR

        Returns:
            ExtractionResult with provider='openai'

        Raises:
            ExtractionError: On missing configuration, API failure or invalid output
        """
        self._require_text(raw_text)
        if not self.is_available():
            raise ExtractionError("OPENAI_API_KEY environment variable not set")

        try:
            completion = self._create_completion(raw_text)
        except OpenAIError as e:
            logger.error(f"OpenAI extraction call failed: {e}")
            raise ExtractionError(f"AI extraction failed: {e}") from e

        if not completion.choices:
            raise ExtractionError("No response from OpenAI")

        usage = TokenUsage()
        if completion.usage is not None:
            usage = TokenUsage(
                prompt_tokens=completion.usage.prompt_tokens or 0,
                completion_tokens=completion.usage.completion_tokens or 0,
                total_tokens=completion.usage.total_tokens or 0,
            )

        result = self._parse_response(completion.choices[0].message.content, usage)
        logger.info(f"OpenAI extraction completed ({usage.total_tokens} tokens)")
        return result

    def _create_completion(self, raw_text: str) -> Any:
        return self._get_client().chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_extraction_prompt(raw_text)},
            ],
            temperature=self.settings.extraction_temperature,
            max_tokens=self.settings.extraction_max_tokens,
            response_format={"type": "json_object"},
        )
