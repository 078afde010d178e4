"""Ollama-based extraction provider for self-hosted LLM inference.

Uses a local Ollama server for structured data extraction from OCR text.
Supports data sovereignty requirements by running entirely on-premises.

See: https://ollama.ai/
"""

import logging

import httpx

from invoice_ocr.extraction.base import ExtractionProvider
from invoice_ocr.extraction.prompts import SYSTEM_PROMPT, build_extraction_prompt
from invoice_ocr.extraction.schema import ExtractionResult, TokenUsage
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import ExtractionError

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(ExtractionProvider):
    """Ollama-based extraction provider.

    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=settings.extraction_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except (httpx.HTTPError, ValueError, AttributeError):
            return False

    def extract(self, raw_text: str) -> ExtractionResult:
        """Extract structured invoice data from OCR text using Ollama.

        Args:
            raw_text: Raw text from OCR

        Returns:
            ExtractionResult with provider='ollama'

        Raises:
            ExtractionError: On HTTP failure or invalid output
        """
        self._require_text(raw_text)

        try:
            response = self._client.post(
                f"{self._base_url}/api/generate",
                json={
                    "model": self._model,
                    "system": SYSTEM_PROMPT,
                    "prompt": build_extraction_prompt(raw_text),
                    "format": "json",
                    "stream": False,
                    "options": {
                        "temperature": self.settings.extraction_temperature,
                        "num_predict": self.settings.extraction_max_tokens,
                    },
                },
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Ollama extraction call failed: {e}")
            raise ExtractionError(f"AI extraction failed: {e}") from e
        except ValueError as e:
            logger.error(f"Ollama returned a non-JSON body: {e}")
            raise ExtractionError(f"Unexpected response from ollama: {e}") from e

        if not isinstance(body, dict):
            raise ExtractionError(
                f"Unexpected response from ollama: {type(body).__name__} body"
            )

        prompt_tokens = int(body.get("prompt_eval_count") or 0)
        completion_tokens = int(body.get("eval_count") or 0)
        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

        result = self._parse_response(body.get("response"), usage)
        logger.info(f"Ollama extraction completed ({usage.total_tokens} tokens)")
        return result
