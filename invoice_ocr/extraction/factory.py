"""Extraction provider selection.

The worker and the API both build their provider here from
``Settings.extraction_provider``. Deployments that keep invoices on-premises
select ``ollama``; everything else goes to the OpenAI API.
"""

import logging

from invoice_ocr.extraction.base import ExtractionProvider
from invoice_ocr.extraction.ollama_provider import OllamaExtractionProvider
from invoice_ocr.extraction.openai_provider import OpenAIExtractionProvider
from invoice_ocr.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps ``extraction_provider`` values to provider classes.

    Tests and plugins may register extra backends at runtime.
    """

    _providers: dict[str, type[ExtractionProvider]] = {
        "openai": OpenAIExtractionProvider,
        "ollama": OllamaExtractionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Look up the class behind a configured provider name.

        Raises:
            ValueError: If no provider is registered under ``name``
        """
        try:
            return cls._providers[name]
        except KeyError:
            known = ", ".join(sorted(cls._providers))
            raise ValueError(
                f"Unknown extraction provider: '{name}'. Available providers: {known}"
            ) from None

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers)


def create_extraction_provider(settings: Settings) -> ExtractionProvider:
    """Build the invoice extraction provider for this deployment.

    An unreachable provider is still returned, since the model server or API
    key may become available before the first invoice arrives; only a warning
    is logged.

    Raises:
        ValueError: If ``settings.extraction_provider`` is not registered
    """
    name = settings.extraction_provider
    provider = ProviderRegistry.get_provider_class(name)(settings)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{name}' is not available yet; "
            f"invoices will fail at AI_EXTRACT until it is (check API key or model server)"
        )

    logger.info(f"Created extraction provider: {name}")
    return provider
