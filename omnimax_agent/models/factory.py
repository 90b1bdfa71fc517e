"""Chat model factory for multi-provider support.

Each supported back-end is one ModelProvider member; ``create_chat_model``
dispatches on the enum, so an unsupported provider is rejected before any
back-end package is imported.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from langchain_core.language_models.chat_models import BaseChatModel

from omnimax_agent.orchestration.errors import ConfigurationError
from omnimax_agent.orchestration.state import ModelSelection

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
OLLAMA_BASE_URL = "http://localhost:11434/v1"

ModelFactory = Callable[[ModelSelection], BaseChatModel]


class ModelConfigurationError(ConfigurationError):
    """Raised when a model back-end cannot be created."""

    pass


class ModelProvider(Enum):
    """Supported model back-ends."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROQ = "groq"
    OLLAMA = "ollama"
    GEMINI = "gemini"

    @property
    def requires_api_key(self) -> bool:
        return self is not ModelProvider.OLLAMA

    @classmethod
    def parse(cls, value: str | None) -> "ModelProvider":
        """Resolve a provider identifier.

        Raises:
            ModelConfigurationError: If the identifier is missing or unsupported.
        """
        if not value:
            raise ModelConfigurationError("No model provider configured")
        try:
            return cls(value.strip().lower())
        except ValueError:
            supported = ", ".join(member.value for member in cls)
            raise ModelConfigurationError(
                f"Unsupported provider: {value!r}. Supported: {supported}"
            ) from None


def _missing_package(provider: ModelProvider, package: str, exc: ImportError) -> ModelConfigurationError:
    return ModelConfigurationError(
        f"Provider {provider.value!r} requires the {package!r} package: {exc}"
    )


def create_chat_model(selection: ModelSelection, *, max_retries: int = 0) -> BaseChatModel:
    """Create the chat model for a selection.

    Args:
        selection: Provider, model name, credential and endpoint override.
        max_retries: Retries delegated to the back-end client.

    Returns:
        A LangChain chat model.

    Raises:
        ModelConfigurationError: If the selection cannot produce a model.
    """
    provider = ModelProvider.parse(selection.provider)

    if not selection.model:
        raise ModelConfigurationError(f"No model name configured for provider {provider.value!r}")
    if provider.requires_api_key and not selection.api_key:
        raise ModelConfigurationError(f"No API key configured for provider {provider.value!r}")

    logger.info(f"Creating chat model for provider: {provider.value}, model: {selection.model}")

    if provider in (ModelProvider.OPENAI, ModelProvider.GROQ, ModelProvider.OLLAMA):
        try:
            from langchain_openai import ChatOpenAI
        except ImportError as exc:
            raise _missing_package(provider, "langchain-openai", exc) from exc

        base_url = selection.base_url
        if base_url is None and provider is ModelProvider.GROQ:
            base_url = GROQ_BASE_URL
        elif base_url is None and provider is ModelProvider.OLLAMA:
            base_url = OLLAMA_BASE_URL

        return ChatOpenAI(
            model=selection.model,
            api_key=selection.api_key or "ollama",
            base_url=base_url,
            max_retries=max_retries,
        )

    if provider is ModelProvider.ANTHROPIC:
        try:
            from langchain_anthropic import ChatAnthropic
        except ImportError as exc:
            raise _missing_package(provider, "langchain-anthropic", exc) from exc

        kwargs = {"base_url": selection.base_url} if selection.base_url else {}
        return ChatAnthropic(
            model=selection.model,
            api_key=selection.api_key,
            max_retries=max_retries,
            **kwargs,
        )

    try:
        from langchain_google_genai import ChatGoogleGenerativeAI
    except ImportError as exc:
        raise _missing_package(provider, "langchain-google-genai", exc) from exc

    return ChatGoogleGenerativeAI(
        model=selection.model,
        google_api_key=selection.api_key,
        max_retries=max_retries,
    )
