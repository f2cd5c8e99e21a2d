"""
Centralized LLM construction.

The provider is controlled by Settings.llm_provider:
    - "openai"   -> langchain_openai.ChatOpenAI behind a ChatModelAdapter
    - "scripted" -> ScriptedLLMAdapter (offline, echoes user input)
"""

import structlog

from promptkit.domain.errors import ConfigurationError
from promptkit.infrastructure.config import Settings
from .llm_adapter import LLMAdapter, ChatModelAdapter, ScriptedLLMAdapter

logger = structlog.get_logger(__name__)


def build_llm(settings: Settings) -> LLMAdapter:
    """Build the adapter for the configured provider"""

    provider = settings.llm_provider.lower().strip()

    if provider == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError("An OpenAI API key is required when llm_provider='openai'")

        try:
            from langchain_openai import ChatOpenAI
        except ImportError as e:
            raise ConfigurationError(
                "llm_provider='openai' needs the 'openai' extra: pip install promptkit[openai]"
            ) from e

        model = ChatOpenAI(
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            api_key=settings.openai_api_key,
        )
        logger.info("Building OpenAI LLM", model=settings.llm_model)
        return ChatModelAdapter(model, max_retries=settings.llm_max_retries)

    if provider == "scripted":
        logger.info("Building scripted LLM")
        return ScriptedLLMAdapter()

    raise ConfigurationError(f"Unknown llm_provider '{settings.llm_provider}'")
