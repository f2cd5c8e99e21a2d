"""
infrastructure.config - Typed, injectable configuration.

Construct via Settings.from_env() in the service, or pass explicitly in tests.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


ENV_PREFIX = "PROMPTKIT_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


class Settings(BaseModel):
    """Centralized configuration for promptkit"""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "promptkit"

    # LLM provider. Allowed: "openai", "scripted"
    llm_provider: str = "scripted"
    llm_model: str = "gpt-4.1-mini"
    llm_temperature: float = 0.0
    llm_max_retries: int = Field(default=3, ge=1)
    openai_api_key: str = ""

    # Orchestration
    max_iterations: int = Field(default=8, ge=1)
    max_refinements: int = Field(default=2, ge=0)
    max_context_items: int = Field(default=8, ge=0)
    tool_timeout_seconds: float = Field(default=30.0, gt=0)

    # Cache
    cache_ttl_seconds: int = Field(default=3600, ge=1)

    # Sessions idle longer than this are released from every store
    session_ttl_seconds: int = Field(default=3600, ge=1)
    session_sweep_interval_seconds: int = Field(default=60, ge=1)

    # Prompt definitions loaded at startup, JSON files
    prompts_dir: str = ""

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8000
    ws_stale_after_seconds: int = Field(default=300, ge=1)

    # Langfuse tracing, disabled unless both keys are present
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_host: str = "https://cloud.langfuse.com"

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from PROMPTKIT_* environment variables"""

        values = {}
        for name in cls.model_fields:
            raw = _env(name.upper())
            if raw is not None:
                values[name] = raw

        # Fall back to the provider's conventional variable
        if "openai_api_key" not in values and os.getenv("OPENAI_API_KEY"):
            values["openai_api_key"] = os.getenv("OPENAI_API_KEY")

        return cls(**values)
