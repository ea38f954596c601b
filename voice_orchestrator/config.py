from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import NonNegativeInt, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the orchestrator.

    Values are loaded from environment variables by default and may be
    overridden via CLI flags by the application entrypoint.
    """

    # Provider selection
    provider: Literal["openai", "azure"] = "openai"

    # OpenAI / API configuration
    # Note: allow empty by default so CLI/tests can run without a key.
    # The reasoning provider validates presence when it builds its client.
    openai_api_key: str = ""
    openai_base_url: str | None = None

    # Azure OpenAI configuration
    azure_openai_api_key: str = ""
    azure_openai_endpoint: str | None = None
    azure_openai_api_version: str = "2024-07-01-preview"

    # Reasoning step
    model: str = "gpt-4o-mini"
    fallback_models: list[str] = []
    temperature: float = 0.7
    max_tokens: PositiveInt | None = None
    reasoning_timeout_s: PositiveFloat = 15.0
    reasoning_max_retries: NonNegativeInt = 2
    retry_backoff_base: PositiveFloat = 0.5
    retry_backoff_max: PositiveFloat = 4.0
    max_tool_iterations: PositiveInt = 10

    # Agent defaults
    system_prompt: str = (
        "You are a helpful voice assistant. Keep answers short and conversational."
    )
    introduction: str = "Hi! How can I help you today?"

    # Server
    host: str = "0.0.0.0"
    port: PositiveInt = 8765
    idle_timeout_s: PositiveFloat = 180.0

    # Privacy
    redact_pii: bool = True

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
