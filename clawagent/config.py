"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Agent configuration. All values come from environment variables."""

    # LLM provider: "anthropic" or "openai_compatible"
    llm_provider: str = Field(default="anthropic")
    llm_max_tokens: int = Field(default=4096)
    system_prompt_path: Path | None = Field(default=None)

    # Anthropic
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="sonnet")

    # OpenAI-compatible endpoint (Ollama, llama.cpp server, OpenAI, ...)
    openai_base_url: str = Field(default="http://localhost:11434/v1")
    openai_api_key: str = Field(default="")
    openai_model: str = Field(default="llama3.1")
    openai_timeout_seconds: float = Field(default=120.0)

    # Database
    database_path: Path = Field(default=Path("data/agent_memory.db"))

    # Agent loop
    max_tool_rounds: int = Field(default=8)

    # Self-improvement
    self_improvement_enabled: bool = Field(default=True)
    self_improvement_interval_hours: float = Field(default=4.0)
    memory_retention_days: int = Field(default=30)
    battery_low_percent: int = Field(default=20)

    # Web tools
    web_user_agent: str = Field(default="ClawAgent/1.0 (Mobile Automation Agent)")
    web_timeout_seconds: float = Field(default=20.0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def memory_retention_ms(self) -> int:
        """Retention window for pruning, in milliseconds."""
        return self.memory_retention_days * 24 * 60 * 60 * 1000


settings = Settings()
