"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "copilot-automation"
    database_url: str = ""
    automation_cron_secret: str = ""
    automation_loop_interval_s: float = Field(default=600.0, ge=1.0)
    task_batch_size: int = Field(default=5, ge=1)
    max_agent_iterations: int = Field(default=6, ge=1)
    summary_max_chars: int = Field(default=160, ge=1)
    retrieval_limit: int = Field(default=5, ge=1, le=10)
    tool_timeout_s: float = Field(default=30.0, ge=0.01)
    stale_task_timeout_s: float = Field(default=0.0, ge=0.0)
    default_time_zone: str = "UTC"
    llm_model: str = "gpt-4.1-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=60.0, ge=0.5)
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    openai_api_key: str = ""
    google_access_token: str = ""
    hubspot_access_token: str = ""

    model_config = SettingsConfigDict(
        env_prefix="COPILOT_AUTOMATION_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def resolved_cron_secret(self) -> str:
        return self.automation_cron_secret or os.getenv("AUTOMATION_CRON_SECRET", "")

    def static_integration_tokens(self) -> dict[str, str]:
        tokens = {"google": self.google_access_token, "hubspot": self.hubspot_access_token}
        return {provider: token for provider, token in tokens.items() if token}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
