"""Application settings parsed from environment variables and defaults."""

import json
from functools import lru_cache
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "Automation Engine API"
    environment: str = "development"
    api_prefix: str = "/api"

    database_url: str = "sqlite+aiosqlite:///./automation.db"
    test_database_url: Optional[str] = None

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expires_minutes: int = 30

    log_level: str = "INFO"
    redis_url: str = "redis://redis:6379/0"
    worker_queue_names: list[str] | str = Field(default_factory=lambda: ["default", "automations"])

    automation_autostart: bool = True
    automation_strict_intervals: bool = False
    automation_template_max_depth: int = 32
    automation_max_concurrent_executions: Optional[int] = None
    automation_retry_max_attempts: int = 1
    automation_retry_backoff_seconds: float = 0.0
    automation_api_timeout_seconds: float = 15.0
    automation_api_integrations: dict[str, dict[str, Any]] | str = Field(default_factory=dict)
    automation_calendar_integrations: list[str] | str = Field(
        default_factory=lambda: ["google", "outlook"]
    )

    @field_validator("worker_queue_names", mode="before")
    @classmethod
    def _split_worker_queue_names(cls, value: str | list[str] | None) -> list[str]:
        """Normalize worker queue names from JSON, CSV, or list inputs."""
        if isinstance(value, list):
            cleaned = [item.strip() for item in value if isinstance(item, str) and item.strip()]
            if cleaned:
                return cleaned
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return ["default"]
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                cleaned = [str(item).strip() for item in parsed if str(item).strip()]
                if cleaned:
                    return cleaned
            names = [item.strip() for item in stripped.split(",") if item.strip()]
            if names:
                return names
        return ["default"]

    @field_validator("automation_calendar_integrations", mode="before")
    @classmethod
    def _split_calendar_integrations(cls, value: str | list[str] | None) -> list[str]:
        """Normalize calendar provider names from JSON, CSV, or list inputs."""
        if isinstance(value, list):
            return [item.strip().lower() for item in value if isinstance(item, str) and item.strip()]
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip().lower() for item in parsed if str(item).strip()]
            return [item.strip().lower() for item in stripped.split(",") if item.strip()]
        return []

    @field_validator("automation_api_integrations", mode="before")
    @classmethod
    def _parse_api_integrations(cls, value: str | dict | None) -> dict[str, dict[str, Any]]:
        """Accept API integration definitions as a JSON object or a name=url CSV."""
        if isinstance(value, dict):
            parsed: Any = value
        elif isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return {}
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = {}
                for item in stripped.split(","):
                    name, _, base_url = item.partition("=")
                    if name.strip() and base_url.strip():
                        parsed[name.strip()] = base_url.strip()
        else:
            return {}
        if not isinstance(parsed, dict):
            raise ValueError("AUTOMATION_API_INTEGRATIONS must be a JSON object")
        integrations: dict[str, dict[str, Any]] = {}
        for name, entry in parsed.items():
            if isinstance(entry, str):
                entry = {"base_url": entry}
            if not isinstance(entry, dict) or not entry.get("base_url"):
                raise ValueError(f"API integration {name!r} requires a base_url")
            integrations[str(name)] = entry
        return integrations

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""
    return Settings()


settings = get_settings()
