"""Configuration management for the prior-authorization evaluation harness."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KNOWN_SOURCES: Tuple[str, ...] = ("NASS guidelines", "AMA CPT guidelines")


class Settings(BaseSettings):
    """Raw settings loaded from environment variables and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_host: str = "127.0.0.1"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "clinic"
    clinic_schema: str = "demo"

    # Generation endpoint
    llm_url: str = "http://localhost:11434/api/chat"
    llm_model: str = "llama3"
    generation_timeout_seconds: float = 120.0
    generation_temperature: float = 0.3
    generation_max_tokens: int = 8192

    # Judge
    judge_enabled: bool = True
    judge_timeout_seconds: float = 120.0
    judge_temperature: float = 0.1
    judge_max_tokens: int = 512

    # Application
    log_level: str = "INFO"


@dataclass(frozen=True)
class EvaluatorConfig:
    """Explicit configuration handed to the harness and all of its collaborators."""

    llm_url: str
    model: str
    schema: str
    database_url: str
    run_name: Optional[str] = None
    generation_timeout_seconds: float = 120.0
    generation_temperature: float = 0.3
    generation_max_tokens: int = 8192
    judge_enabled: bool = True
    judge_timeout_seconds: float = 120.0
    judge_temperature: float = 0.1
    judge_max_tokens: int = 512
    known_sources: Tuple[str, ...] = field(default=DEFAULT_KNOWN_SOURCES)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        model: Optional[str] = None,
        run_name: Optional[str] = None,
        judge_enabled: Optional[bool] = None,
    ) -> "EvaluatorConfig":
        database_url = (
            f"postgresql://{settings.db_user}:{settings.db_password}"
            f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
        )
        return cls(
            llm_url=settings.llm_url,
            model=model or settings.llm_model,
            schema=settings.clinic_schema,
            database_url=database_url,
            run_name=run_name,
            generation_timeout_seconds=settings.generation_timeout_seconds,
            generation_temperature=settings.generation_temperature,
            generation_max_tokens=settings.generation_max_tokens,
            judge_enabled=settings.judge_enabled if judge_enabled is None else judge_enabled,
            judge_timeout_seconds=settings.judge_timeout_seconds,
            judge_temperature=settings.judge_temperature,
            judge_max_tokens=settings.judge_max_tokens,
        )

    def resolved_run_name(self, now: Optional[datetime] = None) -> str:
        """Return the configured run name or derive one from the date and model."""
        if self.run_name:
            return self.run_name
        moment = now or datetime.now(timezone.utc)
        return f"eval-{moment.date().isoformat()}-{self.model}"

    def snapshot(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Configuration snapshot stored alongside each run."""
        moment = now or datetime.now(timezone.utc)
        return {
            "llm_url": self.llm_url,
            "model": self.model,
            "timestamp": moment.isoformat(),
        }


def load_settings() -> Settings:
    return Settings()
