"""Configuration management using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from pathlib import Path
from typing import List, Optional
import os


def _default_cors_origins() -> List[str]:
    """Build sane CORS defaults without hardcoded project port literals."""
    frontend_port = os.getenv("FRONTEND_PORT", "").strip()
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    if frontend_port:
        origins = [
            f"http://localhost:{frontend_port}",
            f"http://127.0.0.1:{frontend_port}",
            *origins,
        ]
    return origins


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Storage Configuration
    discussions_dir: Path = Path("data/discussions")
    rooms_dir: Path = Path("data/rooms")
    agents_config_path: Path = Path("config/agents.yaml")

    # Generation
    generation_max_attempts: int = Field(2, ge=1)
    generation_backoff_base_seconds: float = Field(1.0, ge=0)
    generation_backoff_max_seconds: float = Field(8.0, ge=0)
    generation_timeout_seconds: Optional[float] = 60.0

    # Context assembly
    context_max_history_messages: int = Field(10, ge=0)
    context_retrieval_top_k: int = Field(5, ge=0)
    context_min_snippet_score: float = 0.0
    context_max_chars: int = Field(12000, ge=1)
    context_max_item_chars: int = Field(1600, ge=1)

    # Discussion defaults
    discussion_default_intensity: str = "NORMAL"
    discussion_order_by_style: bool = False

    # Completion model (any OpenAI-compatible endpoint)
    llm_model: str = "gpt-4o-mini"
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_temperature: float = 0.7

    # CORS Configuration
    cors_origins: List[str] = Field(default_factory=_default_cors_origins)

    # Logging
    log_level: str = "INFO"
    logs_dir: Path = Path("logs")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("discussions_dir", "rooms_dir", "logs_dir", mode="before")
    @classmethod
    def expand_paths(cls, value):
        if isinstance(value, str):
            return Path(os.path.expandvars(value)).expanduser()
        return value

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return (value or "INFO").strip().upper()


# Global settings instance
settings = Settings()
