"""ActionPilot configuration settings."""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from actionpilot.infrastructure.logging_setup import configure_logging


class Settings(BaseSettings):
    """Application settings with env var support (``ACTIONPILOT_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="ACTIONPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Rooted runtime paths
    data_root: Path = Field(default=Path(".actionpilot"))
    history_db_path: Path = Field(default=Path("history/history.db"))
    tool_config_path: Optional[Path] = None

    # History
    history_max_items: int = Field(default=100, ge=1)

    # Server/observability
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_reload: bool = False
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # LLM configuration
    llm_provider: str = "groq"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    groq_api_key: Optional[str] = None
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "llama-3.3-70b-versatile"
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_model: str = "qwen2.5:14b"

    # Model-assisted completion
    repair_temperature: float = 0.1
    repair_max_tokens: int = 2048
    follow_up_temperature: float = 0.3
    follow_up_max_tokens: int = 512
    narration_temperature: float = 0.5
    narration_announce_max_tokens: int = 80
    narration_complete_max_tokens: int = 60
    completion_timeout_seconds: float = Field(default=30.0, gt=0)

    # Tool gateway
    tool_gateway_url: str = "http://127.0.0.1:8080"
    tool_gateway_timeout_seconds: float = Field(default=60.0, gt=0)

    def _resolve_under_root(self, value: Path) -> Path:
        raw = Path(value)
        if raw.is_absolute():
            return raw
        return Path(self.data_root) / raw

    @model_validator(mode="after")
    def _normalize_paths_validator(self) -> "Settings":
        self.history_db_path = self._resolve_under_root(self.history_db_path)
        return self

    def setup_logging(self) -> None:
        configure_logging(level=self.log_level, json_logs=self.log_json)

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        Path(self.data_root).mkdir(parents=True, exist_ok=True)
        Path(self.history_db_path).parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
