"""
Configuration for the promptchain service.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration."""

    # Completion provider (Unbound, OpenAI-compatible)
    llm_base_url: str = field(default_factory=lambda: os.getenv("UNBOUND_BASE_URL", "https://api.getunbound.ai"))
    llm_api_key: str = field(default_factory=lambda: os.getenv("UNBOUND_API_KEY", ""))
    llm_timeout_seconds: float = field(default_factory=lambda: float(os.getenv("LLM_TIMEOUT_SECONDS", "60")))
    llm_max_retries: int = field(default_factory=lambda: int(os.getenv("LLM_MAX_RETRIES", "3")))

    # Models
    default_model: str = field(default_factory=lambda: os.getenv("DEFAULT_MODEL", "kimi-k2-instruct-0905"))
    judge_model: str = field(default_factory=lambda: os.getenv("JUDGE_MODEL", "kimi-k2-instruct-0905"))

    # Run execution
    retry_delay_seconds: float = field(default_factory=lambda: float(os.getenv("RETRY_DELAY_SECONDS", "1.0")))
    event_queue_size: int = field(default_factory=lambda: int(os.getenv("EVENT_QUEUE_SIZE", "256")))

    # Persistence
    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL") or None)
    data_file: str = field(default_factory=lambda: os.getenv("DATA_FILE", "data.json"))

    # OpenTelemetry
    otel_endpoint: str = field(default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"))
    otel_enabled: bool = field(default_factory=lambda: _env_bool("OTEL_ENABLED"))

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


config = Config()
