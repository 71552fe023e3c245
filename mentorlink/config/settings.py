"""
mentorlink/config/settings.py
Runtime settings loaded from the environment (.env supported)
"""
import os
import sys
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _get_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


def _get_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


def _get_list(key: str) -> List[str]:
    return [item.strip() for item in os.getenv(key, "").split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings. Construct directly in tests to override values."""

    environment: str = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./mentorlink.db"

    # External identity provider (user lookup by bearer token)
    identity_url: str = "http://localhost:54321"
    identity_api_key: str = ""
    identity_timeout_seconds: float = 10.0

    allowed_origins: List[str] = field(default_factory=list)

    # Real-time gateway
    handler_timeout_seconds: float = 30.0
    outbound_queue_size: int = 100

    # Execution sandbox
    sandbox_timeout_seconds: float = 10.0
    sandbox_max_output_bytes: int = 1024 * 1024
    sandbox_max_concurrency: int = 4
    sandbox_max_pending: int = 16
    sandbox_python_bin: str = sys.executable or "python3"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./mentorlink.db"),
            identity_url=os.getenv("IDENTITY_URL", "http://localhost:54321").rstrip("/"),
            identity_api_key=os.getenv("IDENTITY_API_KEY", ""),
            identity_timeout_seconds=_get_float("IDENTITY_TIMEOUT_SECONDS", 10.0),
            allowed_origins=_get_list("ALLOWED_ORIGINS"),
            handler_timeout_seconds=_get_float("HANDLER_TIMEOUT_SECONDS", 30.0),
            outbound_queue_size=_get_int("OUTBOUND_QUEUE_SIZE", 100),
            sandbox_timeout_seconds=_get_float("SANDBOX_TIMEOUT_SECONDS", 10.0),
            sandbox_max_output_bytes=_get_int("SANDBOX_MAX_OUTPUT_BYTES", 1024 * 1024),
            sandbox_max_concurrency=_get_int("SANDBOX_MAX_CONCURRENCY", 4),
            sandbox_max_pending=_get_int("SANDBOX_MAX_PENDING", 16),
            sandbox_python_bin=os.getenv("SANDBOX_PYTHON_BIN", sys.executable or "python3"),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings.from_env()
