"""
Application Configuration

Centralized configuration using Pydantic Settings for type-safe
environment variable management with validation.

Credentials and endpoints are supplied externally (environment or .env)
and are treated as already validated by the session engine.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (src/core/settings.py -> src/core -> src -> root)
_CONFIG_DIR = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    """

    model_config = SettingsConfigDict(
        env_file=_CONFIG_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote voice interface
    hume_api_key: str = ""
    hume_config_id: str | None = None
    evi_url: str = "wss://api.hume.ai/v0/evi/chat"
    evi_connect_timeout: float = 10.0

    # Tool capability endpoint (send_message -> agent service)
    agent_base_url: str = "http://localhost:8000"
    agent_name: str = "general_agent"
    agent_timeout: float = 30.0

    # Audio capture (microphone -> remote)
    capture_encoding: str = "linear16"
    input_sample_rate: int = 16000
    input_channels: int = 1
    capture_time_slice_ms: int = 100

    # Audio playback (remote -> speaker)
    # Used only when the remote sends headerless PCM16
    output_sample_rate: int = 24000
    output_channels: int = 1

    # Transcript
    emotion_top_n: int = 3

    # Reconnect policy; 0 attempts means retry until the caller disconnects
    reconnect_max_attempts: int = 5
    reconnect_backoff_base: float = 0.5
    reconnect_backoff_max: float = 8.0

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    debug: bool = False

    @property
    def capture_time_slice(self) -> float:
        """Capture slice in seconds."""
        return self.capture_time_slice_ms / 1000

    def reconnect_delay(self, attempt: int) -> float:
        """Exponential backoff delay before reconnect ``attempt`` (1-based)."""
        if attempt <= 1:
            return 0.0
        return min(self.reconnect_backoff_base * (2 ** (attempt - 2)), self.reconnect_backoff_max)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once
    and reused throughout the application lifecycle.
    """
    return Settings()
