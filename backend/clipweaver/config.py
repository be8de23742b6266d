from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """ClipWeaver application settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "ClipWeaver"
    DEBUG: bool = False

    # --- Database (any async SQLAlchemy URL) ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./clipweaver.db"

    # --- Redis (notification pub/sub) ---
    REDIS_URL: str = "redis://localhost:6379/0"

    # --- Media Volume ---
    MEDIA_VOLUME: str = "media_volume"

    # --- OpenAI Sora ---
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"

    # --- Google Veo (Gemini API) ---
    GOOGLE_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"

    # --- Kling ---
    KLING_API_KEY: str = ""
    KLING_BASE_URL: str = "https://api-beijing.klingai.com/v1"

    # --- Reconciliation ---
    POLL_INTERVAL_SECONDS: float = 5.0
    POLL_BACKOFF_MAX_SECONDS: float = 60.0
    PROVIDER_TIMEOUT_SECONDS: float = 60.0
    DOWNLOAD_TIMEOUT_SECONDS: float = 300.0

    # --- FFmpeg ---
    FFMPEG_BINARY: str = "ffmpeg"

    @property
    def provider_credentials(self) -> dict[str, str]:
        """API key per provider name."""
        return {
            "sora": self.OPENAI_API_KEY,
            "veo": self.GOOGLE_API_KEY,
            "kling": self.KLING_API_KEY,
        }

    @property
    def provider_base_urls(self) -> dict[str, str]:
        return {
            "sora": self.OPENAI_BASE_URL,
            "veo": self.GEMINI_BASE_URL,
            "kling": self.KLING_BASE_URL,
        }

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
