from typing import List, Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    PORT: int = 3000
    ENVIRONMENT: str = "production"
    CORS_ORIGINS: List[str] = ["https://videodl.netlify.app", "http://localhost:5173"]

    # yt-dlp executable. When unset the installed yt_dlp module is run
    # with the current interpreter.
    YTDLP_PATH: Optional[str] = None

    # Per-platform cookie files (<domain>_cookies.txt) live here
    COOKIES_DIR: str = "."

    # Scratch workspaces, one subdirectory per download attempt
    TEMP_DIR: str = "/tmp/videodl-downloads"

    # Structured log output (service.jsonl)
    LOG_DIR: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
