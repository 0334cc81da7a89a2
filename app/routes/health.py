"""Health check endpoint."""

import shutil
import sys
from datetime import datetime
from pathlib import Path

from fastapi import APIRouter

from app.config import settings
from app.models.schemas import HealthCheck
from app.services.cookies import COOKIE_FILES


router = APIRouter(tags=["health"])


def _ytdlp_available() -> bool:
    if settings.YTDLP_PATH:
        return Path(settings.YTDLP_PATH).is_file() or shutil.which(settings.YTDLP_PATH) is not None
    try:
        import yt_dlp
        _ = yt_dlp.version.__version__
    except ImportError:
        return False
    return True


@router.get("/health", response_model=HealthCheck)
async def health_check() -> HealthCheck:
    """
    Health check endpoint.

    Returns system health status including:
    - yt-dlp availability
    - ffmpeg availability (needed for merge / recode)
    - scratch directory
    - which platform cookie files are present
    """
    ytdlp_available = _ytdlp_available()
    ffmpeg_available = shutil.which("ffmpeg") is not None
    temp_dir_ok = Path(settings.TEMP_DIR).is_dir()

    cookies_dir = Path(settings.COOKIES_DIR)
    cookie_files = sorted({
        name for name in COOKIE_FILES.values() if (cookies_dir / name).is_file()
    })

    return HealthCheck(
        status="ok" if all([ytdlp_available, ffmpeg_available, temp_dir_ok]) else "degraded",
        timestamp=datetime.utcnow().isoformat() + "Z",
        checks={
            "ytdlp": "available" if ytdlp_available else "unavailable",
            "ytdlp_command": settings.YTDLP_PATH or f"{sys.executable} -m yt_dlp",
            "ffmpeg": "available" if ffmpeg_available else "unavailable",
            "temp_dir": "ok" if temp_dir_ok else "missing",
            "cookies": cookie_files,
        }
    )
