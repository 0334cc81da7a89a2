"""Server-side structured logging with JSONL persistence."""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional
import threading

from app.config import settings


# Serializes appends to the log file
_log_lock = threading.Lock()
_log_file: Optional[Path] = None


def _get_log_file() -> Path:
    """Get the log file path, creating directory if needed."""
    global _log_file
    if _log_file is None:
        if settings.LOG_DIR:
            log_dir = Path(settings.LOG_DIR)
        else:
            log_dir = Path("/var/log/videodl")
            if not log_dir.exists():
                # Fallback next to the scratch area
                log_dir = Path(settings.TEMP_DIR).parent / "videodl-logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        _log_file = log_dir / "service.jsonl"
    return _log_file


def log(level: str, message: str, category: str = "general", details: Optional[dict] = None):
    """
    Log a message with optional details.

    Args:
        level: Log level (INFO, WARN, ERROR, DEBUG, SUCCESS)
        message: Log message
        category: Category (general, download, ytdlp, batch, progress, proxy)
        details: Optional additional details dict
    """
    entry = {
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "level": level,
        "category": category,
        "message": message,
    }
    if details:
        entry["details"] = details

    with _log_lock:
        try:
            log_file = _get_log_file()
            with open(log_file, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
                f.flush()
        except OSError:
            # Don't fail the request if the log file is unwritable
            pass

    # Also print to stdout for the process supervisor
    print(f"[{entry['timestamp']}] [{level}] [{category}] {message}", flush=True)


# Convenience functions
def info(message: str, category: str = "general", details: Optional[dict] = None):
    log("INFO", message, category, details)

def warn(message: str, category: str = "general", details: Optional[dict] = None):
    log("WARN", message, category, details)

def error(message: str, category: str = "general", details: Optional[dict] = None):
    log("ERROR", message, category, details)

def debug(message: str, category: str = "general", details: Optional[dict] = None):
    log("DEBUG", message, category, details)

def success(message: str, category: str = "general", details: Optional[dict] = None):
    log("SUCCESS", message, category, details)


class ToolLogger:
    """Routes yt-dlp output lines into the service log."""

    def __init__(self, download_id: Optional[str]):
        self.download_id = download_id

    def line(self, text: str):
        if text.startswith("[debug]"):
            log("DEBUG", text, "ytdlp", {"download_id": self.download_id})
        elif text.startswith("WARNING:"):
            log("WARN", text, "ytdlp", {"download_id": self.download_id})
        elif text.startswith("ERROR:"):
            log("ERROR", text, "ytdlp", {"download_id": self.download_id})
        else:
            log("INFO", text, "ytdlp", {"download_id": self.download_id})


# Initialize with startup message
log("INFO", "Logging service initialized", "general")
