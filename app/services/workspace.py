"""Per-download scratch directories for yt-dlp output."""

import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Union

from app.services import logger


class ScratchWorkspace:
    """
    An exclusively owned temporary directory for one download.

    ``release()`` deletes the directory tree. It may be called any number
    of times from any thread; only the first call does anything.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._released = False

    @classmethod
    def create(cls, base_dir: Union[str, Path], prefix: str = "dl-") -> "ScratchWorkspace":
        base = Path(base_dir)
        base.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(base)))
        logger.debug(f"Created workspace {path.name}", "download")
        return cls(path)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Delete the workspace. Safe to call more than once."""
        with self._lock:
            if self._released:
                return
            self._released = True
        shutil.rmtree(self.path, ignore_errors=True)
        logger.debug(f"Released workspace {self.path.name}", "download")

    def clear(self) -> None:
        """Empty the directory so the next attempt starts from nothing."""
        for item in self.path.iterdir():
            if item.is_dir():
                shutil.rmtree(item, ignore_errors=True)
            else:
                item.unlink(missing_ok=True)

    def __enter__(self) -> "ScratchWorkspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def cleanup_old_workspaces(base_dir: Union[str, Path], max_age_hours: int = 1) -> int:
    """Remove workspaces left behind by crashed or killed requests."""
    temp_base = Path(base_dir)
    if not temp_base.exists():
        return 0

    cleaned = 0
    current_time = time.time()
    max_age_seconds = max_age_hours * 3600

    for item in temp_base.iterdir():
        if item.is_dir():
            age = current_time - item.stat().st_mtime
            if age > max_age_seconds:
                shutil.rmtree(item, ignore_errors=True)
                cleaned += 1

    if cleaned > 0:
        logger.info(f"Cleaned up {cleaned} old workspaces", "download")

    return cleaned
