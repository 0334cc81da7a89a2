"""Shared yt-dlp tuning flags, read every time a download invocation is built."""

from typing import List, Optional
from pydantic import BaseModel


class DownloadConfig(BaseModel):
    """yt-dlp tuning flags appended to every download invocation."""
    # Retry settings
    retries: int = 3
    fragment_retries: int = 3

    # Network settings
    socket_timeout: int = 30
    rate_limit: Optional[str] = None  # e.g., "50M" for 50MB/s

    # Download behavior
    concurrent_fragments: int = 4

    def to_args(self) -> List[str]:
        """Render the config as yt-dlp command line flags."""
        args = [
            "--retries", str(self.retries),
            "--fragment-retries", str(self.fragment_retries),
            "--socket-timeout", str(self.socket_timeout),
            "--concurrent-fragments", str(self.concurrent_fragments),
        ]
        if self.rate_limit:
            args.extend(["--limit-rate", self.rate_limit])
        return args


# Global runtime config, read per download invocation
_current_config = DownloadConfig()


def get_config() -> DownloadConfig:
    """Get the current download configuration."""
    return _current_config

