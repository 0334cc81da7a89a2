"""yt-dlp subprocess runner, metadata probe and failure classification.

yt-dlp is treated as a black box: it is started as a child process with
an argument list, its stdout is read line by line for progress markers,
and its stderr is kept as the raw diagnostic for error reporting.
"""

import asyncio
import json
import re
import sys
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from app.config import settings
from app.services import logger
from app.utils.exceptions import MetadataProbeError
from app.utils.urls import Platform, detect_platform

# === TIMEOUTS ===
PROBE_TIMEOUT_SECONDS = 60
DOWNLOAD_TIMEOUT_SECONDS = 600  # Large sources plus ffmpeg merge/recode

# --dump-single-json prints the whole info dict on one line
STREAM_LIMIT_BYTES = 64 * 1024 * 1024

# Lines of stdout kept for diagnostics
STDOUT_TAIL_LINES = 200

DIAGNOSTIC_EXCERPT_CHARS = 2000

_PROGRESS_LINE = re.compile(r"^\[download\]\s+(\d{1,3}(?:\.\d+)?)%")

_FORMAT_UNAVAILABLE = re.compile(r"requested format (is )?not available", re.IGNORECASE)


@dataclass
class ToolResult:
    """Outcome of one yt-dlp invocation."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostic(self) -> str:
        """Raw diagnostic text, stderr first, truncated for responses and logs."""
        text = (self.stderr or "").strip() or (self.stdout or "").strip()
        return text[-DIAGNOSTIC_EXCERPT_CHARS:]


def parse_progress(line: str) -> Optional[float]:
    """Return the percentage from a ``[download]  42.0% of ...`` line, else None."""
    match = _PROGRESS_LINE.match(line.strip())
    if not match:
        return None
    return min(float(match.group(1)), 100.0)


def is_format_unavailable(diagnostic: str) -> bool:
    """Check if yt-dlp rejected the requested format expression."""
    return bool(diagnostic) and _FORMAT_UNAVAILABLE.search(diagnostic) is not None


class ToolRunner:
    """Starts yt-dlp processes and waits for them."""

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable

    def command(self) -> List[str]:
        """Base argv for yt-dlp."""
        if self.executable:
            return [self.executable]
        return [sys.executable, "-m", "yt_dlp"]

    async def run(
        self,
        args: Sequence[str],
        on_line: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        """
        Run yt-dlp with ``args`` and wait for it to exit.

        Args:
            args: Arguments after the executable
            on_line: Called with each stdout line as it arrives
            timeout: Seconds before the process is killed

        Raises:
            asyncio.TimeoutError: The process outlived ``timeout`` and was killed
            asyncio.CancelledError: The caller was cancelled; the process was killed
        """
        cmd = self.command() + list(args)
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT_BYTES,
        )

        try:
            if on_line is None:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
                stdout = stdout_bytes.decode("utf-8", errors="replace")
                stderr = stderr_bytes.decode("utf-8", errors="replace")
            else:
                stdout, stderr = await asyncio.wait_for(self._pump(process, on_line), timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            await self._kill(process)
            raise

        return ToolResult(process.returncode, stdout, stderr)

    async def _pump(self, process, on_line: Callable[[str], None]):
        tail: deque = deque(maxlen=STDOUT_TAIL_LINES)

        async def read_stdout():
            async for raw in process.stdout:
                text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                tail.append(text)
                on_line(text)

        _, stderr_bytes = await asyncio.gather(read_stdout(), process.stderr.read())
        await process.wait()
        return "\n".join(tail), stderr_bytes.decode("utf-8", errors="replace")

    @staticmethod
    async def _kill(process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    async def probe(
        self,
        url: str,
        cookies: Optional[Path] = None,
        no_playlist: bool = True,
        flat_playlist: bool = False,
    ) -> dict:
        """
        Fetch the info dict for ``url`` without downloading.

        Raises:
            MetadataProbeError: yt-dlp failed, timed out or printed invalid JSON
        """
        args = ["--dump-single-json", "--no-warnings"]
        if no_playlist:
            args.append("--no-playlist")
        if flat_playlist:
            args.append("--flat-playlist")
        if cookies:
            args.extend(["--cookies", str(cookies)])
        args.append(url)

        try:
            result = await self.run(args, timeout=PROBE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            raise MetadataProbeError(
                f"Metadata probe timed out after {PROBE_TIMEOUT_SECONDS}s",
                details=f"timeout after {PROBE_TIMEOUT_SECONDS}s",
                retryable=True,
            )

        if not result.ok:
            logger.warn(
                f"Metadata probe failed: {result.diagnostic[:100]}",
                "ytdlp",
                {"url": url, "returncode": result.returncode},
            )
            raise classify_probe_failure(result.diagnostic, url)

        try:
            return json.loads(result.stdout)
        except ValueError as e:
            raise MetadataProbeError(
                "yt-dlp returned invalid metadata",
                details=f"{e}: {result.stdout[:200]}",
            )


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

_LOGIN_GUIDANCE = (
    "{name} requires login/cookies to download this video. "
    "Please log in and provide cookies, or try a different public video."
)

_YOUTUBE_RATE_LIMIT_GUIDANCE = (
    "YouTube is temporarily blocking downloads from this server due to too many "
    "requests (HTTP 429 / rate limit). Please try again later, or use a different "
    "server or your local machine."
)

# (platform, name in diagnostics, signatures, status, guidance)
_PLATFORM_SIGNATURES = (
    (
        Platform.INSTAGRAM,
        re.compile(r"instagram", re.IGNORECASE),
        re.compile(
            r"login required|rate-limit reached|not available|use --cookies"
            r"|Main webpage is locked behind the login page|unable to extract shared data",
            re.IGNORECASE,
        ),
        403,
        _LOGIN_GUIDANCE.format(name="Instagram"),
    ),
    (
        Platform.FACEBOOK,
        re.compile(r"facebook", re.IGNORECASE),
        re.compile(r"login required|not available|cookies", re.IGNORECASE),
        403,
        _LOGIN_GUIDANCE.format(name="Facebook"),
    ),
    (
        Platform.TIKTOK,
        re.compile(r"tiktok", re.IGNORECASE),
        re.compile(r"login required|not available|cookies|forbidden|403", re.IGNORECASE),
        403,
        _LOGIN_GUIDANCE.format(name="TikTok"),
    ),
    (
        Platform.YOUTUBE,
        re.compile(r"youtube|youtu\.be", re.IGNORECASE),
        re.compile(
            r"login required|not available|cookies|This video is private|sign in"
            r"|429|Too Many Requests|quota exceeded|quota|rate limit",
            re.IGNORECASE,
        ),
        429,
        _YOUTUBE_RATE_LIMIT_GUIDANCE,
    ),
)


def classify_probe_failure(diagnostic: str, url: str = "") -> MetadataProbeError:
    """
    Turn a failed yt-dlp diagnostic into a MetadataProbeError.

    When the diagnostic carries a recognisable login / cookie / rate-limit
    signature for the URL's platform, the error gets platform guidance and
    a 403 or 429 status. Everything else is a generic 500.
    """
    diagnostic = diagnostic or ""
    platform = detect_platform(url) if url else Platform.OTHER

    for sig_platform, name_pattern, signature, status, guidance in _PLATFORM_SIGNATURES:
        mentions_platform = platform == sig_platform or name_pattern.search(diagnostic)
        if mentions_platform and signature.search(diagnostic):
            return MetadataProbeError(
                f"{sig_platform.value} refused access",
                details=diagnostic,
                user_message=guidance,
                status_code=status,
                retryable=status == 429,
            )

    return MetadataProbeError("Failed to fetch video info", details=diagnostic)


_tool_runner: Optional[ToolRunner] = None


def get_tool_runner() -> ToolRunner:
    """Get the process-wide runner for the configured yt-dlp executable."""
    global _tool_runner
    if _tool_runner is None:
        _tool_runner = ToolRunner(settings.YTDLP_PATH)
    return _tool_runner
