"""Single-video download orchestration.

DOWNLOAD LIFECYCLE
==================
One call to ``DownloadOrchestrator.run`` owns one yt-dlp download from
metadata probe to a validated file on disk:

    Initialized -> ProbingMetadata -> Downloading -> ValidatingOutput -> Ready
                                          |   ^
                                          v   |
                                  RetryingWithFallback      (at most once)

Any step may end in Failed. Ready and Failed are terminal.

WORKSPACE OWNERSHIP
===================
Every run creates its own scratch directory. A fallback retry reuses it after
emptying it, so nothing from the failed attempt survives. On any failure the
orchestrator deletes it before the error propagates. On success the
directory is handed to the caller through ``DownloadResult.release_workspace``,
which must be called once the file has been streamed, the stream broke,
or the client went away. Calling it again is harmless.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional

import aiofiles

from app.config import settings
from app.services import logger
from app.services.artifacts import MIN_ARTIFACT_BYTES, find_artifact, validate_artifact
from app.services.cookies import CookieStore, get_cookie_store
from app.services.download_config import get_config
from app.services.formats import DownloadPlan, parse_formats, select_plan
from app.services.progress import ProgressRelay, get_progress_relay
from app.services.workspace import ScratchWorkspace
from app.services.ytdlp import (
    DOWNLOAD_TIMEOUT_SECONDS,
    ToolRunner,
    get_tool_runner,
    is_format_unavailable,
    parse_progress,
)
from app.utils.exceptions import (
    DownloadFailedError,
    DownloadTimeoutError,
    FormatUnavailableError,
    InvalidRequestError,
)
from app.utils.filenames import is_usable_basename, sanitize_filename
from app.utils.urls import Platform, detect_platform, is_supported

# yt-dlp writes <ARTIFACT_BASENAME>.<ext> into the workspace
ARTIFACT_BASENAME = "download"

# 100% is reserved for "the client has the whole file"
MAX_RELAYED_PERCENT = 99.0

STREAM_CHUNK_BYTES = 256 * 1024


class DownloadState(Enum):
    INITIALIZED = "initialized"
    PROBING_METADATA = "probing_metadata"
    DOWNLOADING = "downloading"
    RETRYING_WITH_FALLBACK = "retrying_with_fallback"
    VALIDATING_OUTPUT = "validating_output"
    READY = "ready"
    FAILED = "failed"


_TRANSITIONS = {
    DownloadState.INITIALIZED: {DownloadState.PROBING_METADATA, DownloadState.FAILED},
    DownloadState.PROBING_METADATA: {DownloadState.DOWNLOADING, DownloadState.FAILED},
    DownloadState.DOWNLOADING: {
        DownloadState.VALIDATING_OUTPUT,
        DownloadState.RETRYING_WITH_FALLBACK,
        DownloadState.FAILED,
    },
    DownloadState.RETRYING_WITH_FALLBACK: {DownloadState.DOWNLOADING, DownloadState.FAILED},
    DownloadState.VALIDATING_OUTPUT: {DownloadState.READY, DownloadState.FAILED},
    DownloadState.READY: set(),
    DownloadState.FAILED: set(),
}


class IllegalTransition(RuntimeError):
    """Raised when a download tries to move to a state it cannot reach."""
    pass


@dataclass(frozen=True)
class VideoRequest:
    """A validated request for one video."""
    url: str
    quality: Optional[str] = None
    download_id: Optional[str] = None
    title: Optional[str] = None


@dataclass
class DownloadJob:
    """State tracking for one orchestrated download."""
    request: VideoRequest
    state: DownloadState = DownloadState.INITIALIZED
    history: List[DownloadState] = field(default_factory=lambda: [DownloadState.INITIALIZED])
    retries: int = 0
    error: Optional[str] = None

    def transition(self, new_state: DownloadState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} -> {new_state.value}")
        if new_state == DownloadState.RETRYING_WITH_FALLBACK:
            if self.retries >= 1:
                raise IllegalTransition("fallback retry already used")
            self.retries += 1
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: str) -> None:
        self.error = error
        if self.state not in (DownloadState.READY, DownloadState.FAILED):
            self.transition(DownloadState.FAILED)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]


@dataclass
class DownloadResult:
    """A validated artifact waiting to be streamed."""
    file_path: Path
    filename: str
    size_bytes: int
    release_workspace: Callable[[], None]
    title: str = ""
    plan: Optional[DownloadPlan] = None
    attempts: int = 1


def build_download_args(
    url: str,
    plan: DownloadPlan,
    output_dir: Path,
    platform: Platform,
    cookies: Optional[Path] = None,
) -> List[str]:
    """Full yt-dlp argument list for one download attempt."""
    args: List[str] = []
    if platform != Platform.INSTAGRAM:
        args.append("--no-playlist")
    if cookies:
        args.extend(["--cookies", str(cookies)])
    args.extend(plan.argument_list)
    args.extend(get_config().to_args())
    args.extend([
        "--newline",
        "-o", str(output_dir / f"{ARTIFACT_BASENAME}.%(ext)s"),
        url,
    ])
    return args


class DownloadOrchestrator:
    """Runs single-video downloads; stateless between calls."""

    def __init__(
        self,
        runner: Optional[ToolRunner] = None,
        cookies: Optional[CookieStore] = None,
        relay: Optional[ProgressRelay] = None,
        temp_dir: Optional[str] = None,
        download_timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        min_artifact_bytes: int = MIN_ARTIFACT_BYTES,
    ):
        self.runner = runner or get_tool_runner()
        self.cookies = cookies or get_cookie_store()
        self.relay = relay or get_progress_relay()
        self.temp_dir = temp_dir or settings.TEMP_DIR
        self.download_timeout = download_timeout
        self.min_artifact_bytes = min_artifact_bytes

    async def run(self, request: VideoRequest) -> DownloadResult:
        """
        Download, validate and hand over one video.

        Args:
            request: The video to fetch

        Returns:
            DownloadResult whose release_workspace the caller must invoke

        Raises:
            InvalidRequestError: URL is not on a supported platform
            MetadataProbeError: yt-dlp could not read the source
            DownloadFailedError: yt-dlp failed after the permitted retry
            DownloadTimeoutError: an attempt ran past the time limit
            CorruptArtifactError: the output is not a media file
        """
        if not is_supported(request.url):
            raise InvalidRequestError()

        start_time = time.time()
        job = DownloadJob(request)
        workspace = ScratchWorkspace.create(self.temp_dir)
        log_details = {"download_id": request.download_id, "url": request.url}

        try:
            platform = detect_platform(request.url)
            cookies = self.cookies.resolve(request.url)

            job.transition(DownloadState.PROBING_METADATA)
            logger.info(f"Probing metadata ({platform.value})", "download", log_details)
            info = await self.runner.probe(
                request.url,
                cookies=cookies,
                no_playlist=platform != Platform.INSTAGRAM,
            )
            formats = parse_formats(info)
            title = request.title or info.get("title") or ""
            basename = sanitize_filename(title)
            if not is_usable_basename(basename):
                basename = f"video_{uuid.uuid4().hex[:8]}"

            plan = select_plan(platform, request.quality, formats)
            logger.info(
                f"Format plan: {plan.format_expression}",
                "download",
                {**log_details, "quality": request.quality, "merge": plan.requires_merge, "recode": plan.requires_recode},
            )

            job.transition(DownloadState.DOWNLOADING)
            try:
                await self._attempt(request, workspace, plan, platform, cookies)
            except FormatUnavailableError as e:
                if not plan.can_fall_back:
                    raise DownloadFailedError(e.message, details=e.details)
                job.transition(DownloadState.RETRYING_WITH_FALLBACK)
                plan = plan.with_fallback()
                logger.warn(
                    f"Format unavailable, retrying with {plan.format_expression}",
                    "download",
                    {**log_details, "quality": request.quality},
                )
                workspace.clear()
                job.transition(DownloadState.DOWNLOADING)
                try:
                    await self._attempt(request, workspace, plan, platform, cookies)
                except FormatUnavailableError as retry_error:
                    raise DownloadFailedError(retry_error.message, details=retry_error.details)

            job.transition(DownloadState.VALIDATING_OUTPUT)
            artifact = find_artifact(workspace.path, ARTIFACT_BASENAME)
            size = validate_artifact(artifact, self.min_artifact_bytes)

            job.transition(DownloadState.READY)
            filename = basename + artifact.suffix
            logger.success(
                f"Download ready: {filename}",
                "download",
                {
                    **log_details,
                    "filesize_mb": round(size / (1024 * 1024), 2),
                    "download_time_seconds": round(time.time() - start_time, 2),
                    "attempts": job.retries + 1,
                },
            )
            return DownloadResult(
                file_path=artifact,
                filename=filename,
                size_bytes=size,
                release_workspace=workspace.release,
                title=title,
                plan=plan,
                attempts=job.retries + 1,
            )

        except asyncio.CancelledError:
            job.fail("cancelled")
            workspace.release()
            logger.warn("Download cancelled, workspace released", "download", log_details)
            raise

        except Exception as e:
            job.fail(str(e))
            workspace.release()
            logger.error(
                f"Download failed in state {job.history[-2].value}: {str(e)[:100]}",
                "download",
                log_details,
            )
            raise

    async def _attempt(
        self,
        request: VideoRequest,
        workspace: ScratchWorkspace,
        plan: DownloadPlan,
        platform: Platform,
        cookies: Optional[Path],
    ) -> None:
        args = build_download_args(request.url, plan, workspace.path, platform, cookies)
        tool_logger = logger.ToolLogger(request.download_id)

        def on_line(line: str) -> None:
            percent = parse_progress(line)
            if percent is None:
                if line:
                    tool_logger.line(line)
                return
            self.relay.publish(request.download_id, min(percent, MAX_RELAYED_PERCENT))

        try:
            result = await self.runner.run(args, on_line=on_line, timeout=self.download_timeout)
        except asyncio.TimeoutError:
            raise DownloadTimeoutError(
                f"Download timed out after {self.download_timeout:.0f}s",
                details=f"format {plan.format_expression}",
            )

        if result.ok:
            return
        if is_format_unavailable(result.diagnostic):
            raise FormatUnavailableError(details=result.diagnostic)
        raise DownloadFailedError(
            f"yt-dlp exited with code {result.returncode}",
            details=result.diagnostic,
        )


async def iter_artifact(
    result: DownloadResult,
    download_id: Optional[str] = None,
    relay: Optional[ProgressRelay] = None,
) -> AsyncIterator[bytes]:
    """
    Stream an artifact in chunks and release its workspace afterwards.

    The workspace is released however the iteration ends: completion, a
    read error, or the consumer closing the generator on disconnect. The
    terminal 100% event is only sent when the whole file went out.
    """
    relay = relay or get_progress_relay()
    try:
        async with aiofiles.open(result.file_path, "rb") as f:
            while True:
                chunk = await f.read(STREAM_CHUNK_BYTES)
                if not chunk:
                    break
                yield chunk
        relay.publish(download_id, 100)
    finally:
        result.release_workspace()
