"""Download service exceptions with client-facing metadata."""

from typing import Optional


class VideoDLError(Exception):
    """Base exception carrying a user message, raw diagnostic and HTTP status."""

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        retryable: bool = False,
        user_message: Optional[str] = None,
        details: Optional[str] = None,
        status_code: int = 500,
    ):
        self.message = message
        self.error_code = error_code
        self.retryable = retryable
        # Human-readable summary shown to end users
        self.user_message = user_message or message
        # Raw diagnostic text (yt-dlp stderr, offending bytes) for support
        self.details = details
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.user_message,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


# =============================================================================
# ADMISSION ERRORS - raised before any workspace or subprocess exists
# =============================================================================

class InvalidRequestError(VideoDLError):
    """Raised when the URL is not a supported platform or the batch is malformed."""

    def __init__(self, message: str = "Invalid or unsupported video URL."):
        super().__init__(
            message=message,
            error_code="INVALID_REQUEST",
            retryable=False,
            user_message=message,
            status_code=400,
        )


# =============================================================================
# SOURCE ERRORS - the external tool could not resolve or fetch the media
# =============================================================================

class MetadataProbeError(VideoDLError):
    """Raised when yt-dlp cannot retrieve source information."""

    def __init__(
        self,
        message: str = "Failed to fetch video info",
        details: Optional[str] = None,
        user_message: Optional[str] = None,
        status_code: int = 500,
        retryable: bool = False,
    ):
        super().__init__(
            message=message,
            error_code="METADATA_PROBE_FAILED",
            retryable=retryable,
            user_message=user_message or "Failed to fetch video info",
            details=details,
            status_code=status_code,
        )


class FormatUnavailableError(VideoDLError):
    """Raised when yt-dlp reports the requested format is not available."""

    def __init__(self, message: str = "Requested format is not available", details: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="FORMAT_UNAVAILABLE",
            retryable=True,
            user_message="The selected quality is not available for this video.",
            details=details,
            status_code=500,
        )


class DownloadFailedError(VideoDLError):
    """Raised when yt-dlp exits non-zero or leaves no artifact behind."""

    def __init__(self, message: str = "Download failed", details: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="DOWNLOAD_FAILED",
            retryable=True,
            user_message="Download failed",
            details=details,
            status_code=500,
        )


class DownloadTimeoutError(VideoDLError):
    """Raised when a download attempt exceeds its time limit."""

    def __init__(self, message: str = "Download timed out", details: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="DOWNLOAD_TIMEOUT",
            retryable=True,
            user_message="Download took too long. Please try again.",
            details=details,
            status_code=504,
        )


class CorruptArtifactError(VideoDLError):
    """Raised when the downloaded file is not a genuine media container."""

    def __init__(self, message: str = "Downloaded file is not a valid media file", details: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CORRUPT_ARTIFACT",
            retryable=False,
            user_message="The platform returned an invalid file instead of the video.",
            details=details,
            status_code=502,
        )


class BatchItemFailed(VideoDLError):
    """One entry of a batch failed. Recorded as a placeholder, never raised to the client."""

    def __init__(self, source: str, cause: Exception):
        if isinstance(cause, VideoDLError):
            message = cause.message
            details = cause.details
        else:
            message = str(cause) or cause.__class__.__name__
            details = None
        super().__init__(
            message=message,
            error_code="BATCH_ITEM_FAILED",
            retryable=False,
            user_message=f"Failed to download: {source}",
            details=details,
            status_code=200,
        )
        self.source = source
        self.cause = cause

    def placeholder_text(self) -> str:
        """Body of the text entry written into the archive in place of the video."""
        lines = [f"Failed to download: {self.source}", f"Error: {self.message}"]
        if self.details:
            lines.append("")
            lines.append(self.details[:2000])
        return "\n".join(lines) + "\n"

