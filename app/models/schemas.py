from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List

from app.services.batch import MAX_BATCH_VIDEOS
from app.utils.urls import is_supported

UNSUPPORTED_URL_MESSAGE = "Invalid or unsupported video URL."


def _check_supported(url: str) -> str:
    if not is_supported(url):
        raise ValueError(UNSUPPORTED_URL_MESSAGE)
    return url


class InfoRequest(BaseModel):
    """Request model for video metadata."""

    url: str = Field(..., description="Video or playlist URL")

    @field_validator("url")
    @classmethod
    def url_supported(cls, value: str) -> str:
        return _check_supported(value)


class DownloadRequest(BaseModel):
    """Request model for a single video download."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(..., description="Video URL on a supported platform")
    quality: Optional[str] = Field(
        None,
        max_length=50,
        description="yt-dlp format id; omit to get metadata instead of a file",
        examples=["22", "137"],
    )
    download_id: Optional[str] = Field(
        None,
        alias="downloadId",
        max_length=64,
        description="Correlation token for progress events",
    )

    @field_validator("url")
    @classmethod
    def url_supported(cls, value: str) -> str:
        return _check_supported(value)


class BatchDownloadItem(BaseModel):
    """Single item in a batch download request."""

    url: str = Field(..., description="Video URL on a supported platform")
    quality: Optional[str] = Field(None, max_length=50)
    title: Optional[str] = Field(None, max_length=300)

    @field_validator("url")
    @classmethod
    def url_supported(cls, value: str) -> str:
        return _check_supported(value)


class BatchDownloadRequest(BaseModel):
    """Request model for a batch download packed into one ZIP."""

    model_config = ConfigDict(populate_by_name=True)

    videos: List[BatchDownloadItem] = Field(
        ...,
        min_length=1,
        max_length=MAX_BATCH_VIDEOS,
        description=f"Videos to download (max {MAX_BATCH_VIDEOS})",
    )
    download_id: Optional[str] = Field(None, alias="downloadId", max_length=64)


class ProgressToken(BaseModel):
    """Server-minted correlation token."""

    downloadId: str


class HealthCheck(BaseModel):
    """Response model for health check."""

    status: str
    timestamp: str
    checks: dict
