"""Metadata endpoint used by the frontend before a download."""

from fastapi import APIRouter, Depends

from app.dependencies import get_metadata_service
from app.models.schemas import InfoRequest
from app.services.metadata import MetadataService


router = APIRouter(tags=["info"])


@router.post("/api/info")
async def video_info_endpoint(
    request: InfoRequest,
    metadata: MetadataService = Depends(get_metadata_service),
) -> dict:
    """Return yt-dlp's info for a video, or the entries of a playlist."""
    return await metadata.fetch_info(request.url)
