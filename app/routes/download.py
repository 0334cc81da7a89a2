"""Download endpoints: single video stream and playlist ZIP."""

import asyncio
from typing import Awaitable, TypeVar

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from app.dependencies import get_batch_orchestrator, get_metadata_service, get_orchestrator, get_relay
from app.models.schemas import BatchDownloadRequest, DownloadRequest
from app.services import logger
from app.services.batch import BatchOrchestrator, validate_manifest
from app.services.metadata import MetadataService
from app.services.orchestrator import DownloadOrchestrator, VideoRequest, iter_artifact
from app.services.progress import ProgressRelay
from app.utils.filenames import attachment_header


router = APIRouter(tags=["download"])

# How often a running download checks whether its client is still there
DISCONNECT_POLL_SECONDS = 0.25

# nginx convention for "client closed request"
CLIENT_CLOSED_STATUS = 499

T = TypeVar("T")


class ClientDisconnected(Exception):
    """The HTTP client went away while the work was still running."""
    pass


async def run_until_disconnect(http_request: Request, work: Awaitable[T]) -> T:
    """
    Await ``work`` while watching the client connection.

    Starlette keeps running an endpoint after its client leaves, so the
    work runs as a task that is cancelled on disconnect. Cancelling a
    download kills its yt-dlp process and releases its workspace.

    Raises:
        ClientDisconnected: The client left before the work finished
    """
    task = asyncio.ensure_future(work)
    disconnected = False
    try:
        while not task.done():
            await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if not task.done() and await http_request.is_disconnected():
                disconnected = True
                task.cancel()
                break
        return await task
    except asyncio.CancelledError:
        if not disconnected:
            task.cancel()
            raise
        raise ClientDisconnected()


@router.post(
    "/api/download",
    responses={
        200: {"description": "Video metadata (no quality) or the media file"},
        400: {"description": "Invalid or unsupported video URL"},
        403: {"description": "Platform requires login/cookies"},
        429: {"description": "Platform is rate limiting this server"},
        500: {"description": "Download failed"},
        502: {"description": "Platform returned an invalid file"},
    },
)
async def download_video_endpoint(
    request: DownloadRequest,
    http_request: Request,
    orchestrator: DownloadOrchestrator = Depends(get_orchestrator),
    metadata: MetadataService = Depends(get_metadata_service),
    relay: ProgressRelay = Depends(get_relay),
):
    """
    Download a video, or describe it when no quality is given.

    Without ``quality`` the response is the metadata listing (single video
    or expanded playlist). With ``quality`` the validated file is streamed
    as an attachment; progress goes to ``downloadId`` subscribers.
    """
    logger.info(
        f"Download request received: {request.url}",
        "download",
        {"download_id": request.download_id, "quality": request.quality},
    )

    try:
        if not request.quality:
            return await run_until_disconnect(http_request, metadata.fetch_listing(request.url))

        result = await run_until_disconnect(
            http_request,
            orchestrator.run(
                VideoRequest(
                    url=request.url,
                    quality=request.quality,
                    download_id=request.download_id,
                )
            ),
        )
    except ClientDisconnected:
        logger.warn(
            "Client disconnected, download cancelled",
            "download",
            {"download_id": request.download_id, "url": request.url},
        )
        return Response(status_code=CLIENT_CLOSED_STATUS)

    return StreamingResponse(
        iter_artifact(result, request.download_id, relay),
        media_type="video/mp4",
        headers={
            "Content-Disposition": attachment_header(result.filename),
            "Content-Length": str(result.size_bytes),
        },
        # Covers a client that leaves before the body is iterated
        background=BackgroundTask(result.release_workspace),
    )


@router.post(
    "/api/download-playlist",
    responses={
        200: {"description": "ZIP archive, one entry per video"},
        400: {"description": "Malformed batch"},
    },
)
async def download_playlist_endpoint(
    request: BatchDownloadRequest,
    batch: BatchOrchestrator = Depends(get_batch_orchestrator),
):
    """
    Download several videos into one ZIP.

    Videos are fetched one after another. Failed videos become
    ``error_NN.txt`` entries; the archive is always delivered.
    """
    requests = [
        VideoRequest(url=video.url, quality=video.quality, title=video.title)
        for video in request.videos
    ]
    validate_manifest(requests)

    logger.info(
        f"Batch download request received: {len(requests)} videos",
        "batch",
        {"download_id": request.download_id, "video_count": len(requests)},
    )

    return StreamingResponse(
        batch.stream(requests, request.download_id),
        media_type="application/zip",
        headers={"Content-Disposition": attachment_header("playlist.zip")},
    )
