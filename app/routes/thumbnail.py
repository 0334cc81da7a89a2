"""Thumbnail pass-through with permissive CORS."""

import httpx
from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from app.services import logger
from app.services.thumbnails import ThumbnailUpstreamError, is_proxyable, open_thumbnail


router = APIRouter(tags=["thumbnail"])

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


@router.get("/api/proxy-thumbnail")
async def proxy_thumbnail(url: str = Query(None)):
    """Fetch an image from a platform CDN and relay it to the browser."""
    if not url or not is_proxyable(url):
        return PlainTextResponse("Invalid URL", status_code=400)

    try:
        thumbnail = await open_thumbnail(url)
    except ThumbnailUpstreamError as e:
        return PlainTextResponse(str(e), status_code=502, headers=CORS_HEADERS)
    except httpx.HTTPError as e:
        logger.error(f"Proxy thumbnail error: {e}", "proxy", {"url": url})
        return PlainTextResponse(f"Error proxying image: {e}", status_code=500, headers=CORS_HEADERS)

    return StreamingResponse(
        thumbnail.iter_bytes(),
        media_type=thumbnail.content_type,
        headers=CORS_HEADERS,
        background=BackgroundTask(thumbnail.close),
    )
