"""Pass-through proxy for platform thumbnails.

Some platforms refuse hot-linked thumbnails or send no CORS headers, so
the frontend loads them through this service instead.
"""

from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from app.services import logger

THUMBNAIL_TIMEOUT_SECONDS = 15.0

THUMBNAIL_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class ThumbnailUpstreamError(Exception):
    """The image host answered with a non-success status."""

    def __init__(self, status_code: int, reason: str):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"Failed to fetch image: {status_code} {reason}")


@dataclass
class ThumbnailStream:
    """An open upstream image response; ``close`` must run after streaming."""
    content_type: str
    response: httpx.Response
    client: httpx.AsyncClient

    def iter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def close(self) -> None:
        await self.response.aclose()
        await self.client.aclose()


def is_proxyable(url: str) -> bool:
    return bool(url) and (url.startswith("https://") or url.startswith("http://"))


async def open_thumbnail(url: str, transport: httpx.AsyncBaseTransport = None) -> ThumbnailStream:
    """
    Start fetching ``url`` and return the open response for streaming.

    Raises:
        ThumbnailUpstreamError: Upstream answered with a non-2xx status
        httpx.HTTPError: Connection or protocol failure
    """
    client = httpx.AsyncClient(
        follow_redirects=True,
        timeout=THUMBNAIL_TIMEOUT_SECONDS,
        headers=THUMBNAIL_HEADERS,
        transport=transport,
    )
    try:
        response = await client.send(client.build_request("GET", url), stream=True)
    except httpx.HTTPError:
        await client.aclose()
        raise

    if not response.is_success:
        await response.aclose()
        await client.aclose()
        logger.warn(f"Thumbnail upstream returned {response.status_code}", "proxy", {"url": url})
        raise ThumbnailUpstreamError(response.status_code, response.reason_phrase)

    return ThumbnailStream(
        content_type=response.headers.get("content-type") or "image/jpeg",
        response=response,
        client=client,
    )
