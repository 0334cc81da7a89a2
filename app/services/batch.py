"""Sequential multi-video download into a streamed ZIP archive.

Videos are downloaded one at a time, in request order, and each finished
file is written into the archive as soon as it is validated, so the
client starts receiving bytes after the first video instead of after the
last. A video that fails is replaced by a short text entry describing the
failure; one bad link never sinks the whole archive.
"""

import asyncio
import time
import zipfile
from pathlib import PurePosixPath
from typing import AsyncIterator, List, Optional, Sequence, Set

import aiofiles

from app.services import logger
from app.services.orchestrator import STREAM_CHUNK_BYTES, DownloadOrchestrator, VideoRequest
from app.services.progress import ProgressRelay, get_progress_relay
from app.utils.exceptions import BatchItemFailed, InvalidRequestError

MAX_BATCH_VIDEOS = 20

# Media is already compressed; keep deflate cheap
ZIP_COMPRESSLEVEL = 1


class _ArchiveSink:
    """Write-only, unseekable buffer that zipfile writes into and the stream drains."""

    def __init__(self):
        self._chunks: List[bytes] = []

    def write(self, data) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def unique_entry_name(filename: str, taken: Set[str]) -> str:
    """Return ``filename`` or ``stem_N.ext`` so no two archive entries collide."""
    if filename not in taken:
        taken.add(filename)
        return filename
    path = PurePosixPath(filename)
    counter = 2
    while True:
        candidate = f"{path.stem}_{counter}{path.suffix}"
        if candidate not in taken:
            taken.add(candidate)
            return candidate
        counter += 1


def validate_manifest(requests: Sequence[VideoRequest]) -> None:
    """Reject empty or oversized manifests before any download starts."""
    if not requests:
        raise InvalidRequestError("No videos provided")
    if len(requests) > MAX_BATCH_VIDEOS:
        raise InvalidRequestError(f"At most {MAX_BATCH_VIDEOS} videos per batch")


class BatchOrchestrator:
    """Runs a manifest of VideoRequests through the single-video orchestrator."""

    def __init__(
        self,
        orchestrator: Optional[DownloadOrchestrator] = None,
        relay: Optional[ProgressRelay] = None,
    ):
        self.orchestrator = orchestrator or DownloadOrchestrator()
        self.relay = relay or get_progress_relay()

    async def stream(
        self,
        requests: Sequence[VideoRequest],
        download_id: Optional[str] = None,
    ) -> AsyncIterator[bytes]:
        """
        Yield the bytes of a ZIP archive holding one entry per request.

        Args:
            requests: Videos in the order their entries should appear
            download_id: Optional token for ``{percent, isBatch}`` progress events

        Raises:
            InvalidRequestError: Empty manifest or more than MAX_BATCH_VIDEOS entries
        """
        validate_manifest(requests)

        total = len(requests)
        succeeded = 0
        start_time = time.time()
        taken: Set[str] = set()
        sink = _ArchiveSink()

        logger.info(f"Batch download started: {total} videos", "batch", {"download_id": download_id, "video_count": total})

        with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=ZIP_COMPRESSLEVEL) as archive:
            for index, request in enumerate(requests, start=1):
                source = request.title or request.url
                try:
                    result = await self.orchestrator.run(request)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    failure = BatchItemFailed(source, e)
                    archive.writestr(f"error_{index:02d}.txt", failure.placeholder_text())
                    logger.warn(
                        f"Batch item {index}/{total} failed: {failure.message[:100]}",
                        "batch",
                        {"download_id": download_id, "url": request.url},
                    )
                else:
                    try:
                        entry_name = unique_entry_name(result.filename, taken)
                        entry_info = zipfile.ZipInfo.from_file(result.file_path, arcname=entry_name)
                        entry_info.compress_type = zipfile.ZIP_DEFLATED
                        with archive.open(entry_info, mode="w") as entry:
                            async with aiofiles.open(result.file_path, "rb") as f:
                                while True:
                                    chunk = await f.read(STREAM_CHUNK_BYTES)
                                    if not chunk:
                                        break
                                    entry.write(chunk)
                                    data = sink.drain()
                                    if data:
                                        yield data
                        succeeded += 1
                    finally:
                        result.release_workspace()

                data = sink.drain()
                if data:
                    yield data
                self.relay.publish(download_id, min(index / total * 100, 99.0), is_batch=True)

        # Closing the archive wrote the central directory
        yield sink.drain()
        self.relay.publish(download_id, 100, is_batch=True)

        logger.success(
            f"Batch download complete: {succeeded} succeeded, {total - succeeded} failed",
            "batch",
            {
                "download_id": download_id,
                "succeeded": succeeded,
                "failed": total - succeeded,
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )
