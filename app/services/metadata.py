"""Video and playlist metadata for the frontend's quality picker."""

import asyncio
from typing import Optional

from app.services import logger
from app.services.cookies import CookieStore, get_cookie_store
from app.services.ytdlp import ToolRunner, get_tool_runner
from app.utils.urls import Platform, detect_platform


def pick_thumbnail(info: dict) -> Optional[str]:
    """Prefer an https thumbnail; fall back to the first https entry in ``thumbnails``."""
    thumbnail = info.get("thumbnail")
    if thumbnail and str(thumbnail).startswith("https:"):
        return thumbnail
    for candidate in info.get("thumbnails") or []:
        url = candidate.get("url") if isinstance(candidate, dict) else None
        if url and url.startswith("https:"):
            return url
    return thumbnail


def _is_playlist(info: dict) -> bool:
    return isinstance(info.get("entries"), list)


class MetadataService:
    """Wraps the yt-dlp metadata probe for the info endpoints."""

    def __init__(self, runner: Optional[ToolRunner] = None, cookies: Optional[CookieStore] = None):
        self.runner = runner or get_tool_runner()
        self.cookies = cookies or get_cookie_store()

    async def fetch_info(self, url: str) -> dict:
        """
        Full info for a URL. Playlists are reduced to their entries.

        Instagram posts are probed without --no-playlist so carousel posts
        resolve to their media.
        """
        cookies = self.cookies.resolve(url)
        info = await self.runner.probe(
            url,
            cookies=cookies,
            no_playlist=detect_platform(url) != Platform.INSTAGRAM,
        )

        if _is_playlist(info):
            return {
                "isPlaylist": True,
                "playlistTitle": info.get("title"),
                "videos": [
                    {
                        "id": entry.get("id"),
                        "title": entry.get("title"),
                        "url": entry.get("url") or entry.get("webpage_url"),
                        "thumbnail": entry.get("thumbnail"),
                        "formats": entry.get("formats"),
                    }
                    for entry in info["entries"]
                    if entry
                ],
            }
        return info

    async def fetch_listing(self, url: str) -> dict:
        """
        Metadata for the download dialog.

        A flat probe decides between single video and playlist; playlist
        entries are then probed individually, concurrently, so each one
        carries its own formats.
        """
        cookies = self.cookies.resolve(url)
        info = await self.runner.probe(url, cookies=cookies, no_playlist=False, flat_playlist=True)

        if not _is_playlist(info):
            info["thumbnail"] = pick_thumbnail(info)
            return info

        entries = [entry for entry in info["entries"] if entry]
        logger.info(
            f"Expanding playlist with {len(entries)} entries",
            "download",
            {"url": url, "entries": len(entries)},
        )
        videos = await asyncio.gather(*(self._expand_entry(entry, cookies) for entry in entries))
        return {
            "isPlaylist": True,
            "playlistTitle": info.get("title") or "Untitled Playlist",
            "videos": list(videos),
        }

    async def _expand_entry(self, entry: dict, cookies) -> dict:
        video_url = entry.get("url") or f"https://www.youtube.com/watch?v={entry.get('id')}"
        full = await self.runner.probe(video_url, cookies=cookies, no_playlist=False)
        return {
            "id": full.get("id"),
            "title": full.get("title") or f"Video {full.get('id')}",
            "url": full.get("webpage_url") or video_url,
            "thumbnail": pick_thumbnail(full),
            "formats": full.get("formats") or [],
        }
