"""Per-platform cookie bundle lookup.

Cookie files are exported from a logged-in browser and dropped into
``COOKIES_DIR`` as ``<domain>_cookies.txt``. They are refreshed by hand
while the service runs, so existence is checked on every lookup.
"""

from pathlib import Path
from typing import Dict, Optional, Union

from app.config import settings
from app.services import logger
from app.utils.urls import hostname_of, host_matches


# domain -> cookie file name; the two X/Twitter domains share one bundle
COOKIE_FILES: Dict[str, str] = {
    "instagram.com": "instagram.com_cookies.txt",
    "facebook.com": "facebook.com_cookies.txt",
    "fb.watch": "facebook.com_cookies.txt",
    "tiktok.com": "tiktok.com_cookies.txt",
    "vt.tiktok.com": "tiktok.com_cookies.txt",
    "youtube.com": "youtube.com_cookies.txt",
    "youtu.be": "youtube.com_cookies.txt",
    "twitter.com": "x.com_cookies.txt",
    "x.com": "x.com_cookies.txt",
}


class CookieStore:
    """
    Resolves a URL to the cookie file yt-dlp should use for it.

    Lookup picks the longest table domain the URL's host falls under, so
    ``vt.tiktok.com`` wins over ``tiktok.com``. A mapped file that does
    not exist yields None; callers simply run without cookies.
    """

    def __init__(self, base_dir: Union[str, Path], table: Optional[Dict[str, str]] = None):
        self.base_dir = Path(base_dir)
        self.table = dict(table if table is not None else COOKIE_FILES)

    def _match_domain(self, url: str) -> Optional[str]:
        host = hostname_of(url)
        if not host:
            return None
        matches = [domain for domain in self.table if host_matches(host, domain)]
        if not matches:
            return None
        return max(matches, key=len)

    def resolve(self, url: str) -> Optional[Path]:
        """Return the cookie file for ``url`` if one is mapped and present on disk."""
        domain = self._match_domain(url)
        if domain is None:
            return None

        path = self.base_dir / self.table[domain]
        if path.is_file():
            logger.debug(f"Using cookies file: {path}", "download", {"domain": domain})
            return path

        logger.debug(f"No cookies file for {domain} at {path}", "download", {"domain": domain})
        return None


_cookie_store: Optional[CookieStore] = None


def get_cookie_store() -> CookieStore:
    """Get the process-wide cookie store rooted at COOKIES_DIR."""
    global _cookie_store
    if _cookie_store is None:
        _cookie_store = CookieStore(settings.COOKIES_DIR)
    return _cookie_store
