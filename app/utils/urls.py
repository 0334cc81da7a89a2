"""Supported platform whitelist and platform detection."""

import re
from enum import Enum
from typing import Any
from urllib.parse import urlsplit


_SUPPORTED_URL = re.compile(
    r"^(https?:)?//([a-zA-Z0-9-]+\.)?"
    r"(youtube\.com|youtu\.be|m\.youtube\.com|music\.youtube\.com"
    r"|facebook\.com|fb\.watch"
    r"|instagram\.com"
    r"|tiktok\.com|vt\.tiktok\.com"
    r"|twitter\.com|x\.com)/"
)


class Platform(Enum):
    """Platforms with their own format selection policy."""
    YOUTUBE = "youtube"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    TWITTER = "twitter"
    OTHER = "other"


# hostname suffix -> platform
_PLATFORM_DOMAINS = {
    "youtube.com": Platform.YOUTUBE,
    "youtu.be": Platform.YOUTUBE,
    "facebook.com": Platform.FACEBOOK,
    "fb.watch": Platform.FACEBOOK,
    "instagram.com": Platform.INSTAGRAM,
    "tiktok.com": Platform.TIKTOK,
    "twitter.com": Platform.TWITTER,
    "x.com": Platform.TWITTER,
}


def is_supported(url: Any) -> bool:
    """Return True only for strings that point at a whitelisted platform host."""
    return isinstance(url, str) and _SUPPORTED_URL.match(url) is not None


def hostname_of(url: str) -> str:
    """Lower-cased hostname of ``url``; empty when it cannot be parsed."""
    if not isinstance(url, str):
        return ""
    if "//" not in url:
        url = "//" + url
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def host_matches(host: str, domain: str) -> bool:
    """True when ``host`` is ``domain`` or one of its subdomains."""
    return host == domain or host.endswith("." + domain)


def detect_platform(url: str) -> Platform:
    """Classify a URL into one of the closed set of platforms."""
    host = hostname_of(url)
    for domain, platform in _PLATFORM_DOMAINS.items():
        if host_matches(host, domain):
            return platform
    return Platform.OTHER
