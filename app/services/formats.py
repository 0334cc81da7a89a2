"""yt-dlp format selection policy per platform.

PLATFORM POLICY
===============
Each platform serves its own mix of codecs and containers, and a single
generic "best" expression produces files that will not play everywhere.
The rules below are evaluated in order; the first platform rule that
applies decides the plan.

1. Facebook   - always best H.264 + AAC, merge and recode to mp4.
                Requested quality is ignored.
2. X/Twitter  - best video + best audio, merge to mp4, never recode
                (recoding breaks on these streams).
3. Instagram  - video-only formats pass through untouched; otherwise the
                requested quality (or best mp4 + m4a), merged and recoded.
                Needs a browser user agent and Accept-Language header.
4. Default    - YouTube family, TikTok and anything else:
                  no quality       -> best-compatible, merge + recode
                  audio-only       -> as-is, no merge or recode
                  video-only       -> "<id>+bestaudio[acodec-prefix=mp4a]/best", merge + recode
                  anything else    -> as-is, merge + recode

A "requested format is not available" failure on the first download
attempt allows one retry with the best-compatible expression.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from app.utils.urls import Platform


# === FORMAT EXPRESSIONS ===
BEST_COMPATIBLE_FORMAT = "bestvideo[vcodec^=avc1]+bestaudio[acodec^=mp4a]/best"
TWITTER_FORMAT = "bestvideo+bestaudio/best"
INSTAGRAM_FALLBACK_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best"
VIDEO_ONLY_AUDIO_SUFFIX = "+bestaudio[acodec-prefix=mp4a]/best"

OUTPUT_CONTAINER = "mp4"

# Codec value yt-dlp uses to mark an absent stream
NO_CODEC = "none"

INSTAGRAM_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36"
)
INSTAGRAM_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("Accept-Language", "en-US,en;q=0.9"),
)


@dataclass(frozen=True)
class FormatDescriptor:
    """One encoding variant a source offers, as reported by the metadata probe."""
    format_id: str
    vcodec: Optional[str] = None
    acodec: Optional[str] = None
    has_direct_url: bool = False

    @property
    def is_audio_only(self) -> bool:
        return self.vcodec == NO_CODEC and self.acodec not in (None, NO_CODEC)

    @property
    def is_video_only(self) -> bool:
        return self.acodec == NO_CODEC and self.vcodec not in (None, NO_CODEC)

    @classmethod
    def from_info(cls, fmt: dict) -> "FormatDescriptor":
        """Build a descriptor from one entry of the probe's ``formats`` list."""
        return cls(
            format_id=str(fmt.get("format_id", "")),
            vcodec=fmt.get("vcodec"),
            acodec=fmt.get("acodec"),
            has_direct_url=bool(fmt.get("url")),
        )


def parse_formats(info: dict) -> List[FormatDescriptor]:
    """Extract format descriptors from a probe result, skipping entries without an id."""
    return [
        FormatDescriptor.from_info(fmt)
        for fmt in info.get("formats") or []
        if fmt.get("format_id") is not None
    ]


@dataclass(frozen=True)
class DownloadPlan:
    """The concrete yt-dlp format arguments for one download attempt."""
    format_expression: str
    requires_merge: bool
    requires_recode: bool
    is_audio_only: bool = False
    user_agent: Optional[str] = None
    http_headers: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    is_fallback: bool = False

    @property
    def argument_list(self) -> List[str]:
        """yt-dlp arguments implementing this plan, in a fixed order."""
        args = ["-f", self.format_expression]
        if self.requires_merge:
            args.extend(["--merge-output-format", OUTPUT_CONTAINER])
        if self.requires_recode:
            args.extend(["--recode-video", OUTPUT_CONTAINER])
        if self.user_agent:
            args.extend(["--user-agent", self.user_agent])
        for name, value in self.http_headers:
            args.extend(["--add-header", f"{name}:{value}"])
        return args

    @property
    def can_fall_back(self) -> bool:
        """Whether a format failure may still be retried with the best-compatible expression."""
        return not self.is_fallback and self.format_expression != BEST_COMPATIBLE_FORMAT

    def with_fallback(self) -> "DownloadPlan":
        """
        Second-attempt plan: only the format expression is replaced.

        The best-compatible expression always merges. A plan that already
        merged keeps its recode choice, so X/Twitter retries are still never
        recoded; unmerged plans (audio-only, Instagram pass-through) gain
        merge and recode.
        """
        return replace(
            self,
            format_expression=BEST_COMPATIBLE_FORMAT,
            requires_merge=True,
            requires_recode=self.requires_recode if self.requires_merge else True,
            is_audio_only=False,
            is_fallback=True,
        )


def _find_format(formats: Iterable[FormatDescriptor], format_id: Optional[str]) -> Optional[FormatDescriptor]:
    if not format_id:
        return None
    for fmt in formats:
        if fmt.format_id == format_id:
            return fmt
    return None


def _facebook_plan(quality: Optional[str], formats: Sequence[FormatDescriptor]) -> DownloadPlan:
    return DownloadPlan(BEST_COMPATIBLE_FORMAT, requires_merge=True, requires_recode=True)


def _twitter_plan(quality: Optional[str], formats: Sequence[FormatDescriptor]) -> DownloadPlan:
    return DownloadPlan(TWITTER_FORMAT, requires_merge=True, requires_recode=False)


def _instagram_plan(quality: Optional[str], formats: Sequence[FormatDescriptor]) -> DownloadPlan:
    selected = _find_format(formats, quality)
    if selected is not None and selected.acodec == NO_CODEC:
        return DownloadPlan(
            quality,
            requires_merge=False,
            requires_recode=False,
            user_agent=INSTAGRAM_USER_AGENT,
            http_headers=INSTAGRAM_HEADERS,
        )
    return DownloadPlan(
        quality or INSTAGRAM_FALLBACK_FORMAT,
        requires_merge=True,
        requires_recode=True,
        user_agent=INSTAGRAM_USER_AGENT,
        http_headers=INSTAGRAM_HEADERS,
    )


def _default_plan(quality: Optional[str], formats: Sequence[FormatDescriptor]) -> DownloadPlan:
    if not quality:
        return DownloadPlan(BEST_COMPATIBLE_FORMAT, requires_merge=True, requires_recode=True)

    selected = _find_format(formats, quality)
    if selected is not None and selected.is_audio_only:
        # Recoding an audio-only stream into a video container is invalid
        return DownloadPlan(quality, requires_merge=False, requires_recode=False, is_audio_only=True)
    if selected is not None and selected.is_video_only:
        return DownloadPlan(quality + VIDEO_ONLY_AUDIO_SUFFIX, requires_merge=True, requires_recode=True)
    return DownloadPlan(quality, requires_merge=True, requires_recode=True)


# Ordered platform rules; anything not listed uses the default policy
PLATFORM_RULES: Tuple[Tuple[Platform, Callable[[Optional[str], Sequence[FormatDescriptor]], DownloadPlan]], ...] = (
    (Platform.FACEBOOK, _facebook_plan),
    (Platform.TWITTER, _twitter_plan),
    (Platform.INSTAGRAM, _instagram_plan),
)

_RULES_BY_PLATFORM: Dict[Platform, Callable] = dict(PLATFORM_RULES)


def select_plan(
    platform: Platform,
    quality: Optional[str],
    formats: Sequence[FormatDescriptor] = (),
) -> DownloadPlan:
    """
    Decide the format arguments for a download.

    Pure function of its inputs: the same platform, quality and formats
    always produce an equal plan.

    Args:
        platform: Platform the URL belongs to
        quality: Requested yt-dlp format id, or None for automatic
        formats: Formats reported by the metadata probe

    Returns:
        DownloadPlan for the first download attempt
    """
    rule = _RULES_BY_PLATFORM.get(platform, _default_plan)
    return rule(quality or None, tuple(formats))
