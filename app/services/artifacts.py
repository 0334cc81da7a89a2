"""Sanity checks on files produced by yt-dlp.

A zero exit status does not guarantee a playable file: platforms hand
out login walls and error pages with a 200, and yt-dlp will happily save
them. Every artifact is checked before a single byte reaches the client.
"""

from pathlib import Path
from typing import List

from app.utils.exceptions import CorruptArtifactError, DownloadFailedError

MIN_ARTIFACT_BYTES = 10 * 1024
HEADER_BYTES = 512
EXCERPT_CHARS = 200

# Leftovers yt-dlp may leave next to the real output
_PARTIAL_SUFFIXES = {".part", ".ytdl", ".temp", ".tmp"}

# Box types that may open an ISO-BMFF file (mp4, m4a, mov)
_ISO_BMFF_BOXES = (b"ftyp", b"moov", b"mdat", b"free", b"wide", b"skip")

_TEXT_MARKERS = (
    b"<!doctype",
    b"<html",
    b"<?xml",
    b"<head",
    b"<body",
    b"{\"",
    b"{\n",
    b"[{",
)


def _has_media_signature(header: bytes) -> bool:
    if len(header) >= 8 and header[4:8] in _ISO_BMFF_BOXES:
        return True
    if header.startswith(b"\x1a\x45\xdf\xa3"):  # Matroska / WebM
        return True
    if header.startswith(b"ID3"):
        return True
    if len(header) >= 2 and header[0] == 0xFF and (header[1] & 0xE0) == 0xE0:  # MPEG audio frame
        return True
    if header.startswith(b"OggS") or header.startswith(b"FLV") or header.startswith(b"RIFF"):
        return True
    if header.startswith(b"\x47") and len(header) > 188 and header[188] == 0x47:  # MPEG-TS
        return True
    return False


def _looks_textual(header: bytes) -> bool:
    stripped = header.lstrip().lower()
    if any(stripped.startswith(marker) for marker in _TEXT_MARKERS):
        return True
    if b"<html" in stripped or b"<!doctype html" in stripped:
        return True
    if not header:
        return False
    # Media containers are binary; text pages are almost all printable
    printable = sum(1 for b in header if 32 <= b < 127 or b in (9, 10, 13))
    return printable / len(header) > 0.95


def _excerpt(header: bytes) -> str:
    return header.decode("utf-8", errors="replace")[:EXCERPT_CHARS]


def find_artifact(directory: Path, basename: str) -> Path:
    """
    Locate the single output file named ``<basename>.<ext>`` in ``directory``.

    Raises:
        DownloadFailedError: No output file, or more than one candidate
    """
    candidates: List[Path] = [
        p for p in directory.iterdir()
        if p.is_file() and p.stem == basename and p.suffix.lower() not in _PARTIAL_SUFFIXES
    ]
    if not candidates:
        leftovers = ", ".join(sorted(p.name for p in directory.iterdir())) or "(empty)"
        raise DownloadFailedError(
            "yt-dlp finished but produced no output file",
            details=f"workspace contents: {leftovers}",
        )
    if len(candidates) > 1:
        raise DownloadFailedError(
            "yt-dlp produced more than one output file",
            details=", ".join(sorted(p.name for p in candidates)),
        )
    return candidates[0]


def validate_artifact(path: Path, min_bytes: int = MIN_ARTIFACT_BYTES) -> int:
    """
    Check that ``path`` is a real media file.

    Returns:
        The file size in bytes

    Raises:
        CorruptArtifactError: Too small, textual / markup content, or no known container signature
    """
    size = path.stat().st_size
    with open(path, "rb") as f:
        header = f.read(HEADER_BYTES)

    has_signature = _has_media_signature(header)

    # A container magic outranks the printable-ratio heuristic (ID3 text frames)
    if not has_signature and _looks_textual(header):
        raise CorruptArtifactError(
            f"Downloaded file is text or markup ({size} bytes)",
            details=_excerpt(header),
        )
    if size < min_bytes:
        raise CorruptArtifactError(
            f"Downloaded file is too small ({size} bytes, minimum {min_bytes})",
            details=_excerpt(header),
        )
    if not has_signature:
        raise CorruptArtifactError(
            "Downloaded file has no recognised media container signature",
            details=_excerpt(header),
        )
    return size

