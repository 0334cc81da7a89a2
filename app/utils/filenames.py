"""Filename normalisation for titles coming from arbitrary platforms."""

import re

MAX_FILENAME_LENGTH = 80

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.]")
_UNDERSCORE_RUNS = re.compile(r"_+")


def sanitize_filename(name: str) -> str:
    """
    Reduce an arbitrary title to a safe filesystem name.

    Every character outside ``[A-Za-z0-9_.]`` becomes an underscore,
    underscore runs collapse to one, and the result never starts or ends
    with an underscore and is at most 80 characters long. The result may
    be empty; callers supply their own fallback.
    """
    if not name:
        return ""
    cleaned = _UNSAFE_CHARS.sub("_", str(name))
    cleaned = _UNDERSCORE_RUNS.sub("_", cleaned).strip("_")
    # Truncation can expose a trailing underscore again
    return cleaned[:MAX_FILENAME_LENGTH].strip("_")


def is_usable_basename(name: str) -> bool:
    """A sanitized name is usable when it is not empty and not only dots."""
    return bool(name) and name.strip(".") != ""


def attachment_header(filename: str) -> str:
    """Content-Disposition value for a download of ``filename``."""
    safe = filename.replace("\\", "_").replace('"', "_")
    return f'attachment; filename="{safe}"'
