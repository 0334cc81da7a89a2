import os
import tempfile

# Settings are read at import time; point scratch and logs somewhere disposable
_TEST_ROOT = tempfile.mkdtemp(prefix="videodl-tests-")
os.environ.setdefault("TEMP_DIR", os.path.join(_TEST_ROOT, "downloads"))
os.environ.setdefault("LOG_DIR", os.path.join(_TEST_ROOT, "logs"))
os.environ.setdefault("COOKIES_DIR", os.path.join(_TEST_ROOT, "cookies"))

from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

from app.services.cookies import CookieStore
from app.services.progress import ProgressRelay
from app.services.ytdlp import ToolResult, ToolRunner, classify_probe_failure


# A minimal ISO-BMFF header padded past the minimum artifact size
MP4_BYTES = b"\x00\x00\x00\x20ftypisom\x00\x00\x02\x00isomiso2avc1mp41" + b"\x00\x01\x02\x03" * 8192

HTML_BYTES = b"<!DOCTYPE html><html><head><title>Login</title></head><body>" + b"x" * 1900 + b"</body></html>"


class Outcome:
    """What the fake yt-dlp does for one download invocation."""

    def __init__(
        self,
        returncode: int = 0,
        content: Optional[bytes] = MP4_BYTES,
        ext: str = "mp4",
        stderr: str = "",
        lines: Optional[List[str]] = None,
    ):
        self.returncode = returncode
        self.content = content
        self.ext = ext
        self.stderr = stderr
        self.lines = lines or []


class FakeRunner(ToolRunner):
    """
    Stands in for the yt-dlp process.

    ``infos`` maps URL -> info dict or probe diagnostic (str, probe fails);
    ``outcomes`` maps URL -> list of Outcome consumed one per download attempt.
    """

    def __init__(
        self,
        infos: Optional[Dict[str, Union[dict, str]]] = None,
        outcomes: Optional[Dict[str, List[Outcome]]] = None,
        on_run: Optional[Callable] = None,
    ):
        super().__init__("yt-dlp-fake")
        self.infos = infos or {}
        self.outcomes = {url: list(items) for url, items in (outcomes or {}).items()}
        self.on_run = on_run
        self.probe_calls: List[dict] = []
        self.run_calls: List[List[str]] = []

    @property
    def spawned(self) -> int:
        return len(self.probe_calls) + len(self.run_calls)

    async def probe(self, url, cookies=None, no_playlist=True, flat_playlist=False):
        self.probe_calls.append({
            "url": url,
            "cookies": cookies,
            "no_playlist": no_playlist,
            "flat_playlist": flat_playlist,
        })
        info = self.infos.get(url, {"id": "x", "title": "Untitled", "formats": []})
        if isinstance(info, str):
            raise classify_probe_failure(info, url)
        return dict(info)

    async def run(self, args, on_line=None, timeout=None):
        args = list(args)
        self.run_calls.append(args)
        if self.on_run is not None:
            await self.on_run(args)

        url = args[-1]
        outcome = self.outcomes.get(url, [Outcome()]).pop(0) if self.outcomes.get(url) else Outcome()

        for line in outcome.lines:
            if on_line:
                on_line(line)

        if outcome.returncode == 0 and outcome.content is not None:
            template = args[args.index("-o") + 1]
            Path(template.replace("%(ext)s", outcome.ext)).write_bytes(outcome.content)

        return ToolResult(outcome.returncode, "", outcome.stderr)


def format_entry(format_id, vcodec, acodec, url="https://cdn.example/stream"):
    return {"format_id": format_id, "vcodec": vcodec, "acodec": acodec, "url": url, "ext": "mp4"}


YOUTUBE_INFO = {
    "id": "abc",
    "title": "My Great Video!",
    "formats": [
        format_entry("22", "avc1.64001F", "mp4a.40.2"),
        format_entry("137", "avc1.640028", "none"),
        format_entry("140", "none", "mp4a.40.2"),
    ],
}


@pytest.fixture
def workspace_root(tmp_path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def cookie_dir(tmp_path) -> Path:
    path = tmp_path / "cookies"
    path.mkdir()
    return path


@pytest.fixture
def cookie_store(cookie_dir) -> CookieStore:
    return CookieStore(cookie_dir)


@pytest.fixture
def relay() -> ProgressRelay:
    return ProgressRelay()
