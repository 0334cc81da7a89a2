import asyncio
import json
import sys

import pytest

from app.services.ytdlp import (
    ToolResult,
    ToolRunner,
    classify_probe_failure,
    is_format_unavailable,
    parse_progress,
)
from app.utils.exceptions import MetadataProbeError


@pytest.mark.parametrize("line, percent", [
    ("[download]  42.3% of   10.00MiB at    1.00MiB/s ETA 00:05", 42.3),
    ("[download] 100% of 10.00MiB in 00:00:03", 100.0),
    ("[download]   0.0% of ~  3.20MiB at  Unknown B/s ETA Unknown", 0.0),
    ("[download] Destination: /tmp/x/download.f137.mp4", None),
    ("[Merger] Merging formats into \"download.mp4\"", None),
    ("", None),
])
def test_parse_progress(line, percent):
    assert parse_progress(line) == percent


def test_format_unavailable_detection():
    assert is_format_unavailable(
        "ERROR: [youtube] abc: Requested format is not available. Use --list-formats for a list of available formats"
    )
    assert not is_format_unavailable("ERROR: [youtube] abc: Video unavailable")
    assert not is_format_unavailable("")


def test_diagnostic_prefers_stderr_and_truncates():
    assert ToolResult(1, "out", "err").diagnostic == "err"
    assert ToolResult(1, "out", "  ").diagnostic == "out"
    assert len(ToolResult(1, "", "x" * 5000).diagnostic) == 2000


@pytest.mark.parametrize("url, diagnostic, status", [
    ("https://www.instagram.com/p/abc/", "ERROR: [Instagram] abc: Main webpage is locked behind the login page", 403),
    ("https://www.facebook.com/watch/?v=1", "ERROR: [facebook] 1: Cannot parse data; login required", 403),
    ("https://www.tiktok.com/@u/video/1", "ERROR: [TikTok] 1: HTTP Error 403: Forbidden", 403),
    ("https://www.youtube.com/watch?v=abc", "ERROR: [youtube] abc: Sign in to confirm you're not a bot", 429),
    ("https://youtu.be/abc", "ERROR: HTTP Error 429: Too Many Requests", 429),
])
def test_probe_failures_get_platform_guidance(url, diagnostic, status):
    error = classify_probe_failure(diagnostic, url)
    assert isinstance(error, MetadataProbeError)
    assert error.status_code == status
    assert error.details == diagnostic
    assert error.user_message != "Failed to fetch video info"


def test_unrecognised_probe_failure_is_generic():
    error = classify_probe_failure("ERROR: Unable to download webpage: timed out", "https://x.com/u/status/1")
    assert error.status_code == 500
    assert error.user_message == "Failed to fetch video info"
    assert error.error_code == "METADATA_PROBE_FAILED"


class ScriptedRunner(ToolRunner):
    """Records probe arguments and answers with a canned result."""

    def __init__(self, result):
        super().__init__("yt-dlp")
        self.result = result
        self.args = None

    async def run(self, args, on_line=None, timeout=None):
        self.args = list(args)
        return self.result


def test_probe_builds_arguments_and_parses_json(tmp_path):
    cookies = tmp_path / "youtube.com_cookies.txt"
    runner = ScriptedRunner(ToolResult(0, json.dumps({"id": "abc", "title": "T"}), ""))

    info = asyncio.run(runner.probe("https://youtu.be/abc", cookies=cookies))

    assert info == {"id": "abc", "title": "T"}
    assert runner.args[0] == "--dump-single-json"
    assert "--no-playlist" in runner.args
    assert runner.args[runner.args.index("--cookies") + 1] == str(cookies)
    assert runner.args[-1] == "https://youtu.be/abc"


def test_probe_flat_playlist_without_no_playlist():
    runner = ScriptedRunner(ToolResult(0, "{}", ""))
    asyncio.run(runner.probe("https://youtube.com/playlist?list=x", no_playlist=False, flat_playlist=True))
    assert "--flat-playlist" in runner.args
    assert "--no-playlist" not in runner.args
    assert "--cookies" not in runner.args


def test_probe_failure_raises_classified_error():
    runner = ScriptedRunner(ToolResult(1, "", "ERROR: [Instagram] x: login required"))
    with pytest.raises(MetadataProbeError) as exc_info:
        asyncio.run(runner.probe("https://www.instagram.com/p/x/"))
    assert exc_info.value.status_code == 403


def test_probe_invalid_json():
    runner = ScriptedRunner(ToolResult(0, "not json", ""))
    with pytest.raises(MetadataProbeError) as exc_info:
        asyncio.run(runner.probe("https://youtu.be/abc"))
    assert "invalid metadata" in exc_info.value.message


def test_default_command_runs_installed_module():
    assert ToolRunner().command() == [sys.executable, "-m", "yt_dlp"]
    assert ToolRunner("/opt/bin/yt-dlp").command() == ["/opt/bin/yt-dlp"]


def test_run_streams_lines_and_captures_stderr():
    runner = ToolRunner(sys.executable)
    script = (
        "import sys\n"
        "print('[download]  10.0% of 1.00MiB', flush=True)\n"
        "print('[download] 100% of 1.00MiB', flush=True)\n"
        "sys.stderr.write('ERROR: boom')\n"
        "sys.exit(3)\n"
    )
    lines = []

    result = asyncio.run(runner.run(["-c", script], on_line=lines.append, timeout=30))

    assert result.returncode == 3
    assert lines == ["[download]  10.0% of 1.00MiB", "[download] 100% of 1.00MiB"]
    assert result.diagnostic == "ERROR: boom"


def test_run_kills_process_on_timeout():
    runner = ToolRunner(sys.executable)
    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(runner.run(["-c", "import time; time.sleep(30)"], on_line=lambda line: None, timeout=0.5))
