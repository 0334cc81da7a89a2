import asyncio
import io
import json
import time
import zipfile

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_batch_orchestrator, get_metadata_service, get_orchestrator, get_relay
from app.main import app
from app.services.batch import BatchOrchestrator
from app.services.metadata import MetadataService
from app.services.orchestrator import DownloadOrchestrator

from conftest import HTML_BYTES, MP4_BYTES, YOUTUBE_INFO, FakeRunner, Outcome

YOUTUBE_URL = "https://www.youtube.com/watch?v=abc"


@pytest.fixture
def runner():
    return FakeRunner(infos={YOUTUBE_URL: YOUTUBE_INFO})


@pytest.fixture
def client(runner, cookie_store, relay, workspace_root):
    orchestrator = DownloadOrchestrator(
        runner=runner,
        cookies=cookie_store,
        relay=relay,
        temp_dir=str(workspace_root),
    )
    app.dependency_overrides[get_relay] = lambda: relay
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_batch_orchestrator] = lambda: BatchOrchestrator(orchestrator, relay)
    app.dependency_overrides[get_metadata_service] = lambda: MetadataService(runner, cookie_store)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"


def test_health_reports_checks(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] in ("ok", "degraded")
    assert set(body["checks"]) >= {"ytdlp", "ffmpeg", "temp_dir", "cookies"}


@pytest.mark.parametrize("url", ["https://vimeo.com/123", "javascript:alert(1)", ""])
def test_unsupported_url_is_rejected_before_spawning(client, runner, url):
    response = client.post("/api/download", json={"url": url, "quality": "22"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid or unsupported video URL."
    assert runner.spawned == 0


def test_download_without_quality_returns_metadata(client, runner):
    response = client.post("/api/download", json={"url": YOUTUBE_URL})

    assert response.status_code == 200
    assert response.json()["title"] == "My Great Video!"
    assert runner.probe_calls[0]["flat_playlist"] is True
    assert runner.run_calls == []


def test_download_streams_validated_file(client, runner, workspace_root):
    response = client.post("/api/download", json={"url": YOUTUBE_URL, "quality": "22", "downloadId": "abc123"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "video/mp4"
    assert response.headers["content-disposition"] == 'attachment; filename="My_Great_Video.mp4"'
    assert response.headers["content-length"] == str(len(MP4_BYTES))
    assert response.content == MP4_BYTES
    assert list(workspace_root.iterdir()) == []


def test_probe_login_wall_maps_to_403(client, runner):
    url = "https://www.instagram.com/p/abc/"
    runner.infos[url] = "ERROR: [Instagram] abc: Requested content is not available, login required"

    response = client.post("/api/download", json={"url": url, "quality": "1"})

    assert response.status_code == 403
    body = response.json()
    assert "cookies" in body["error"].lower()
    assert "login required" in body["details"]
    assert runner.run_calls == []


def test_corrupt_artifact_maps_to_502(client, runner, workspace_root):
    runner.outcomes[YOUTUBE_URL] = [Outcome(content=HTML_BYTES)]

    response = client.post("/api/download", json={"url": YOUTUBE_URL, "quality": "22"})

    assert response.status_code == 502
    assert response.json()["error_code"] == "CORRUPT_ARTIFACT"
    assert list(workspace_root.iterdir()) == []


def test_playlist_download_returns_zip(client, runner):
    second = "https://www.youtube.com/watch?v=gone"
    runner.infos[second] = "ERROR: [youtube] gone: Video unavailable"

    response = client.post(
        "/api/download-playlist",
        json={"videos": [{"url": YOUTUBE_URL, "quality": "22"}, {"url": second, "title": "Gone"}]},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"] == 'attachment; filename="playlist.zip"'
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert archive.namelist() == ["My_Great_Video.mp4", "error_02.txt"]
        assert "Gone" in archive.read("error_02.txt").decode()


def test_playlist_download_rejects_empty_manifest(client, runner):
    response = client.post("/api/download-playlist", json={"videos": []})

    assert response.status_code == 400
    assert runner.spawned == 0


def test_playlist_download_rejects_unsupported_entry(client, runner):
    response = client.post(
        "/api/download-playlist",
        json={"videos": [{"url": YOUTUBE_URL}, {"url": "https://example.com/video"}]},
    )

    assert response.status_code == 400
    assert runner.spawned == 0


def test_info_reduces_playlists(client, runner):
    url = "https://www.youtube.com/playlist?list=PL1"
    runner.infos[url] = {
        "title": "Mix",
        "entries": [
            {"id": "a", "title": "A", "url": "https://www.youtube.com/watch?v=a"},
            None,
            {"id": "b", "title": "B", "webpage_url": "https://www.youtube.com/watch?v=b"},
        ],
    }

    response = client.post("/api/info", json={"url": url})

    assert response.status_code == 200
    body = response.json()
    assert body["isPlaylist"] is True
    assert body["playlistTitle"] == "Mix"
    assert [video["url"] for video in body["videos"]] == [
        "https://www.youtube.com/watch?v=a",
        "https://www.youtube.com/watch?v=b",
    ]


def test_progress_token_is_minted(client):
    first = client.post("/api/progress/token").json()["downloadId"]
    second = client.post("/api/progress/token").json()["downloadId"]
    assert first and second and first != second


def test_progress_websocket_relays_until_complete(client, relay):
    with client.websocket_connect("/ws/progress/job-1") as websocket:
        deadline = time.time() + 5
        while relay.subscriber_count("job-1") == 0 and time.time() < deadline:
            time.sleep(0.01)

        relay.publish("job-1", 42.123)
        relay.publish("other-job", 10)
        relay.publish("job-1", 100)

        assert websocket.receive_json() == {"percent": 42.12}
        assert websocket.receive_json() == {"percent": 100.0}

    deadline = time.time() + 5
    while relay.subscriber_count("job-1") and time.time() < deadline:
        time.sleep(0.01)
    assert relay.subscriber_count("job-1") == 0


def test_thumbnail_proxy_rejects_bad_url(client):
    assert client.get("/api/proxy-thumbnail").status_code == 400
    assert client.get("/api/proxy-thumbnail", params={"url": "ftp://host/a.jpg"}).status_code == 400


def _asgi_post(path, payload, disconnect_after):
    """Drive the app directly with a client that hangs up mid-request."""
    body = json.dumps(payload).encode()
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"content-type", b"application/json"), (b"content-length", str(len(body)).encode())],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }
    sent = []

    async def scenario():
        gone = asyncio.Event()
        asyncio.get_running_loop().call_later(disconnect_after, gone.set)
        delivered = False

        async def receive():
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": body, "more_body": False}
            if not gone.is_set():
                await gone.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            sent.append(message)

        await app(scope, receive, send)

    asyncio.run(scenario())
    return sent


def test_client_disconnect_cancels_download(client, runner, workspace_root):
    state = {"started": False, "finished": False, "cancelled": False}

    async def on_run(args):
        state["started"] = True
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise
        state["finished"] = True

    runner.on_run = on_run
    started_at = time.monotonic()

    sent = _asgi_post("/api/download", {"url": YOUTUBE_URL, "quality": "22"}, disconnect_after=0.2)

    assert state == {"started": True, "finished": False, "cancelled": True}
    assert time.monotonic() - started_at < 4
    assert list(workspace_root.iterdir()) == []
    assert sent[0]["status"] == 499
