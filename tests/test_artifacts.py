import pytest

from app.services.artifacts import MIN_ARTIFACT_BYTES, find_artifact, validate_artifact
from app.utils.exceptions import CorruptArtifactError, DownloadFailedError

from conftest import HTML_BYTES, MP4_BYTES


def test_html_error_page_is_rejected(tmp_path):
    path = tmp_path / "download.mp4"
    path.write_bytes(HTML_BYTES[:2048])
    assert path.stat().st_size == 2048

    with pytest.raises(CorruptArtifactError) as exc_info:
        validate_artifact(path)
    assert exc_info.value.details.startswith("<!DOCTYPE html>")
    assert len(exc_info.value.details) <= 200


def test_large_html_page_is_still_rejected(tmp_path):
    path = tmp_path / "download.mp4"
    path.write_bytes(b"\n  <html><body>" + b"blocked " * 5000)
    with pytest.raises(CorruptArtifactError):
        validate_artifact(path)


def test_small_binary_file_is_rejected(tmp_path):
    path = tmp_path / "download.mp4"
    path.write_bytes(MP4_BYTES[:1024])
    with pytest.raises(CorruptArtifactError) as exc_info:
        validate_artifact(path)
    assert "too small" in exc_info.value.message


def test_binary_without_signature_is_rejected(tmp_path):
    path = tmp_path / "download.mp4"
    path.write_bytes(bytes(range(256)) * 100)
    with pytest.raises(CorruptArtifactError) as exc_info:
        validate_artifact(path)
    assert "signature" in exc_info.value.message


@pytest.mark.parametrize("header", [
    MP4_BYTES[:32],
    b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01",
    b"ID3\x04\x00\x00\x00\x00\x00\x00",
    b"OggS\x00\x02\x00\x00",
])
def test_media_signatures_are_accepted(tmp_path, header):
    path = tmp_path / "download.bin"
    path.write_bytes(header + b"\x00\x80\xff" * (MIN_ARTIFACT_BYTES // 3 + 1))
    assert validate_artifact(path) == path.stat().st_size


def test_find_artifact_ignores_partials_and_intermediates(tmp_path):
    (tmp_path / "download.f137.mp4").write_bytes(b"x")
    (tmp_path / "download.mp4.part").write_bytes(b"x")
    (tmp_path / "download.mp4").write_bytes(MP4_BYTES)
    assert find_artifact(tmp_path, "download") == tmp_path / "download.mp4"


def test_find_artifact_without_output(tmp_path):
    (tmp_path / "download.mp4.part").write_bytes(b"x")
    with pytest.raises(DownloadFailedError) as exc_info:
        find_artifact(tmp_path, "download")
    assert "download.mp4.part" in exc_info.value.details


def test_find_artifact_with_two_outputs(tmp_path):
    (tmp_path / "download.mp4").write_bytes(MP4_BYTES)
    (tmp_path / "download.webm").write_bytes(MP4_BYTES)
    with pytest.raises(DownloadFailedError):
        find_artifact(tmp_path, "download")


def test_audio_with_textual_id3_frames_is_accepted(tmp_path):
    # ID3v2 header followed by a long, fully printable comment frame
    header = b"ID3\x03\x00\x00\x00\x00\x10\x00" + b"COMM" + b"Recorded live at the studio. " * 40
    path = tmp_path / "download.m4a"
    path.write_bytes(header + b"\xff\xfb\x90\x00" * 4096)

    assert validate_artifact(path) == path.stat().st_size
