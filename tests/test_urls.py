import pytest

from app.utils.urls import Platform, detect_platform, hostname_of, is_supported


@pytest.mark.parametrize("url", [
    "https://www.youtube.com/watch?v=abc",
    "http://youtube.com/shorts/xyz",
    "//m.youtube.com/watch?v=abc",
    "https://music.youtube.com/watch?v=abc",
    "https://youtu.be/abc",
    "https://www.facebook.com/watch/?v=123",
    "https://fb.watch/abcdef/",
    "https://www.instagram.com/reel/Cxyz/",
    "https://www.tiktok.com/@user/video/1",
    "https://vt.tiktok.com/ZSabc/",
    "https://twitter.com/user/status/1",
    "https://x.com/user/status/1",
])
def test_supported_urls(url):
    assert is_supported(url)


@pytest.mark.parametrize("url", [
    "https://vimeo.com/123",
    "https://youtube.com.evil.example/watch",
    "https://notyoutube.com/watch?v=abc",
    "ftp://youtube.com/watch",
    "youtube.com/watch?v=abc",
    "https://www.youtube.com",
    "",
    None,
    42,
    ["https://youtube.com/"],
])
def test_unsupported_urls(url):
    assert not is_supported(url)


@pytest.mark.parametrize("url, platform", [
    ("https://www.youtube.com/watch?v=abc", Platform.YOUTUBE),
    ("https://youtu.be/abc", Platform.YOUTUBE),
    ("https://www.facebook.com/watch/?v=123", Platform.FACEBOOK),
    ("https://fb.watch/x/", Platform.FACEBOOK),
    ("https://www.instagram.com/p/abc/", Platform.INSTAGRAM),
    ("https://vt.tiktok.com/abc/", Platform.TIKTOK),
    ("https://twitter.com/u/status/1", Platform.TWITTER),
    ("https://x.com/u/status/1", Platform.TWITTER),
    ("https://example.com/video", Platform.OTHER),
])
def test_detect_platform(url, platform):
    assert detect_platform(url) == platform


def test_hostname_of_handles_scheme_relative_urls():
    assert hostname_of("//WWW.YouTube.com/watch") == "www.youtube.com"
    assert hostname_of("x.com/u/status/1") == "x.com"
