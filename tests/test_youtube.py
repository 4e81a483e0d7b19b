import httpx
import pytest

from material_pipeline.services.youtube import (
    YouTubeLookupError,
    extract_youtube_video_id,
    fetch_public_video_metadata,
)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://youtube.com/watch?v=dQw4w9WgXcQ&t=42s", "dQw4w9WgXcQ"),
        ("https://m.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://youtu.be/dQw4w9WgXcQ?si=abc", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/shorts/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/embed/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/live/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/watch?v=short", None),
        ("https://vimeo.com/12345", None),
        ("not a url", None),
        ("", None),
    ],
)
def test_extract_youtube_video_id(url, expected):
    assert extract_youtube_video_id(url) == expected


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_public_video_metadata():
    def handler(request):
        assert request.url.params["url"] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        return httpx.Response(200, json={"title": "Never Gonna", "author_name": "Rick"})

    meta = fetch_public_video_metadata("dQw4w9WgXcQ", client=_client(handler))
    assert meta.title == "Never Gonna"
    assert meta.channel == "Rick"


@pytest.mark.parametrize("status", [401, 403, 404])
def test_private_video_is_none(status):
    meta = fetch_public_video_metadata("dQw4w9WgXcQ", client=_client(lambda r: httpx.Response(status)))
    assert meta is None


def test_server_error_raises():
    with pytest.raises(YouTubeLookupError):
        fetch_public_video_metadata("dQw4w9WgXcQ", client=_client(lambda r: httpx.Response(500)))
