from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

import httpx

from material_pipeline.core.youtube_settings import youtube_settings

logger = logging.getLogger(__name__)

_YT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")

OEMBED_URL = "https://www.youtube.com/oembed"


class YouTubeLookupError(Exception):
    pass


@dataclass
class VideoMetadata:
    youtube_id: str
    title: str | None = None
    channel: str | None = None


def extract_youtube_video_id(url: str) -> str | None:
    """
    Supports:
    - https://www.youtube.com/watch?v=VIDEOID
    - https://youtu.be/VIDEOID
    - https://www.youtube.com/shorts/VIDEOID
    - https://www.youtube.com/embed/VIDEOID
    """
    try:
        u = urlparse((url or "").strip())
    except ValueError:
        return None

    host = (u.netloc or "").lower()
    path = (u.path or "").strip("/")

    if host.endswith("youtu.be"):
        vid = path.split("/")[0] if path else ""
        return vid if _YT_ID_RE.match(vid) else None

    if host.endswith("youtube.com"):
        if path == "watch":
            q = parse_qs(u.query or "")
            vid = (q.get("v", [""])[0]).strip()
            return vid if _YT_ID_RE.match(vid) else None

        for prefix in ("shorts/", "embed/", "live/"):
            if path.startswith(prefix):
                parts = path.split("/")
                vid = parts[1] if len(parts) > 1 else ""
                return vid if _YT_ID_RE.match(vid) else None

    return None


def build_video_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def fetch_public_video_metadata(video_id: str, *, client: httpx.Client | None = None) -> VideoMetadata | None:
    """
    oEmbed only answers for public (or unlisted) embeddable videos.
    Returns None when YouTube says the video is private, removed or unknown.
    """
    params = {"url": build_video_url(video_id), "format": "json"}
    owns_client = client is None
    client = client or httpx.Client(timeout=youtube_settings.oembed_timeout_sec)
    try:
        r = client.get(OEMBED_URL, params=params)
    except httpx.HTTPError as e:
        raise YouTubeLookupError(f"oEmbed request failed: {e}") from e
    finally:
        if owns_client:
            client.close()

    if r.status_code in (400, 401, 403, 404):
        logger.info("video %s is not public (oEmbed status %s)", video_id, r.status_code)
        return None
    if r.status_code != 200:
        raise YouTubeLookupError(f"oEmbed request failed with status {r.status_code}")

    data = r.json()
    return VideoMetadata(
        youtube_id=video_id,
        title=data.get("title"),
        channel=data.get("author_name"),
    )
