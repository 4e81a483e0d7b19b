import os
from dataclasses import dataclass


@dataclass(frozen=True)
class YouTubeSettings:
    # Optional: path to cookies.txt (Netscape format). Passed to yt-dlp.
    cookies_file: str | None = os.getenv("YOUTUBE_COOKIES_FILE")

    # Optional: proxy URL, e.g. http://127.0.0.1:7890
    proxy_url: str | None = os.getenv("YOUTUBE_PROXY_URL")

    # Whether to try yt-dlp subtitles if transcript_api has no captions
    enable_ytdlp_fallback: bool = os.getenv("YOUTUBE_ENABLE_YTDLP_FALLBACK", "1") == "1"

    oembed_timeout_sec: float = float(os.getenv("YOUTUBE_OEMBED_TIMEOUT_SEC", "5"))

    # ASR (faster-whisper)
    whisper_model: str = os.getenv("WHISPER_MODEL", "base")  # tiny/base/small/medium/large-v3
    whisper_device: str = os.getenv("WHISPER_DEVICE", "cpu")
    whisper_compute_type: str = os.getenv("WHISPER_COMPUTE", "int8")
    ffmpeg_bin: str = os.getenv("FFMPEG_BIN", "ffmpeg")


youtube_settings = YouTubeSettings()
