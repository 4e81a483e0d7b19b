from __future__ import annotations

import logging
import re
import subprocess
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Protocol

from material_pipeline.core.youtube_settings import YouTubeSettings, youtube_settings
from material_pipeline.services.youtube import build_video_url

logger = logging.getLogger(__name__)


class CaptionStatus:
    FETCHED = "fetched"
    UNAVAILABLE = "unavailable"


class CaptionUnavailableReason:
    NOT_FOUND = "captions_not_found"
    PROVIDER_NOT_CONFIGURED = "captions_provider_not_configured"


class CaptionFetchError(Exception):
    """Transport-level failure talking to the caption source. Retried by the job executor."""


@dataclass
class CaptionCue:
    start_ms: float
    end_ms: float
    text: str


@dataclass
class CaptionFetchResult:
    status: str
    source: str | None = None
    cues: list[CaptionCue] = field(default_factory=list)
    reason: str | None = None
    message: str | None = None
    # metadata the source happened to return
    title: str | None = None
    channel: str | None = None
    duration_sec: int | None = None

    @classmethod
    def fetched(cls, cues: list[CaptionCue], *, source: str, **meta: Any) -> CaptionFetchResult:
        return cls(status=CaptionStatus.FETCHED, source=source, cues=list(cues), **meta)

    @classmethod
    def unavailable(cls, reason: str, message: str) -> CaptionFetchResult:
        return cls(status=CaptionStatus.UNAVAILABLE, reason=reason, message=message)

    @property
    def is_fetched(self) -> bool:
        return self.status == CaptionStatus.FETCHED

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CaptionFetchResult:
        cues = [CaptionCue(**c) for c in (data.get("cues") or [])]
        return cls(
            status=data["status"],
            source=data.get("source"),
            cues=cues,
            reason=data.get("reason"),
            message=data.get("message"),
            title=data.get("title"),
            channel=data.get("channel"),
            duration_sec=data.get("duration_sec"),
        )


class CaptionProvider(Protocol):
    def fetch_captions(self, *, material_id: str, youtube_id: str, youtube_url: str) -> CaptionFetchResult: ...


# ----------------------------
# Cue formatting
# ----------------------------

def _normalize_space(s: str) -> str:
    s = (s or "").replace("\u200b", " ").replace("\n", " ")
    return re.sub(r"\s+", " ", s).strip()


def format_caption_cues(cues: list[CaptionCue] | list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Turn raw cues into ordered segments:
    - whitespace collapsed, empty text dropped
    - times rounded to whole ms and clamped at 0
    - cues with end <= start dropped
    - sorted by (start, end, text), exact repeats dropped
    - ids seg-0001, seg-0002, ...
    """
    rows: list[tuple[int, int, str]] = []
    for cue in cues or []:
        if isinstance(cue, CaptionCue):
            cue = asdict(cue)
        text = _normalize_space(str(cue.get("text") or ""))
        if not text:
            continue
        start = max(0, int(round(float(cue.get("start_ms") or 0))))
        end = max(0, int(round(float(cue.get("end_ms") or 0))))
        if end <= start:
            continue
        rows.append((start, end, text))

    rows.sort()

    out: list[dict[str, Any]] = []
    prev: tuple[int, int, str] | None = None
    for row in rows:
        if row == prev:
            continue
        prev = row
        start, end, text = row
        out.append(
            {
                "segment_id": f"seg-{len(out) + 1:04d}",
                "start_ms": start,
                "end_ms": end,
                "text": text,
            }
        )
    return out


# ----------------------------
# Providers
# ----------------------------

class UnavailableCaptionProvider:
    def fetch_captions(self, *, material_id: str, youtube_id: str, youtube_url: str) -> CaptionFetchResult:
        return CaptionFetchResult.unavailable(
            CaptionUnavailableReason.PROVIDER_NOT_CONFIGURED,
            "No caption provider is configured.",
        )


def _vtt_timestamp_to_ms(ts: str) -> float:
    m = re.match(r"(?:(?P<h>\d+):)?(?P<m>\d+):(?P<s>\d+(?:\.\d+)?)", ts.strip())
    if not m:
        return 0.0
    h = float(m.group("h") or 0)
    mi = float(m.group("m"))
    s = float(m.group("s"))
    return (h * 3600.0 + mi * 60.0 + s) * 1000.0


class YouTubeTranscriptCaptionProvider:
    """
    youtube-transcript-api first; optional yt-dlp subtitle download when no transcript is listed.
    "No captions" comes back as an unavailable result, network/blocking problems raise.
    """

    source = "youtube_captions"

    def __init__(
        self,
        languages: list[str] | None = None,
        *,
        yt_settings: YouTubeSettings | None = None,
        api: Any | None = None,
    ) -> None:
        self.languages = languages or ["en"]
        self.yt_settings = yt_settings or youtube_settings
        self._api = api

    def _get_api(self):
        if self._api is not None:
            return self._api

        from youtube_transcript_api import YouTubeTranscriptApi
        from youtube_transcript_api.proxies import GenericProxyConfig

        proxy_config = None
        if self.yt_settings.proxy_url:
            proxy_config = GenericProxyConfig(
                http_url=self.yt_settings.proxy_url,
                https_url=self.yt_settings.proxy_url,
            )
        self._api = YouTubeTranscriptApi(proxy_config=proxy_config)
        return self._api

    def fetch_captions(self, *, material_id: str, youtube_id: str, youtube_url: str) -> CaptionFetchResult:
        from youtube_transcript_api import CouldNotRetrieveTranscript, NoTranscriptFound, TranscriptsDisabled

        try:
            fetched = self._get_api().fetch(youtube_id, languages=self.languages)
        except (NoTranscriptFound, TranscriptsDisabled) as e:
            logger.info("no transcript for %s via transcript_api: %s", youtube_id, e.__class__.__name__)
            return self._fallback_or_unavailable(youtube_id)
        except CouldNotRetrieveTranscript as e:
            raise CaptionFetchError(f"transcript_api failed for {youtube_id}: {e.__class__.__name__}") from e

        cues = [
            CaptionCue(
                start_ms=float(s.start) * 1000.0,
                end_ms=(float(s.start) + max(0.0, float(s.duration))) * 1000.0,
                text=s.text or "",
            )
            for s in fetched
        ]
        if not cues:
            return self._fallback_or_unavailable(youtube_id)
        return CaptionFetchResult.fetched(cues, source=self.source)

    def _fallback_or_unavailable(self, youtube_id: str) -> CaptionFetchResult:
        if self.yt_settings.enable_ytdlp_fallback:
            try:
                cues = self._fetch_with_ytdlp_subs(youtube_id)
            except CaptionFetchError as e:
                logger.warning("yt-dlp subtitle fallback failed for %s: %s", youtube_id, e)
            else:
                if cues:
                    return CaptionFetchResult.fetched(cues, source=self.source)

        return CaptionFetchResult.unavailable(
            CaptionUnavailableReason.NOT_FOUND,
            f"No captions found for video {youtube_id} in languages {', '.join(self.languages)}.",
        )

    def _fetch_with_ytdlp_subs(self, youtube_id: str) -> list[CaptionCue]:
        import webvtt

        with tempfile.TemporaryDirectory() as td:
            outtmpl = str(Path(td) / "%(id)s.%(ext)s")
            args = [
                "yt-dlp",
                "--skip-download",
                "--write-subs",
                "--write-auto-subs",
                "--sub-format",
                "vtt",
                "--sub-langs",
                ",".join(f"{lang}.*" for lang in self.languages),
                "-o",
                outtmpl,
                build_video_url(youtube_id),
            ]
            if self.yt_settings.cookies_file:
                args.extend(["--cookies", self.yt_settings.cookies_file])
            if self.yt_settings.proxy_url:
                args.extend(["--proxy", self.yt_settings.proxy_url])

            p = subprocess.run(args, capture_output=True, text=True)
            if p.returncode != 0:
                raise CaptionFetchError(f"yt-dlp subs failed: {p.stderr.strip() or p.stdout.strip()}")

            vtts = list(Path(td).glob("*.vtt"))
            if not vtts:
                return []

            vtt_path = sorted(vtts, key=lambda x: x.stat().st_size, reverse=True)[0]
            return [
                CaptionCue(
                    start_ms=_vtt_timestamp_to_ms(caption.start),
                    end_ms=_vtt_timestamp_to_ms(caption.end),
                    text=caption.text or "",
                )
                for caption in webvtt.read(str(vtt_path))
            ]
