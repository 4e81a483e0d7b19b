from __future__ import annotations

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Protocol

from material_pipeline.core.youtube_settings import YouTubeSettings, youtube_settings
from material_pipeline.services.captions import CaptionCue
from material_pipeline.services.youtube import build_video_url

logger = logging.getLogger(__name__)


class AsrError(Exception):
    pass


class AsrProvider(Protocol):
    source: str

    def transcribe(self, youtube_id: str) -> list[CaptionCue]: ...


class WhisperAsrProvider:
    """
    yt-dlp bestaudio -> ffmpeg 16k mono wav -> faster-whisper.
    faster-whisper ships in the `asr` extra; the model is loaded once per worker process.
    """

    source = "asr"

    def __init__(self, yt_settings: YouTubeSettings | None = None, language: str | None = None) -> None:
        self.yt_settings = yt_settings or youtube_settings
        self.language = language
        self._model: Any | None = None

    def _get_model(self):
        if self._model is not None:
            return self._model

        from faster_whisper import WhisperModel

        self._model = WhisperModel(
            self.yt_settings.whisper_model,
            device=self.yt_settings.whisper_device,
            compute_type=self.yt_settings.whisper_compute_type,
        )
        return self._model

    def _download_audio(self, youtube_id: str, out_dir: str) -> str:
        outtmpl = str(Path(out_dir) / "%(id)s.%(ext)s")
        args = ["yt-dlp", "-f", "bestaudio/best", "-o", outtmpl, build_video_url(youtube_id)]

        if self.yt_settings.cookies_file:
            args.extend(["--cookies", self.yt_settings.cookies_file])
        if self.yt_settings.proxy_url:
            args.extend(["--proxy", self.yt_settings.proxy_url])

        p = subprocess.run(args, capture_output=True, text=True)
        if p.returncode != 0:
            raise AsrError(f"yt-dlp audio failed: {p.stderr.strip() or p.stdout.strip()}")

        candidates = list(Path(out_dir).glob(f"{youtube_id}.*"))
        if not candidates:
            raise AsrError("yt-dlp audio succeeded but could not find output audio file")
        return str(sorted(candidates, key=lambda x: x.stat().st_size, reverse=True)[0])

    def _normalize_to_wav(self, input_audio_path: str, out_dir: str) -> str:
        out_wav = str(Path(out_dir) / "audio_16k_mono.wav")
        args = [self.yt_settings.ffmpeg_bin, "-y", "-i", input_audio_path, "-vn", "-ac", "1", "-ar", "16000", out_wav]
        p = subprocess.run(args, capture_output=True, text=True)
        if p.returncode != 0:
            raise AsrError(f"ffmpeg convert failed: {p.stderr.strip() or p.stdout.strip()}")
        return out_wav

    def transcribe(self, youtube_id: str) -> list[CaptionCue]:
        with tempfile.TemporaryDirectory() as td:
            audio_path = self._download_audio(youtube_id, td)
            wav_path = self._normalize_to_wav(audio_path, td)

            segments_iter, _info = self._get_model().transcribe(
                wav_path,
                language=self.language,
                vad_filter=True,
                beam_size=5,
            )

            cues: list[CaptionCue] = []
            for s in segments_iter:
                txt = (s.text or "").strip()
                if not txt:
                    continue
                cues.append(CaptionCue(start_ms=float(s.start) * 1000.0, end_ms=float(s.end) * 1000.0, text=txt))

        if not cues:
            raise AsrError(f"ASR produced an empty transcript for {youtube_id}")
        logger.info("ASR transcribed %s into %s cues", youtube_id, len(cues))
        return cues
