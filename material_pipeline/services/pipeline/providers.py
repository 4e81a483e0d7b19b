from __future__ import annotations

import logging
from dataclasses import dataclass

from material_pipeline.core.config import Settings, settings as default_settings
from material_pipeline.services.asr import AsrProvider, WhisperAsrProvider
from material_pipeline.services.captions import (
    CaptionProvider,
    UnavailableCaptionProvider,
    YouTubeTranscriptCaptionProvider,
)
from material_pipeline.services.llm.client import TextGenerationClient, build_text_generation_client

logger = logging.getLogger(__name__)


@dataclass
class PipelineProviders:
    captions: CaptionProvider
    text_generation: TextGenerationClient | None = None
    asr: AsrProvider | None = None


def build_default_providers(settings: Settings | None = None) -> PipelineProviders:
    settings = settings or default_settings

    if settings.captions_provider == "youtube":
        captions: CaptionProvider = YouTubeTranscriptCaptionProvider(settings.caption_language_list)
    else:
        captions = UnavailableCaptionProvider()

    text_generation = build_text_generation_client(settings)
    if text_generation is None:
        logger.info("no text generation provider configured; using heuristic decisions")

    asr = WhisperAsrProvider(language=(settings.caption_language_list or [None])[0]) if settings.asr_enabled else None

    return PipelineProviders(captions=captions, text_generation=text_generation, asr=asr)
