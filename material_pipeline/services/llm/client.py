from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, Union

from material_pipeline.core.config import Settings, settings as default_settings
from material_pipeline.services.llm.openai_client import (
    DEFAULT_TEMPERATURE,
    LlmError,
    LlmErrorCode,
    OpenAITextProvider,
    is_openai_configured,
    load_openai_config,
)

logger = logging.getLogger(__name__)


class TextGenerationProvider(Protocol):
    def generate_text(self, system_prompt: str, user_prompt: str, *, temperature: float = ...) -> str: ...


@dataclass(frozen=True)
class LlmOk:
    text: str
    ok: bool = True


@dataclass(frozen=True)
class LlmErr:
    code: str
    message: str
    ok: bool = False


LlmResult = Union[LlmOk, LlmErr]


class TextGenerationClient:
    """Boundary between pipeline steps and the provider: errors become LlmErr values, never exceptions."""

    def __init__(self, provider: TextGenerationProvider, name: str = "openai") -> None:
        self.provider = provider
        self.name = name

    def generate(self, system_prompt: str, user_prompt: str, *, temperature: float = DEFAULT_TEMPERATURE) -> LlmResult:
        try:
            return LlmOk(text=self.provider.generate_text(system_prompt, user_prompt, temperature=temperature))
        except LlmError as e:
            logger.warning("%s generation failed (%s): %s", self.name, e.code, e)
            return LlmErr(code=e.code, message=str(e))

    def generate_json(self, system_prompt: str, user_prompt: str, *, temperature: float = DEFAULT_TEMPERATURE) -> LlmErr | dict[str, Any]:
        """Like generate(), but parses the reply; a non-JSON reply is an invalid_response error."""
        result = self.generate(system_prompt, user_prompt, temperature=temperature)
        if isinstance(result, LlmErr):
            return result
        try:
            return extract_json_object(result.text)
        except ValueError as e:
            return LlmErr(code=LlmErrorCode.INVALID_RESPONSE, message=str(e))


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Best-effort JSON extraction if model returns extra text.
    """
    text = (text or "").strip()
    if not text:
        raise ValueError("Empty response")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            raise ValueError(f"Model returned non-JSON. First 200 chars: {text[:200]!r}") from None
        try:
            payload = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Model returned invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError("Model returned JSON that is not an object")
    return payload


def build_text_generation_client(
    settings: Settings | None = None,
    env: Mapping[str, str] | None = None,
) -> TextGenerationClient | None:
    """
    None means heuristic mode: steps use their deterministic fallbacks.
    A present but broken OpenAI config raises LlmError(configuration_error).
    """
    settings = settings or default_settings
    if settings.llm_provider != "openai" or not is_openai_configured(env):
        return None
    return TextGenerationClient(OpenAITextProvider(load_openai_config(env)))
