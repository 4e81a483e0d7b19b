from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_TIMEOUT_MS = 8000
DEFAULT_TEMPERATURE = 0.2


class LlmErrorCode:
    CONFIGURATION_ERROR = "configuration_error"
    TIMEOUT = "timeout"
    REQUEST_FAILED = "request_failed"
    INVALID_RESPONSE = "invalid_response"


class LlmError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str
    model: str = DEFAULT_OPENAI_MODEL
    base_url: str = DEFAULT_OPENAI_BASE_URL
    timeout_ms: int = DEFAULT_OPENAI_TIMEOUT_MS


def is_openai_configured(env: Mapping[str, str] | None = None) -> bool:
    env = os.environ if env is None else env
    return bool((env.get("OPENAI_API_KEY") or "").strip())


def load_openai_config(env: Mapping[str, str] | None = None) -> OpenAIConfig:
    env = os.environ if env is None else env

    api_key = (env.get("OPENAI_API_KEY") or "").strip()
    if not api_key:
        raise LlmError("OPENAI_API_KEY is missing.", LlmErrorCode.CONFIGURATION_ERROR)

    raw_timeout = (env.get("OPENAI_TIMEOUT_MS") or "").strip()
    timeout_ms = DEFAULT_OPENAI_TIMEOUT_MS
    if raw_timeout:
        try:
            timeout_ms = int(raw_timeout)
        except ValueError:
            timeout_ms = 0
        if timeout_ms <= 0:
            raise LlmError("OPENAI_TIMEOUT_MS must be a positive integer.", LlmErrorCode.CONFIGURATION_ERROR)

    return OpenAIConfig(
        api_key=api_key,
        model=(env.get("OPENAI_MODEL") or "").strip() or DEFAULT_OPENAI_MODEL,
        base_url=((env.get("OPENAI_BASE_URL") or "").strip() or DEFAULT_OPENAI_BASE_URL).rstrip("/"),
        timeout_ms=timeout_ms,
    )


class OpenAITextProvider:
    """Chat-completions text generation with provider errors mapped to LlmError codes."""

    def __init__(self, config: OpenAIConfig, client: Any | None = None) -> None:
        self.config = config
        self._client = client

    def _get_client(self):
        if self._client is None:
            # OpenAI SDK v1+; retries are the job queue's concern
            from openai import OpenAI

            self._client = OpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_ms / 1000.0,
                max_retries=0,
            )
        return self._client

    def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        from openai import (
            APIConnectionError,
            APIResponseValidationError,
            APIStatusError,
            APITimeoutError,
            OpenAIError,
        )

        try:
            resp = self._get_client().chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
            )
        except APITimeoutError as e:
            raise LlmError(
                f"OpenAI request timed out after {self.config.timeout_ms}ms.", LlmErrorCode.TIMEOUT
            ) from e
        except APIStatusError as e:
            raise LlmError(
                f"OpenAI request failed with status {e.status_code}.", LlmErrorCode.REQUEST_FAILED
            ) from e
        except APIConnectionError as e:
            raise LlmError("OpenAI request failed: connection error.", LlmErrorCode.REQUEST_FAILED) from e
        except APIResponseValidationError as e:
            raise LlmError("OpenAI returned a malformed response.", LlmErrorCode.INVALID_RESPONSE) from e
        except OpenAIError as e:
            raise LlmError(f"OpenAI request failed: {e.__class__.__name__}.", LlmErrorCode.REQUEST_FAILED) from e

        choices = getattr(resp, "choices", None) or []
        content = (choices[0].message.content or "") if choices else ""
        if not content.strip():
            raise LlmError("OpenAI returned empty content.", LlmErrorCode.INVALID_RESPONSE)
        return content.strip()
