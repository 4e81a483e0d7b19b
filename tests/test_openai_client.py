from types import SimpleNamespace

import httpx
import openai
import pytest

from material_pipeline.services.llm.client import LlmErr, LlmOk, TextGenerationClient, build_text_generation_client
from material_pipeline.services.llm.openai_client import (
    LlmError,
    OpenAIConfig,
    OpenAITextProvider,
    is_openai_configured,
    load_openai_config,
)

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class _Completions:
    def __init__(self, outcome):
        self.outcome = outcome
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _provider(outcome):
    completions = _Completions(outcome)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAITextProvider(OpenAIConfig(api_key="sk-test"), client=client), completions


def _reply(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_config_defaults():
    cfg = load_openai_config({"OPENAI_API_KEY": "sk-test", "OPENAI_BASE_URL": "https://proxy.local/v1/"})
    assert cfg.model == "gpt-4o-mini"
    assert cfg.base_url == "https://proxy.local/v1"
    assert cfg.timeout_ms == 8000


@pytest.mark.parametrize(
    "env",
    [{}, {"OPENAI_API_KEY": " "}, {"OPENAI_API_KEY": "k", "OPENAI_TIMEOUT_MS": "0"}, {"OPENAI_API_KEY": "k", "OPENAI_TIMEOUT_MS": "abc"}],
)
def test_config_errors(env):
    with pytest.raises(LlmError) as exc:
        load_openai_config(env)
    assert exc.value.code == "configuration_error"


def test_is_configured():
    assert is_openai_configured({"OPENAI_API_KEY": "sk"}) is True
    assert is_openai_configured({}) is False


def test_generate_text_success_sends_prompts():
    provider, completions = _provider(_reply("  hello  "))
    assert provider.generate_text("sys", "user") == "hello"
    assert completions.kwargs["model"] == "gpt-4o-mini"
    assert completions.kwargs["temperature"] == 0.2
    assert completions.kwargs["messages"][0] == {"role": "system", "content": "sys"}


def test_timeout_maps_to_timeout():
    provider, _ = _provider(openai.APITimeoutError(request=_REQUEST))
    with pytest.raises(LlmError) as exc:
        provider.generate_text("s", "u")
    assert exc.value.code == "timeout"


def test_status_error_maps_to_request_failed():
    response = httpx.Response(503, request=_REQUEST)
    provider, _ = _provider(openai.APIStatusError("unavailable", response=response, body=None))
    with pytest.raises(LlmError) as exc:
        provider.generate_text("s", "u")
    assert exc.value.code == "request_failed"
    assert str(exc.value) == "OpenAI request failed with status 503."


def test_empty_content_is_invalid_response():
    provider, _ = _provider(_reply("   "))
    with pytest.raises(LlmError) as exc:
        provider.generate_text("s", "u")
    assert exc.value.code == "invalid_response"
    assert str(exc.value) == "OpenAI returned empty content."


def test_client_boundary_returns_values():
    ok_provider, _ = _provider(_reply('{"decision": "accept"}'))
    client = TextGenerationClient(ok_provider)
    assert client.generate("s", "u") == LlmOk(text='{"decision": "accept"}')
    assert client.generate_json("s", "u") == {"decision": "accept"}

    bad_provider, _ = _provider(_reply("not json at all"))
    result = TextGenerationClient(bad_provider).generate_json("s", "u")
    assert isinstance(result, LlmErr)
    assert result.code == "invalid_response"

    err_provider, _ = _provider(openai.APITimeoutError(request=_REQUEST))
    result = TextGenerationClient(err_provider).generate("s", "u")
    assert isinstance(result, LlmErr)
    assert result.code == "timeout"


def test_no_key_means_heuristic_mode(test_settings):
    assert build_text_generation_client(test_settings, env={}) is None
    assert build_text_generation_client(test_settings, env={"OPENAI_API_KEY": "sk"}) is not None


def test_malformed_response_is_invalid_response():
    response = httpx.Response(200, request=_REQUEST)
    provider, _ = _provider(openai.APIResponseValidationError(response=response, body=None))
    with pytest.raises(LlmError) as exc:
        provider.generate_text("s", "u")
    assert exc.value.code == "invalid_response"


def test_other_sdk_errors_become_request_failed():
    provider, _ = _provider(openai.OpenAIError("client misconfigured"))
    result = TextGenerationClient(provider).generate("s", "u")
    assert isinstance(result, LlmErr)
    assert result.code == "request_failed"
