from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from deepresearch.config import Settings
from deepresearch.errors import ConfigurationError, ProviderError
from deepresearch.llm_client import ModelConfig, OpenAICompatibleLLM, resolve_model_config


def _settings(**overrides) -> Settings:
    values = {"grok_api_key": "xai-test", "openrouter_api_key": "or-test"}
    values.update(overrides)
    return Settings(**values)


def _config() -> ModelConfig:
    return ModelConfig(
        model_id="gpt-4.1",
        provider="openrouter",
        base_url="https://openrouter.ai/api/v1",
        model="openai/gpt-4.1",
        api_key="or-test",
    )


def _client(create: AsyncMock) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _reply(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class _Stream:
    def __init__(self, pieces, error: Exception | None = None):
        self.pieces = pieces
        self.error = error

    async def __aiter__(self):
        for piece in self.pieces:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))])
        if self.error is not None:
            raise self.error


def test_resolve_requested_provider():
    config = resolve_model_config("gpt-4.1", _settings())
    assert config.provider == "openrouter"
    assert config.model_id == "gpt-4.1"
    assert config.api_key == "or-test"


def test_resolve_falls_back_to_other_provider():
    config = resolve_model_config("gpt-4.1", _settings(openrouter_api_key=""))
    assert config.provider == "grok"
    assert config.model_id == "gpt-4.1"


def test_resolve_unknown_model_uses_default():
    config = resolve_model_config("claude-9", _settings(default_model="grok-4-latest"))
    assert config.model_id == "grok-4-latest"
    assert config.provider == "grok"


def test_resolve_without_credentials_raises():
    with pytest.raises(ConfigurationError, match="AI service not configured"):
        resolve_model_config(None, _settings(grok_api_key="", openrouter_api_key=""))


@pytest.mark.asyncio
async def test_complete_returns_stripped_text_and_json_mode():
    create = AsyncMock(return_value=_reply('  {"ok": true}  '))
    llm = OpenAICompatibleLLM(_config(), client=_client(create))

    text = await llm.complete("system", "user", json_mode=True, caller="planner")

    assert text == '{"ok": true}'
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "openai/gpt-4.1"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0] == {"role": "system", "content": "system"}


@pytest.mark.asyncio
async def test_complete_empty_reply_raises():
    llm = OpenAICompatibleLLM(_config(), client=_client(AsyncMock(return_value=_reply(None))))
    with pytest.raises(ProviderError, match="Empty response"):
        await llm.complete("system", "user")


@pytest.mark.asyncio
async def test_complete_wraps_client_errors():
    llm = OpenAICompatibleLLM(_config(), client=_client(AsyncMock(side_effect=RuntimeError("429 rate limited"))))
    with pytest.raises(ProviderError) as exc_info:
        await llm.complete("system", "user")
    assert exc_info.value.provider == "openrouter"


@pytest.mark.asyncio
async def test_stream_yields_deltas():
    create = AsyncMock(return_value=_Stream(["Denim ", None, "mills"]))
    llm = OpenAICompatibleLLM(_config(), client=_client(create))

    pieces = [p async for p in llm.stream("system", "user", caller="synthesizer")]

    assert pieces == ["Denim ", "mills"]
    assert create.await_args.kwargs["stream"] is True


@pytest.mark.asyncio
async def test_stream_interruption_raises_provider_error():
    create = AsyncMock(return_value=_Stream(["Denim "], error=RuntimeError("connection reset")))
    llm = OpenAICompatibleLLM(_config(), client=_client(create))

    received = []
    with pytest.raises(ProviderError, match="stream interrupted"):
        async for piece in llm.stream("system", "user"):
            received.append(piece)
    assert received == ["Denim "]
