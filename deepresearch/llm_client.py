"""OpenAI-compatible LLM client with per-request model configuration."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

from deepresearch.config import Settings, settings as default_settings
from deepresearch.errors import ConfigurationError, ProviderError
from deepresearch.services import logger as log_service

SUPPORTED_MODELS: dict[str, dict[str, str]] = {
    "grok-4-latest": {
        "provider": "grok",
        "name": "Grok 4",
        "description": "Real-time aware model. Default for research.",
    },
    "gpt-4.1": {
        "provider": "openrouter",
        "name": "GPT-4.1",
        "description": "Strong multi-step reasoning for complex analysis.",
    },
}


@dataclass(frozen=True, slots=True)
class ModelConfig:
    model_id: str
    provider: str
    base_url: str
    model: str
    api_key: str
    temperature: float = 0.2
    max_tokens: int = 4096
    timeout: float = 90.0


class LLM(Protocol):
    config: ModelConfig

    async def complete(
        self, system: str, user: str, *, json_mode: bool = False, caller: str = "llm"
    ) -> str: ...

    def stream(self, system: str, user: str, *, caller: str = "llm") -> AsyncIterator[str]: ...


def _provider_config(provider: str, model_id: str, source: Settings) -> ModelConfig | None:
    if provider == "grok":
        if not source.grok_api_key:
            return None
        return ModelConfig(
            model_id=model_id,
            provider="grok",
            base_url=source.grok_base_url.strip() or "https://api.x.ai/v1",
            model=source.grok_model,
            api_key=source.grok_api_key,
            temperature=source.llm_temperature,
            max_tokens=source.llm_max_tokens,
            timeout=source.llm_timeout_seconds,
        )
    if provider == "openrouter":
        if not source.openrouter_api_key:
            return None
        return ModelConfig(
            model_id=model_id,
            provider="openrouter",
            base_url=source.openrouter_base_url.strip() or "https://openrouter.ai/api/v1",
            model=source.openrouter_model,
            api_key=source.openrouter_api_key,
            temperature=source.llm_temperature,
            max_tokens=source.llm_max_tokens,
            timeout=source.llm_timeout_seconds,
        )
    return None


def resolve_model_config(requested: str | None, source: Settings | None = None) -> ModelConfig:
    """Pick the requested model's provider, falling back to the other one.

    Raises ConfigurationError when no provider credential is available.
    """
    source = source or default_settings
    model_id = requested if requested in SUPPORTED_MODELS else source.default_model
    if model_id not in SUPPORTED_MODELS:
        model_id = "grok-4-latest"

    primary = SUPPORTED_MODELS[model_id]["provider"]
    order = [primary] + [p for p in ("grok", "openrouter") if p != primary]
    for provider in order:
        config = _provider_config(provider, model_id, source)
        if config is None:
            continue
        if provider != primary:
            log_service.log_event(
                event_type="llm_provider_fallback",
                message=f"{primary} credential unavailable, using {provider}",
                requested_model=model_id,
            )
        return config
    raise ConfigurationError("AI service not configured")


def _temperature_for_model(config: ModelConfig) -> float:
    # Some GPT-5-compatible gateways reject anything but the default.
    if "gpt-5" in (config.model or "").lower():
        return 1
    return config.temperature


class OpenAICompatibleLLM:
    """`complete`/`stream` over any OpenAI-compatible chat completions API."""

    def __init__(self, config: ModelConfig, client: Any | None = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
        return self._client

    def _messages(self, system: str, user: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    async def complete(
        self, system: str, user: str, *, json_mode: bool = False, caller: str = "llm"
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": self._messages(system, user),
            "max_tokens": self.config.max_tokens,
            "temperature": _temperature_for_model(self.config),
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(**kwargs),
                timeout=self.config.timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_service.log_llm_call(
                model=self.config.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise ProviderError(self.config.provider, str(e)) from e

        log_service.log_llm_call(
            model=self.config.model,
            caller=caller,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        choices = getattr(response, "choices", None) or []
        content = ""
        if choices:
            content = (getattr(choices[0].message, "content", None) or "").strip()
        if not content:
            raise ProviderError(self.config.provider, "Empty response from AI")
        return content

    async def stream(self, system: str, user: str, *, caller: str = "llm") -> AsyncIterator[str]:
        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.config.model,
                    messages=self._messages(system, user),
                    max_tokens=self.config.max_tokens,
                    temperature=_temperature_for_model(self.config),
                    stream=True,
                ),
                timeout=self.config.timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_service.log_llm_call(
                model=self.config.model, caller=caller, status="error", error=str(e)
            )
            raise ProviderError(self.config.provider, str(e)) from e

        try:
            async for chunk in response:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                text = getattr(delta, "content", None) if delta else None
                if text:
                    yield text
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_service.log_llm_call(
                model=self.config.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise ProviderError(self.config.provider, f"stream interrupted: {e}") from e
        finally:
            close = getattr(response, "close", None)
            if close is not None:
                try:
                    await close()
                except Exception:
                    pass

        log_service.log_llm_call(
            model=self.config.model,
            caller=caller,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )


def get_llm(requested_model: str | None = None, source: Settings | None = None) -> OpenAICompatibleLLM:
    return OpenAICompatibleLLM(resolve_model_config(requested_model, source))
