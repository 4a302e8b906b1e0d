"""OpenRouter text-generation client over the OpenAI-compatible SDK."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from competitor_intel.config import settings
from competitor_intel.errors import AuthenticationError
from competitor_intel.services.env_safety import sanitize_ssl_keylogfile


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Completion:
    text: str
    model: str = ""
    usage: Usage = field(default_factory=Usage)


def _usage_from(raw: Any) -> Usage:
    return Usage(
        input_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        output_tokens=getattr(raw, "completion_tokens", 0) or 0,
    )


def _temperature_for_model(model: str, temperature: float) -> float:
    # Some OpenAI GPT-5-compatible gateways reject temperature=0.
    if temperature == 0 and "gpt-5" in (model or "").lower():
        return 1
    return temperature


class OpenRouterStream:
    """Async context manager yielding text deltas from a streamed completion."""

    def __init__(self, stream_coro: Any):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self.usage = Usage()
        self.finished = False

    async def __aenter__(self) -> "OpenRouterStream":
        self._stream = await self._stream_coro
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iter_text()

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        async for chunk in self._stream:
            usage = getattr(chunk, "usage", None)
            if usage:
                self.usage = _usage_from(usage)

            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            if not delta:
                continue
            text = getattr(delta, "content", None)
            if text:
                yield text
        self.finished = True


class OpenRouterTextClient:
    """Text-generation capability. One instance per process."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        client: Any | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.base_url = (base_url or settings.openrouter_base_url).strip() or "https://openrouter.ai/api/v1"
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise AuthenticationError("OPENROUTER_API_KEY is not configured", capability="llm")
            sanitize_ssl_keylogfile()
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @staticmethod
    def _messages(prompt: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
        if isinstance(prompt, str):
            return [{"role": "user", "content": prompt}]
        return list(prompt)

    async def complete(
        self,
        prompt: str | list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        response = await self.client.chat.completions.create(
            model=model,
            messages=self._messages(prompt),
            max_tokens=max_tokens,
            temperature=_temperature_for_model(model, temperature),
        )
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            text = getattr(choices[0].message, "content", None) or ""
        return Completion(
            text=text,
            model=getattr(response, "model", None) or model,
            usage=_usage_from(getattr(response, "usage", None)),
        )

    def stream(
        self,
        prompt: str | list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> OpenRouterStream:
        stream = self.client.chat.completions.create(
            model=model,
            messages=self._messages(prompt),
            max_tokens=max_tokens,
            temperature=_temperature_for_model(model, temperature),
            stream=True,
            stream_options={"include_usage": True},
        )
        return OpenRouterStream(stream)
