"""Hosted OpenAI-compatible APIs (Groq, OpenRouter) using openai SDK with native async."""

import asyncio
import base64
import logging
import os
import time
from collections.abc import AsyncIterator

from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from solvent.errors import (
    AuthenticationError,
    InternalError,
    NetworkError,
    ProviderError,
    ValidationError,
    classify_exception,
)
from solvent.models import CompletionOptions, Message, ModelResponse
from solvent.providers.base import Capability, ProviderAdapter

logger = logging.getLogger(__name__)


def to_openai_messages(history: list[Message], last_message: str) -> list[dict]:
    messages = [
        {"role": "assistant" if m.role == "model" else m.role, "content": m.content}
        for m in history
    ]
    messages.append({"role": "user", "content": last_message})
    return messages


class OpenAICompatibleAdapter(ProviderAdapter):
    """Any OpenAI-compatible endpoint selected by base_url."""

    capabilities = frozenset({Capability.CHAT, Capability.STREAM, Capability.VISION, Capability.LIST_MODELS})

    def __init__(self, config: ProviderConfig, client: AsyncOpenAI | None = None) -> None:
        super().__init__(config)
        if not config.base_url:
            raise ValidationError(f"base_url is required for provider {config.name}", provider_name=config.name)
        self._client = client
        if self._client is None:
            api_key = os.environ.get(config.api_key_env or "", "").strip()
            if api_key:
                self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise AuthenticationError(self.name(), f"Missing API key: {self._config.api_key_env}")
        return self._client

    async def _complete(self, messages: list[dict], model: str, options: CompletionOptions) -> ModelResponse:
        client = self._require_client()
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise NetworkError(self.name(), f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise InternalError(self.name(), "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info("%s %s: %.2fs, %s tokens", self.name(), model, latency, token_count)
        return ModelResponse(
            provider=self.name(),
            model=model,
            content=choice.message.content,
            latency_sec=latency,
            token_count=token_count,
        )

    async def chat_completion(
        self,
        history: list[Message],
        last_message: str,
        model: str,
        options: CompletionOptions,
    ) -> ModelResponse:
        return await self._complete(to_openai_messages(history, last_message), model, options)

    async def stream_chat_completion(
        self,
        history: list[Message],
        last_message: str,
        model: str,
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        client = self._require_client()
        try:
            stream = await client.chat.completions.create(
                model=model,
                messages=to_openai_messages(history, last_message),
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                stream=True,
            )
            async with stream:
                async for chunk in stream:
                    if chunk.choices and chunk.choices[0].delta.content:
                        yield chunk.choices[0].delta.content
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

    async def vision_completion(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        model: str,
        options: CompletionOptions | None = None,
    ) -> ModelResponse:
        data_uri = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_uri}},
                ],
            }
        ]
        return await self._complete(messages, model, options or CompletionOptions())

    async def list_models(self) -> set[str]:
        client = self._require_client()
        try:
            page = await client.models.list()
            return {m.id for m in page.data}
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
