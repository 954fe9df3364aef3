"""Cloud model adapter (Gemini) using google-genai SDK with native async."""

import asyncio
import base64
import logging
import os
import time
from collections.abc import AsyncIterator

from google import genai
from google.genai import types as genai_types

from config.config_loader import ProviderConfig
from solvent.errors import (
    AuthenticationError,
    InternalError,
    NetworkError,
    NoImageProduced,
    ProviderError,
    classify_exception,
)
from solvent.models import CompletionOptions, GeneratedImage, Message, ModelResponse
from solvent.providers.base import Capability, ProviderAdapter

logger = logging.getLogger(__name__)

_ROLE_MAP = {"user": "user", "assistant": "model", "model": "model"}


def to_gemini_turns(
    history: list[Message], last_message: str
) -> tuple[list[genai_types.Content], str | None]:
    """Convert neutral history into Gemini turns plus a system instruction.

    System messages are not a Gemini turn role; they are joined into the
    request's system_instruction instead.
    """
    system_parts = [m.content for m in history if m.role == "system"]
    contents = [
        genai_types.Content(role=_ROLE_MAP.get(m.role, "user"), parts=[genai_types.Part(text=m.content)])
        for m in history
        if m.role != "system"
    ]
    contents.append(genai_types.Content(role="user", parts=[genai_types.Part(text=last_message)]))
    return contents, "\n\n".join(system_parts) or None


class CloudModelAdapter(ProviderAdapter):
    """Google Gemini via google-genai SDK."""

    capabilities = frozenset(
        {Capability.CHAT, Capability.STREAM, Capability.VISION, Capability.IMAGE, Capability.LIST_MODELS}
    )

    def __init__(self, config: ProviderConfig, client: genai.Client | None = None) -> None:
        super().__init__(config)
        self._client = client
        if self._client is None:
            api_key = os.environ.get(config.api_key_env or "", "").strip()
            if api_key:
                self._client = genai.Client(
                    api_key=api_key,
                    http_options=genai_types.HttpOptions(timeout=config.timeout_sec * 1000),
                )

    def _require_client(self) -> genai.Client:
        if self._client is None:
            raise AuthenticationError(self.name(), f"Missing API key: {self._config.api_key_env}")
        return self._client

    def _generation_config(
        self, options: CompletionOptions, system_instruction: str | None = None
    ) -> genai_types.GenerateContentConfig:
        tools = [genai_types.Tool(google_search=genai_types.GoogleSearch())] if options.enable_grounding else None
        return genai_types.GenerateContentConfig(
            temperature=options.temperature,
            max_output_tokens=options.max_tokens,
            system_instruction=system_instruction,
            tools=tools,
        )

    async def _generate(self, model: str, contents, config) -> genai_types.GenerateContentResponse:
        client = self._require_client()
        try:
            return await asyncio.wait_for(
                client.aio.models.generate_content(model=model, contents=contents, config=config),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise NetworkError(self.name(), f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

    def _to_model_response(self, response, model: str, start: float) -> ModelResponse:
        latency = time.monotonic() - start
        if not response.text:
            raise InternalError(self.name(), "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini %s: %.2fs, %s tokens", model, latency, token_count)
        return ModelResponse(
            provider=self.name(),
            model=model,
            content=response.text,
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
        start = time.monotonic()
        contents, system_instruction = to_gemini_turns(history, last_message)
        response = await self._generate(model, contents, self._generation_config(options, system_instruction))
        return self._to_model_response(response, model, start)

    async def stream_chat_completion(
        self,
        history: list[Message],
        last_message: str,
        model: str,
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        client = self._require_client()
        contents, system_instruction = to_gemini_turns(history, last_message)
        try:
            stream = await client.aio.models.generate_content_stream(
                model=model,
                contents=contents,
                config=self._generation_config(options, system_instruction),
            )
            async for chunk in stream:
                if chunk.text:
                    yield chunk.text
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
        start = time.monotonic()
        contents = [genai_types.Part.from_bytes(data=image_bytes, mime_type=mime_type), prompt]
        response = await self._generate(model, contents, self._generation_config(options or CompletionOptions()))
        return self._to_model_response(response, model, start)

    async def image_generation(self, prompt: str, model: str) -> GeneratedImage:
        logger.info("Gemini image generation with model: %s", model)
        response = await self._generate(
            model,
            prompt,
            genai_types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )
        candidates = response.candidates or []
        parts = candidates[0].content.parts if candidates and candidates[0].content else None
        for part in parts or []:
            if part.inline_data and part.inline_data.data:
                mime_type = part.inline_data.mime_type or "image/png"
                logger.info("Gemini image generated, MIME %s", mime_type)
                return GeneratedImage(
                    base64=base64.b64encode(part.inline_data.data).decode("ascii"),
                    mime_type=mime_type,
                )
        raise NoImageProduced(self.name(), f"Model {model} returned no image payload")

    async def list_models(self) -> set[str]:
        client = self._require_client()
        try:
            pager = await client.aio.models.list()
            return {m.name.removeprefix("models/") async for m in pager if m.name}
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc
