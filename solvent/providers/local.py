"""Local inference daemon adapter (Ollama HTTP API) using httpx."""

import base64
import json
import logging
import time
from collections.abc import AsyncIterator

import httpx

from config.config_loader import ProviderConfig
from solvent.errors import InternalError, ProviderError, classify_exception
from solvent.models import CompletionOptions, Message, ModelResponse
from solvent.providers.base import Capability, ProviderAdapter, decode_data_uri

logger = logging.getLogger(__name__)

_DEFAULT_HOST = "http://127.0.0.1:11434"


def to_ollama_messages(history: list[Message], last_message: str) -> list[dict]:
    messages = []
    for m in history:
        msg: dict = {"role": "assistant" if m.role == "model" else m.role, "content": m.content}
        if m.image:
            image_bytes, _ = decode_data_uri(m.image)
            msg["images"] = [base64.b64encode(image_bytes).decode("ascii")]
        messages.append(msg)
    messages.append({"role": "user", "content": last_message})
    return messages


class LocalDaemonAdapter(ProviderAdapter):
    """Ollama daemon reachable over HTTP."""

    capabilities = frozenset({Capability.CHAT, Capability.STREAM, Capability.VISION, Capability.LIST_MODELS})

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url or _DEFAULT_HOST,
            timeout=config.timeout_sec,
        )

    def _payload(self, messages: list[dict], model: str, options: CompletionOptions, stream: bool) -> dict:
        return {
            "model": model,
            "messages": messages,
            "stream": stream,
            "options": {"temperature": options.temperature, "num_predict": options.max_tokens},
        }

    async def _chat(self, messages: list[dict], model: str, options: CompletionOptions) -> ModelResponse:
        start = time.monotonic()
        try:
            response = await self._client.post("/api/chat", json=self._payload(messages, model, options, False))
            response.raise_for_status()
            data = response.json()
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

        latency = time.monotonic() - start
        content = (data.get("message") or {}).get("content")
        if not content:
            raise InternalError(self.name(), "Empty response content")

        token_count: int | None = None
        if "eval_count" in data:
            token_count = int(data.get("prompt_eval_count", 0)) + int(data["eval_count"])

        logger.info("Ollama %s: %.2fs, %s tokens", model, latency, token_count)
        return ModelResponse(
            provider=self.name(),
            model=model,
            content=content,
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
        return await self._chat(to_ollama_messages(history, last_message), model, options)

    async def stream_chat_completion(
        self,
        history: list[Message],
        last_message: str,
        model: str,
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        payload = self._payload(to_ollama_messages(history, last_message), model, options, True)
        try:
            async with self._client.stream("POST", "/api/chat", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    chunk = json.loads(line)
                    if chunk.get("error"):
                        raise InternalError(self.name(), str(chunk["error"]))
                    fragment = (chunk.get("message") or {}).get("content")
                    if fragment:
                        yield fragment
                    if chunk.get("done"):
                        break
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
        messages = [
            {
                "role": "user",
                "content": prompt,
                "images": [base64.b64encode(image_bytes).decode("ascii")],
            }
        ]
        return await self._chat(messages, model, options or CompletionOptions())

    async def list_models(self) -> set[str]:
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            return {m["name"] for m in response.json().get("models", [])}
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

    async def aclose(self) -> None:
        await self._client.aclose()
