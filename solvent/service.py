"""Payload-level facade over the router, pipeline and store.

Every public coroutine returns a JSON-ready dict and never raises a
ProviderError: failures become ``{"error": ..., "details": {...}}`` with the
taxonomy's user-facing text, so raw backend messages never reach the caller.
"""

import logging
import os
from dataclasses import asdict
from pathlib import Path

from config.config_loader import AppConfig
from solvent.augmenter import PromptAugmenter
from solvent.errors import OperationCancelled, ProviderError, ValidationError
from solvent.estimator import estimate
from solvent.models import ChatRequest, GeneratedImage, ModelPreference, ModelRef, ProviderResponse, ResourceEstimate
from solvent.providers.base import ProviderAdapter
from solvent.providers.registry import build_adapters
from solvent.router import FailoverRouter
from solvent.search import NullSearch, SearchCollaborator, SerperSearch
from solvent.store import UsagePreferenceStore
from solvent.waterfall import WaterfallPipeline

logger = logging.getLogger(__name__)


def error_payload(exc: ProviderError) -> dict:
    # Request validation messages are ours; anything else may carry backend text
    if isinstance(exc, ValidationError) and exc.provider_name == "request":
        message = exc.detail
    else:
        message = exc.user_message
    return {"error": message, "details": {"code": exc.code, "retryable": exc.retryable}}


def response_payload(response: ProviderResponse) -> dict:
    body = response.response
    if isinstance(body, GeneratedImage):
        body = {"base64": body.base64, "mimeType": body.mime_type}
    payload = {"response": body, "model": response.model_used}
    if response.info:
        payload["info"] = response.info
    return payload


def estimate_payload(result: ResourceEstimate) -> dict:
    return {
        "estimatedTokens": result.estimated_tokens,
        "estimatedCostUSD": result.estimated_cost_usd,
        "riskLevel": result.risk_level,
        "reason": result.reason,
    }


class ChatService:
    """Wires config, adapters, search, store, router and pipeline together."""

    def __init__(
        self,
        config: AppConfig,
        adapters: dict[str, ProviderAdapter],
        search: SearchCollaborator,
        store: UsagePreferenceStore,
    ) -> None:
        self.config = config
        self.store = store
        self._adapters = adapters
        self._search = search
        self.router = FailoverRouter(adapters, PromptAugmenter(search, top_k=config.search.top_k), store)
        self.pipeline = WaterfallPipeline(self.router, config.waterfall)

    @classmethod
    def from_config(cls, config: AppConfig, store_path: Path | None = None) -> "ChatService":
        if os.environ.get(config.search.api_key_env, "").strip():
            search: SearchCollaborator = SerperSearch(config.search)
        else:
            logger.info("Web search disabled: %s is not set", config.search.api_key_env)
            search = NullSearch()
        store = UsagePreferenceStore.open(store_path or config.defaults.store_path, config.tiers)
        return cls(config, build_adapters(config), search, store)

    async def process_chat(self, payload: dict, tier: str | None = None) -> dict:
        """Handle one chat payload: messages, provider, model, mode, smartRouter, fallbackModel."""
        try:
            request = ChatRequest.from_payload(payload, self.router.known_providers())
            response = await self.router.execute(request, tier=tier)
        except ProviderError as exc:
            return self._failure("chat", exc)
        return response_payload(response)

    async def process_image(self, payload: dict) -> dict:
        """Handle an image payload: ``prompt`` and an optional ``model`` reference."""
        try:
            prompt = str(payload.get("prompt") or "")
            primary, fallback = self.image_route(payload.get("model"))
            response = await self.router.generate_image(prompt, primary, fallback)
        except ProviderError as exc:
            return self._failure("image", exc)
        return response_payload(response)

    def image_route(self, model: str | None = None) -> tuple[ModelRef, ModelRef | None]:
        """Pick the image backend pair.

        An explicit ``model`` is used alone. Otherwise the configured image
        model is primary, unless its provider has no credentials, in which
        case the keyless fallback backend serves directly.
        """
        if model:
            return ModelRef.parse(model, default_provider=self.config.defaults.provider), None
        primary = self.config.defaults.image_model
        fallback = self.config.defaults.image_fallback
        if primary is None:
            if fallback is None:
                raise ValidationError("No image model configured")
            return fallback, None
        if primary.provider not in self.config.available_providers and fallback is not None:
            logger.info("Image provider %s has no credentials, using %s", primary.provider, fallback)
            return fallback, None
        return primary, fallback

    async def run_waterfall(self, prompt: str, force_proceed: bool = False, **kwargs) -> dict:
        if not prompt.strip():
            return error_payload(ValidationError("Prompt must not be empty"))
        result = await self.pipeline.run(prompt, force_proceed=force_proceed, **kwargs)
        payload = {
            "status": result.status,
            "stages": [asdict(stage) for stage in result.stages],
        }
        if result.estimate is not None:
            payload["estimate"] = estimate_payload(result.estimate)
        if result.failed_stage:
            payload["failedStage"] = result.failed_stage
            payload["error"] = result.error
        return payload

    def estimate_resources(self, payload: dict) -> dict:
        complexity = str(payload.get("complexity") or "medium")
        prompt_length = int(payload.get("promptLength") or len(str(payload.get("prompt") or "")))
        return estimate_payload(estimate(complexity, prompt_length))

    async def get_usage(self) -> dict:
        return asdict(await self.store.get_usage())

    async def reset_usage(self) -> dict:
        await self.store.reset_usage()
        return asdict(await self.store.get_usage())

    async def get_preference(self, tier: str) -> dict:
        try:
            return (await self.store.get_preference(tier)).to_dict()
        except ProviderError as exc:
            return self._failure("prefs", exc)

    async def set_preference(self, tier: str, payload: dict) -> dict:
        try:
            preference = ModelPreference.from_dict(payload)
            for ref in (preference.primary, preference.fallback):
                if ref is not None:
                    self.router.adapter(ref.provider)
            await self.store.set_preference(tier, preference)
        except KeyError as exc:
            return error_payload(ValidationError(f"Missing field: {exc.args[0]}"))
        except ProviderError as exc:
            return self._failure("prefs", exc)
        return preference.to_dict()

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
        if isinstance(self._search, SerperSearch):
            await self._search.aclose()

    def _failure(self, route: str, exc: ProviderError) -> dict:
        if isinstance(exc, OperationCancelled):
            logger.info("%s request cancelled", route)
        else:
            logger.error("%s request failed (%s): %s", route, exc.code, exc)
        return error_payload(exc)
