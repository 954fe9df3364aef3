"""Two-tier failover: one primary attempt, at most one fallback attempt.

Candidates come either from an explicit provider/model on the request or from
a tier's stored ModelPreference. Failures are classified through
``solvent.errors``: fatal ones propagate untouched, retryable ones engage the
fallback. There is no retry beyond that single hop.
"""

import logging
import math
from collections.abc import AsyncGenerator
from contextlib import aclosing

from solvent.augmenter import PromptAugmenter
from solvent.errors import (
    FailoverExhausted,
    FailureClassification,
    NoImageProduced,
    OperationCancelled,
    ProviderError,
    QuotaExceeded,
    ServiceOverloaded,
    ValidationError,
    classify_exception,
)
from solvent.models import (
    SEARCH_MODES,
    ChatRequest,
    CompletionOptions,
    GeneratedImage,
    Mode,
    ModelRef,
    ModelResponse,
    ProviderResponse,
)
from solvent.providers.base import ProviderAdapter, decode_data_uri
from solvent.store import UsagePreferenceStore
from solvent.streaming import CancellableStream

logger = logging.getLogger(__name__)

FALLBACK_INFO = "fallback engaged"


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _log_failure(ref: ModelRef, exc: ProviderError) -> None:
    if isinstance(exc, OperationCancelled):
        logger.info("Call to %s cancelled", ref)
    else:
        logger.warning("Call to %s failed (%s): %s", ref, exc.code, exc)


class FailoverRouter:
    """Routes a request to its primary candidate and, on retryable failure, its fallback."""

    def __init__(
        self,
        adapters: dict[str, ProviderAdapter],
        augmenter: PromptAugmenter,
        store: UsagePreferenceStore,
    ) -> None:
        self._adapters = adapters
        self._augmenter = augmenter
        self._store = store

    def known_providers(self) -> set[str]:
        return set(self._adapters)

    def adapters(self) -> dict[str, ProviderAdapter]:
        return dict(self._adapters)

    def adapter(self, provider: str) -> ProviderAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise ValidationError(f"Unknown provider: {provider}") from None

    async def resolve_candidates(
        self, request: ChatRequest, tier: str | None = None
    ) -> tuple[ModelRef, ModelRef | None]:
        """Return (primary, fallback) for the request.

        With a tier, the stored preference decides and the fallback is only
        used when auto_shift is on. Without one, the request's own
        provider/model is primary and ``fallback_model`` (if any) is the
        fallback; a bare fallback model name refers to the local daemon.
        """
        if tier is not None:
            pref = await self._store.get_preference(tier)
            primary, fallback = pref.primary, pref.fallback if pref.auto_shift else None
        else:
            request.validate(self.known_providers())
            primary = ModelRef(request.provider, request.model)
            fallback = ModelRef.parse(request.fallback_model) if request.fallback_model else None

        for ref in (primary, fallback):
            if ref is not None:
                self.adapter(ref.provider)
        return primary, fallback

    async def execute(self, request: ChatRequest, tier: str | None = None) -> ProviderResponse:
        """Run one chat request through augmentation and failover.

        Raises:
            ValidationError: Before any provider is called, for malformed requests.
            ProviderError: A fatal primary failure, unchanged.
            FailoverExhausted: Primary failed retryably and the fallback failed too.
        """
        if not request.messages:
            raise ValidationError("At least one message is required")
        primary, fallback = await self.resolve_candidates(request, tier)

        original = request.last_message.content
        image_uri = request.inline_image()
        vision = request.mode is Mode.VISION or image_uri is not None
        image: tuple[bytes, str] | None = None
        if vision:
            if not image_uri:
                raise ValidationError("No image provided for vision mode")
            image = decode_data_uri(image_uri)
            mode_text = original
        else:
            mode_text = await self._augmenter.apply_mode(original, request.mode)
            request.last_message.content = self._augmenter.for_provider(mode_text, request.mode, primary.provider)

        logger.info("Executing %s request with primary %s", request.mode.value, primary)
        try:
            result = await self._dispatch(primary, request, request.last_message.content, image)
        except ProviderError as exc:
            _log_failure(primary, exc)
            if exc.classification is FailureClassification.FATAL or fallback is None:
                raise

            logger.warning("Primary %s unavailable, shifting to %s", primary, fallback)
            fallback_text = mode_text
            if image is None:
                # Give the weaker fallback the search context the mode did not already fetch
                if isinstance(exc, (QuotaExceeded, ServiceOverloaded)) and request.mode not in SEARCH_MODES:
                    fallback_text = await self._augmenter.fallback_context(original, fallback_text)
                fallback_text = self._augmenter.for_provider(fallback_text, request.mode, fallback.provider)

            try:
                result = await self._dispatch(fallback, request, fallback_text, image)
            except ProviderError as fallback_exc:
                _log_failure(fallback, fallback_exc)
                raise FailoverExhausted([(str(primary), exc), (str(fallback), fallback_exc)]) from fallback_exc

            tokens = await self._record(fallback, result.content, result.token_count)
            return ProviderResponse(
                response=result.content,
                model_used=fallback.model,
                info=FALLBACK_INFO,
                token_count=tokens,
            )

        tokens = await self._record(primary, result.content, result.token_count)
        return ProviderResponse(response=result.content, model_used=primary.model, token_count=tokens)

    async def stream(self, request: ChatRequest, tier: str | None = None) -> CancellableStream:
        """Stream a chat completion.

        The fallback is engaged only when the primary fails before producing
        its first fragment. Usage is recorded when the stream completes, never
        for a cancelled stream.
        """
        if not request.messages:
            raise ValidationError("At least one message is required")
        if request.mode is Mode.VISION or request.inline_image():
            raise ValidationError("Streaming is not available for vision requests")
        primary, fallback = await self.resolve_candidates(request, tier)

        original = request.last_message.content
        mode_text = await self._augmenter.apply_mode(original, request.mode)
        request.last_message.content = self._augmenter.for_provider(mode_text, request.mode, primary.provider)

        served_by: list[ModelRef] = []

        async def on_complete(text: str) -> None:
            await self._record(served_by[-1], text, None)

        source = self._stream_fragments(request, original, mode_text, primary, fallback, served_by)
        return CancellableStream(source, on_complete=on_complete)

    async def _stream_fragments(
        self,
        request: ChatRequest,
        original: str,
        mode_text: str,
        primary: ModelRef,
        fallback: ModelRef | None,
        served_by: list[ModelRef],
    ) -> AsyncGenerator[str, None]:
        started = False
        served_by.append(primary)
        try:
            async with aclosing(self._open_stream(primary, request, request.last_message.content)) as fragments:
                async for fragment in fragments:
                    started = True
                    yield fragment
            return
        except ProviderError as exc:
            _log_failure(primary, exc)
            if started or exc.classification is FailureClassification.FATAL or fallback is None:
                raise
            failure = exc

        logger.warning("Primary stream %s unavailable, shifting to %s", primary, fallback)
        fallback_text = mode_text
        if isinstance(failure, (QuotaExceeded, ServiceOverloaded)) and request.mode not in SEARCH_MODES:
            fallback_text = await self._augmenter.fallback_context(original, fallback_text)
        fallback_text = self._augmenter.for_provider(fallback_text, request.mode, fallback.provider)

        served_by.append(fallback)
        try:
            async with aclosing(self._open_stream(fallback, request, fallback_text)) as fragments:
                async for fragment in fragments:
                    yield fragment
        except ProviderError as fallback_exc:
            _log_failure(fallback, fallback_exc)
            raise FailoverExhausted([(str(primary), failure), (str(fallback), fallback_exc)]) from fallback_exc

    def _open_stream(self, ref: ModelRef, request: ChatRequest, last_text: str) -> AsyncGenerator[str, None]:
        return self.adapter(ref.provider).stream_chat_completion(
            request.messages[:-1], last_text, ref.model, self._options(request)
        )

    async def generate_image(
        self, prompt: str, primary: ModelRef, fallback: ModelRef | None = None
    ) -> ProviderResponse:
        """Generate an image; NoImageProduced or a retryable failure engages ``fallback``."""
        if not prompt.strip():
            raise ValidationError("Image prompt must not be empty")
        try:
            image = await self._generate_image(primary, prompt)
        except ProviderError as exc:
            _log_failure(primary, exc)
            if fallback is None or not (exc.retryable or isinstance(exc, NoImageProduced)):
                raise
            logger.warning("Image backend %s failed, shifting to %s", primary, fallback)
            try:
                image = await self._generate_image(fallback, prompt)
            except ProviderError as fallback_exc:
                _log_failure(fallback, fallback_exc)
                raise FailoverExhausted([(str(primary), exc), (str(fallback), fallback_exc)]) from fallback_exc
            await self._record(fallback, "", 0)
            return ProviderResponse(response=image, model_used=fallback.model, info=FALLBACK_INFO)

        await self._record(primary, "", 0)
        return ProviderResponse(response=image, model_used=primary.model)

    async def list_models(self, provider: str) -> set[str]:
        return await self.adapter(provider).list_models()

    async def _generate_image(self, ref: ModelRef, prompt: str) -> GeneratedImage:
        try:
            return await self.adapter(ref.provider).image_generation(prompt, ref.model)
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_exception(exc, ref.provider) from exc

    async def _dispatch(
        self,
        ref: ModelRef,
        request: ChatRequest,
        last_text: str,
        image: tuple[bytes, str] | None,
    ) -> ModelResponse:
        adapter = self.adapter(ref.provider)
        options = self._options(request)
        try:
            if image is not None:
                image_bytes, mime_type = image
                return await adapter.vision_completion(last_text, image_bytes, mime_type, ref.model, options)
            return await adapter.chat_completion(request.messages[:-1], last_text, ref.model, options)
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_exception(exc, ref.provider) from exc

    def _options(self, request: ChatRequest) -> CompletionOptions:
        return CompletionOptions(
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            enable_grounding=request.smart_router_enabled and request.mode not in SEARCH_MODES,
        )

    async def _record(self, ref: ModelRef, text: str, token_count: int | None) -> int:
        tokens = token_count if token_count is not None else estimate_tokens(text)
        await self._store.record_usage(str(ref), tokens)
        return tokens
