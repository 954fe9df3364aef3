"""Shared pytest fixtures."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ProviderConfig,
    SearchConfig,
    StageConfig,
    WaterfallConfig,
)
from solvent.augmenter import PromptAugmenter
from solvent.models import (
    GeneratedImage,
    Message,
    ModelPreference,
    ModelRef,
    ModelResponse,
    SearchResult,
)
from solvent.providers.base import Capability, ProviderAdapter
from solvent.router import FailoverRouter
from solvent.search import SearchCollaborator
from solvent.store import UsagePreferenceStore


class StubAdapter(ProviderAdapter):
    """Test double ProviderAdapter."""

    capabilities = frozenset(Capability)

    def __init__(
        self,
        provider_name: str = "stub",
        response_content: str = "Stub response",
        fragments: list[str] | None = None,
    ) -> None:
        super().__init__(
            ProviderConfig(name=provider_name, adapter="stub", timeout_sec=5, default_model="stub-model")
        )
        # Shadow the class methods with AsyncMocks at the instance level.
        self.chat_completion = AsyncMock(  # type: ignore[method-assign]
            return_value=ModelResponse(
                provider=provider_name,
                model="stub-model",
                content=response_content,
                latency_sec=0.1,
                token_count=10,
            )
        )
        self.vision_completion = AsyncMock(  # type: ignore[method-assign]
            return_value=ModelResponse(
                provider=provider_name,
                model="stub-vision",
                content="I see a cat",
                latency_sec=0.1,
                token_count=None,
            )
        )
        self.image_generation = AsyncMock(  # type: ignore[method-assign]
            return_value=GeneratedImage(base64="aW1n", mime_type="image/png")
        )
        self.list_models = AsyncMock(return_value={"stub-model"})  # type: ignore[method-assign]
        self.fragments = fragments if fragments is not None else ["Hello", ", ", "world"]
        self.stream_error: Exception | None = None
        self.stream_error_after: int = 0
        self.stream_calls: list[str] = []
        self.stream_closed = False

    async def list_models(self) -> set[str]:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return {"stub-model"}

    async def stream_chat_completion(self, history, last_message, model, options):  # type: ignore[override]
        self.stream_calls.append(last_message)
        try:
            for index, fragment in enumerate(self.fragments):
                if self.stream_error is not None and index == self.stream_error_after:
                    raise self.stream_error
                await asyncio.sleep(0)
                yield fragment
            if self.stream_error is not None and self.stream_error_after >= len(self.fragments):
                raise self.stream_error
        finally:
            self.stream_closed = True


class StaticSearch(SearchCollaborator):
    """Search double returning a fixed result list."""

    def __init__(self, results: list[SearchResult] | None = None) -> None:
        self.results = results or []
        self.queries: list[str] = []

    async def search(self, query: str) -> list[SearchResult]:
        self.queries.append(query)
        return list(self.results)


@pytest.fixture
def sample_results() -> list[SearchResult]:
    return [
        SearchResult(
            title="Rust 1.80 released",
            link="https://blog.rust-lang.org/2024/07/25/Rust-1.80.0.html",
            snippet="Rust 1.80 stabilizes LazyCell and LazyLock.",
            source_host="blog.rust-lang.org",
        ),
        SearchResult(
            title="What's new in Rust",
            link="https://example.com/rust",
            snippet="A roundup of recent language changes.",
            source_host="example.com",
        ),
    ]


@pytest.fixture
def sample_provider_config() -> ProviderConfig:
    return ProviderConfig(
        name="ollama",
        adapter="local",
        timeout_sec=30,
        base_url="http://ollama.test",
        default_model="llama3",
    )


@pytest.fixture
def sample_tiers() -> dict[str, ModelPreference]:
    return {
        "planner": ModelPreference(
            primary=ModelRef("groq", "llama-3.3-70b-versatile"),
            fallback=ModelRef("ollama", "llama3"),
            auto_shift=True,
        ),
        "executor": ModelPreference(
            primary=ModelRef("gemini", "gemini-2.0-flash"),
            fallback=ModelRef("ollama", "llama3"),
            auto_shift=False,
        ),
    }


@pytest.fixture
def sample_waterfall_config() -> WaterfallConfig:
    return WaterfallConfig(
        stages=[
            StageConfig("architect", ModelRef("groq", "arch-model"), "Architect: {input}", ModelRef("ollama", "arch-fb")),
            StageConfig("reasoner", ModelRef("groq", "reason-model"), "Reasoner: {input}", ModelRef("ollama", "reason-fb")),
            StageConfig("executor", ModelRef("groq", "exec-model"), "Executor: {input}", ModelRef("ollama", "exec-fb")),
            StageConfig("reviewer", ModelRef("groq", "review-model"), "Reviewer: {plan} || {input}", None),
        ],
        gate_enabled=True,
    )


@pytest.fixture
def sample_app_config(
    tmp_path: Path,
    sample_tiers: dict[str, ModelPreference],
    sample_waterfall_config: WaterfallConfig,
) -> AppConfig:
    return AppConfig(
        defaults=DefaultsConfig(
            provider="gemini",
            model="gemini-2.0-flash",
            temperature=0.7,
            max_tokens=2048,
            store_path=tmp_path / "state.json",
            fallback_model="ollama/qwen2.5:3b",
            image_model=ModelRef("gemini", "gemini-2.0-flash-exp"),
            image_fallback=ModelRef("pollinations", "flux"),
        ),
        providers={
            "gemini": ProviderConfig(name="gemini", adapter="cloud", timeout_sec=30, api_key_env="GEMINI_API_KEY"),
            "ollama": ProviderConfig(name="ollama", adapter="local", timeout_sec=30, base_url="http://ollama.test"),
            "groq": ProviderConfig(
                name="groq",
                adapter="openai",
                timeout_sec=30,
                api_key_env="GROQ_API_KEY",
                base_url="https://groq.test/v1",
            ),
            "pollinations": ProviderConfig(name="pollinations", adapter="image", timeout_sec=30),
        },
        search=SearchConfig(api_key_env="SERPER_API_KEY"),
        tiers=sample_tiers,
        waterfall=sample_waterfall_config,
        available_providers={"gemini", "ollama", "pollinations"},
    )


@pytest.fixture
def stub_adapters() -> dict[str, StubAdapter]:
    return {
        "gemini": StubAdapter("gemini", "Cloud answer"),
        "ollama": StubAdapter("ollama", "Local answer"),
        "groq": StubAdapter("groq", "Groq answer"),
        "pollinations": StubAdapter("pollinations"),
    }


@pytest.fixture
def static_search(sample_results: list[SearchResult]) -> StaticSearch:
    return StaticSearch(sample_results)


@pytest.fixture
def store(tmp_path: Path, sample_tiers: dict[str, ModelPreference]) -> UsagePreferenceStore:
    return UsagePreferenceStore.open(tmp_path / "state.json", sample_tiers)


@pytest.fixture
def router(
    stub_adapters: dict[str, StubAdapter],
    static_search: StaticSearch,
    store: UsagePreferenceStore,
) -> FailoverRouter:
    return FailoverRouter(stub_adapters, PromptAugmenter(static_search), store)


@pytest.fixture
def user_message() -> Message:
    return Message(role="user", content="What changed in Rust lately?")
