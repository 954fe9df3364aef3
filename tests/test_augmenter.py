"""Tests for solvent/augmenter.py."""

from solvent.augmenter import (
    ANALYSIS_INSTRUCTION,
    BROWSER_HEADER,
    DEEP_THOUGHT_INSTRUCTION,
    FALLBACK_HEADER,
    GRAPH_SUFFIX,
    NO_RESULTS_NOTICE,
    SCHOLARLY_HEADER,
    PromptAugmenter,
)
from solvent.models import Mode
from solvent.search import NullSearch, SearchCollaborator

from tests.conftest import StaticSearch


class _BrokenSearch(SearchCollaborator):
    async def search(self, query):
        raise RuntimeError("search backend exploded")


async def test_plain_mode_unchanged_for_non_cloud():
    augmenter = PromptAugmenter(NullSearch())
    assert await augmenter.augment("hello", Mode.PLAIN, "ollama") == "hello"


async def test_plain_mode_cloud_gets_graph_suffix():
    augmenter = PromptAugmenter(NullSearch())
    assert await augmenter.augment("hello", Mode.PLAIN, "gemini") == f"hello\n\n{GRAPH_SUFFIX}"


async def test_browser_mode_embeds_results(static_search):
    augmenter = PromptAugmenter(static_search)
    text = await augmenter.augment("latest rust", Mode.BROWSER, "groq")
    assert text.startswith(BROWSER_HEADER)
    assert "[blog.rust-lang.org] Rust 1.80 released: Rust 1.80 stabilizes LazyCell and LazyLock." in text
    assert text.endswith('User Query: "latest rust"')
    assert static_search.queries == ["latest rust"]


async def test_scholarly_mode_uses_scholarly_header(static_search):
    augmenter = PromptAugmenter(static_search)
    text = await augmenter.augment("quantum error correction", "scholarly", "ollama")
    assert text.startswith(SCHOLARLY_HEADER)


async def test_search_mode_without_results():
    augmenter = PromptAugmenter(StaticSearch([]))
    text = await augmenter.augment("obscure thing", Mode.BROWSER, "ollama")
    assert text == f'{NO_RESULTS_NOTICE}\n\nUser Query: "obscure thing"'


async def test_top_k_limits_results(sample_results):
    augmenter = PromptAugmenter(StaticSearch(sample_results), top_k=1)
    text = await augmenter.augment("rust", Mode.BROWSER, "ollama")
    assert "Rust 1.80 released" in text
    assert "What's new in Rust" not in text


async def test_deep_thought_mode():
    augmenter = PromptAugmenter(NullSearch())
    text = await augmenter.augment("why is the sky blue", Mode.DEEP_THOUGHT, "groq")
    assert text == f"{DEEP_THOUGHT_INSTRUCTION}\n\nUser Query: why is the sky blue"
    assert "<thinking>" in text


async def test_analysis_mode_skips_graph_suffix_on_cloud():
    augmenter = PromptAugmenter(NullSearch())
    text = await augmenter.augment("Alice knows Bob", Mode.ANALYSIS, "gemini")
    assert text == f"{ANALYSIS_INSTRUCTION}\n\nAlice knows Bob"
    assert GRAPH_SUFFIX not in text


async def test_failure_returns_input_unchanged():
    augmenter = PromptAugmenter(_BrokenSearch())
    assert await augmenter.augment("hello", Mode.BROWSER, "groq") == "hello"


async def test_unknown_mode_returns_input_unchanged():
    augmenter = PromptAugmenter(NullSearch())
    assert await augmenter.augment("hello", "telepathy", "groq") == "hello"


async def test_augmenting_twice_prepends_twice():
    augmenter = PromptAugmenter(NullSearch())
    once = await augmenter.augment("q", Mode.DEEP_THOUGHT, "ollama")
    twice = await augmenter.augment(once, Mode.DEEP_THOUGHT, "ollama")
    assert twice.count(DEEP_THOUGHT_INSTRUCTION) == 2


async def test_fallback_context_with_results(static_search):
    augmenter = PromptAugmenter(static_search)
    text = await augmenter.fallback_context("latest rust", "latest rust")
    assert text.startswith(FALLBACK_HEADER)
    assert "- Rust 1.80 released: Rust 1.80 stabilizes LazyCell and LazyLock." in text
    assert text.endswith("latest rust")


async def test_fallback_context_without_results_returns_prompt():
    augmenter = PromptAugmenter(StaticSearch([]))
    assert await augmenter.fallback_context("q", "prompt") == "prompt"


async def test_fallback_context_search_failure_returns_prompt():
    augmenter = PromptAugmenter(_BrokenSearch())
    assert await augmenter.fallback_context("q", "prompt") == "prompt"


async def test_apply_mode_leaves_provider_suffix_out():
    augmenter = PromptAugmenter(NullSearch())
    text = await augmenter.apply_mode("why", Mode.DEEP_THOUGHT)
    assert GRAPH_SUFFIX not in text
    assert augmenter.for_provider(text, Mode.DEEP_THOUGHT, "gemini") == f"{text}\n\n{GRAPH_SUFFIX}"
    assert augmenter.for_provider(text, Mode.DEEP_THOUGHT, "ollama") == text


async def test_fallback_context_rebuilds_around_query(static_search):
    augmenter = PromptAugmenter(static_search)
    text = await augmenter.fallback_context("latest rust", f"{DEEP_THOUGHT_INSTRUCTION}\n\nUser Query: latest rust")
    assert text.startswith(FALLBACK_HEADER)
    assert DEEP_THOUGHT_INSTRUCTION not in text
    assert text.endswith("User Query: latest rust")
