"""Mode-specific rewriting of the latest user message before dispatch.

The augmenter is stateless. It does not detect or strip earlier augmentation,
so calling it twice prepends twice. The router applies the mode once per
request and the cloud graph suffix separately for each provider it dispatches
to.
"""

import logging

from solvent.models import Mode, SearchResult
from solvent.search import SearchCollaborator

logger = logging.getLogger(__name__)

CLOUD_PROVIDER = "gemini"

BROWSER_HEADER = (
    "[SYSTEM: WEB BROWSING] Use the following real-time search results to answer "
    "the query accurately. Cite sources by their host name."
)
SCHOLARLY_HEADER = (
    "[SYSTEM: SCHOLARLY RESEARCH] Use the provided search results to write a deep, "
    "academic response with citations. Focus on factual accuracy and multiple perspectives."
)
NO_RESULTS_NOTICE = (
    "[SYSTEM] Search performed but no results found. "
    "Answer from general knowledge."
)
DEEP_THOUGHT_INSTRUCTION = (
    "[SYSTEM: DEEP THOUGHT]\n"
    "You are a deep reasoning engine. You MUST output your internal chain of thought "
    "inside <thinking> ... </thinking> tags before your final answer. Analyze the request "
    "step by step, consider contradictions and edge cases, then give the final response "
    "after the thinking block."
)
ANALYSIS_INSTRUCTION = (
    "[SYSTEM: DATA ANALYSIS & GRAPHING]\n"
    "Analyze the following text for entities and relationships. You MUST provide a "
    "detailed explanation AND a knowledge graph at the very end of your answer.\n"
    'Format the graph as: <graph_data>{ "nodes": [...], "edges": [...] }</graph_data>'
)
GRAPH_SUFFIX = (
    "[SYSTEM: KNOWLEDGE GRAPH]\n"
    "If the response involves connected concepts, you may append a knowledge graph JSON "
    "block at the very end.\n"
    'Format: <graph_data>{ "nodes": [{"id": "term_id", "title": "Term", "mode": "chat"}], '
    '"edges": [{"source": "term_id", "target": "other_id"}] }</graph_data>\n'
    "Keep titles concise (1-3 words). Only generate if relevant."
)
FALLBACK_HEADER = (
    "[SYSTEM: FALLBACK MODE]\n"
    "The primary cloud model is unavailable. You are answering via a fallback model "
    "with search assistance."
)


def _format_results(results: list[SearchResult]) -> str:
    return "\n\n".join(f"[{r.source_host}] {r.title}: {r.snippet}" for r in results)


class PromptAugmenter:
    """Applies the single active mode's transformation plus the cloud graph suffix."""

    def __init__(self, search: SearchCollaborator, top_k: int = 5) -> None:
        self._search = search
        self._top_k = top_k

    async def augment(self, last_message: str, mode: Mode | str, provider: str) -> str:
        """Return the rewritten message. Any internal failure yields the input unchanged."""
        text = await self.apply_mode(last_message, mode)
        return self.for_provider(text, mode, provider)

    async def apply_mode(self, last_message: str, mode: Mode | str) -> str:
        """Apply the mode transformation only; may search. Failures yield the input unchanged."""
        try:
            return await self._apply_mode(last_message, Mode(mode))
        except Exception as exc:
            logger.warning("Augmentation failed, sending message unaugmented: %s", exc)
            return last_message

    def for_provider(self, text: str, mode: Mode | str, provider: str) -> str:
        """Append the knowledge-graph suffix when ``provider`` is the cloud model."""
        if provider == CLOUD_PROVIDER and mode != Mode.ANALYSIS:
            return f"{text}\n\n{GRAPH_SUFFIX}"
        return text

    async def _apply_mode(self, text: str, mode: Mode) -> str:
        if mode in (Mode.BROWSER, Mode.SCHOLARLY):
            return await self._ground(text, mode)
        if mode is Mode.DEEP_THOUGHT:
            return f"{DEEP_THOUGHT_INSTRUCTION}\n\nUser Query: {text}"
        if mode is Mode.ANALYSIS:
            return f"{ANALYSIS_INSTRUCTION}\n\n{text}"
        return text

    async def _ground(self, query: str, mode: Mode) -> str:
        logger.info("Executing search for [%s]: %r", mode.value, query)
        results = (await self._search.search(query))[: self._top_k]
        if not results:
            return f'{NO_RESULTS_NOTICE}\n\nUser Query: "{query}"'
        header = SCHOLARLY_HEADER if mode is Mode.SCHOLARLY else BROWSER_HEADER
        return f'{header}\n\nContext:\n{_format_results(results)}\n\nUser Query: "{query}"'

    async def fallback_context(self, query: str, prompt: str) -> str:
        """Rebuild a fallback model's message around ``query`` with fresh search results.

        Without results (or when the search fails) ``prompt`` is returned as is.
        """
        try:
            results = (await self._search.search(query))[: self._top_k]
        except Exception as exc:
            logger.warning("Fallback search failed: %s", exc)
            return prompt
        if not results:
            return prompt
        context = "\n".join(f"- {r.title}: {r.snippet}" for r in results)
        return f"{FALLBACK_HEADER}\n\nSearch Context:\n{context}\n\nUser Query: {query}"
