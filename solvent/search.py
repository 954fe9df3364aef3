"""Serper web search used for prompt grounding. Never raises past this module."""

import logging
import os
from abc import ABC, abstractmethod
from urllib.parse import urlparse

import httpx

from config.config_loader import SearchConfig
from solvent.models import SearchResult

logger = logging.getLogger(__name__)


class SearchCollaborator(ABC):
    """External web-search lookup."""

    @abstractmethod
    async def search(self, query: str) -> list[SearchResult]:
        """Return up to top-K results, or an empty list on any failure."""
        ...


def _host(link: str) -> str:
    try:
        return urlparse(link).hostname or ""
    except ValueError:
        return ""


class SerperSearch(SearchCollaborator):
    """google.serper.dev organic results."""

    def __init__(self, config: SearchConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._api_key = os.environ.get(config.api_key_env, "").strip()
        self._client = client or httpx.AsyncClient(timeout=config.timeout_sec)

    async def search(self, query: str) -> list[SearchResult]:
        if not self._api_key:
            logger.warning("Search skipped: %s is not set", self._config.api_key_env)
            return []

        try:
            response = await self._client.post(
                self._config.endpoint,
                json={"q": query, "num": self._config.top_k},
                headers={"X-API-KEY": self._api_key, "Content-Type": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Search failed for %r: %s", query, exc)
            return []

        organic = (payload.get("organic") or []) if isinstance(payload, dict) else None
        if not isinstance(organic, list):
            logger.warning("Search returned an unexpected body for %r", query)
            return []

        results: list[SearchResult] = []
        for item in organic:
            if not isinstance(item, dict):
                continue
            link = str(item.get("link") or "")
            results.append(
                SearchResult(
                    title=str(item.get("title") or ""),
                    link=link,
                    snippet=str(item.get("snippet") or ""),
                    source_host=_host(link),
                )
            )
            if len(results) == self._config.top_k:
                break
        logger.info("Search returned %d results for %r", len(results), query)
        return results

    async def aclose(self) -> None:
        await self._client.aclose()


class NullSearch(SearchCollaborator):
    """Used when no search backend is configured."""

    async def search(self, query: str) -> list[SearchResult]:
        return []
