"""Per-tier model preferences and running usage counters, persisted as JSON.

The store is opened once at process start and handed to the components that
need it. Every mutation is serialized by a lock and flushed to disk before the
lock is released.
"""

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

from solvent.errors import ValidationError
from solvent.models import ModelPreference, UsageCounters

logger = logging.getLogger(__name__)


def calculate_cost(model: str, tokens: int) -> float:
    """Rough per-model pricing in USD."""
    if "free" in model or "ollama" in model:
        return 0.0
    if "gpt-4" in model or "opus" in model:
        return tokens / 1000 * 0.03
    return tokens / 1000 * 0.001


class UsagePreferenceStore:
    """JSON-file backed store for ModelPreference per tier and UsageCounters."""

    def __init__(self, path: Path | None, defaults: dict[str, ModelPreference]) -> None:
        self._path = path
        self._defaults = dict(defaults)
        self._preferences: dict[str, ModelPreference] = {}
        self._usage = UsageCounters()
        self._lock = asyncio.Lock()

    @classmethod
    def open(cls, path: Path | None, defaults: dict[str, ModelPreference]) -> "UsagePreferenceStore":
        """Load state from ``path`` (created on first flush). ``None`` keeps state in memory."""
        store = cls(path, defaults)
        if path is not None and path.exists():
            raw = json.loads(path.read_text(encoding="utf-8"))
            store._preferences = {
                tier: ModelPreference.from_dict(pref) for tier, pref in raw.get("model_prefs", {}).items()
            }
            usage = raw.get("usage", {})
            store._usage = UsageCounters(
                tokens_consumed=int(usage.get("tokens_consumed", 0)),
                cost_usd_accrued=float(usage.get("cost_usd_accrued", 0.0)),
                request_count=int(usage.get("request_count", 0)),
            )
            logger.info("Loaded store from %s", path)
        return store

    async def get_preference(self, tier: str) -> ModelPreference:
        if tier in self._preferences:
            return self._preferences[tier]
        if tier in self._defaults:
            return self._defaults[tier]
        raise ValidationError(f"Unknown tier: {tier}")

    async def set_preference(self, tier: str, preference: ModelPreference) -> None:
        async with self._lock:
            self._preferences[tier] = preference
            self._flush()

    async def record_usage(self, model: str, tokens: int) -> UsageCounters:
        async with self._lock:
            self._usage = UsageCounters(
                tokens_consumed=self._usage.tokens_consumed + tokens,
                cost_usd_accrued=self._usage.cost_usd_accrued + calculate_cost(model, tokens),
                request_count=self._usage.request_count + 1,
            )
            self._flush()
            return self._usage

    async def get_usage(self) -> UsageCounters:
        return UsageCounters(**asdict(self._usage))

    async def reset_usage(self) -> None:
        async with self._lock:
            self._usage = UsageCounters()
            self._flush()

    def _flush(self) -> None:
        if self._path is None:
            return
        state = {
            "model_prefs": {tier: pref.to_dict() for tier, pref in self._preferences.items()},
            "usage": asdict(self._usage),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(state, indent=2), encoding="utf-8")
        tmp.replace(self._path)
