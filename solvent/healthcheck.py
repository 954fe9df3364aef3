"""Provider health checks: ask each backend for its model list."""

import asyncio
import logging

from solvent.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

_TIMEOUT_SEC = 15.0


async def _check_one(name: str, adapter: ProviderAdapter, timeout_sec: float) -> tuple[str, bool, str]:
    """Ping a single adapter. Returns (name, ok, error_message)."""
    try:
        models = await asyncio.wait_for(adapter.list_models(), timeout=timeout_sec)
        logger.debug("Provider %s lists %d models", name, len(models))
        return name, True, ""
    except TimeoutError:
        return name, False, f"No answer within {timeout_sec:.0f}s"
    except Exception as exc:
        return name, False, str(exc)


async def run_health_checks(
    adapters: dict[str, ProviderAdapter],
    timeout_sec: float = _TIMEOUT_SEC,
) -> dict[str, tuple[bool, str]]:
    """Ping all adapters in parallel.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, a, timeout_sec) for n, a in adapters.items()))
    return {name: (ok, err) for name, ok, err in results}
