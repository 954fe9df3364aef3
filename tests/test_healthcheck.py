"""Unit tests for solvent/healthcheck.py: no real API calls."""

import asyncio
from unittest.mock import AsyncMock

from solvent.errors import AuthenticationError
from solvent.healthcheck import run_health_checks

from tests.conftest import StubAdapter


async def test_all_providers_pass():
    """All adapters list models -> all marked ok, no errors."""
    adapters = {"gemini": StubAdapter("gemini"), "ollama": StubAdapter("ollama")}

    results = await run_health_checks(adapters)

    assert results["gemini"] == (True, "")
    assert results["ollama"] == (True, "")


async def test_one_provider_fails():
    """An adapter that raises returns ok=False with the error message."""
    adapters = {"gemini": StubAdapter("gemini"), "groq": StubAdapter("groq")}
    adapters["groq"].list_models = AsyncMock(side_effect=AuthenticationError("groq", "Missing API key: GROQ_API_KEY"))

    results = await run_health_checks(adapters)

    assert results["gemini"] == (True, "")
    ok, err = results["groq"]
    assert ok is False
    assert "GROQ_API_KEY" in err


async def test_empty_providers():
    results = await run_health_checks({})
    assert results == {}


async def test_timeout_counts_as_failure():
    """An adapter that hangs past the timeout is marked as failed."""
    adapters = {"slow": StubAdapter("slow")}

    async def hang(*args, **kwargs):
        await asyncio.sleep(9999)

    adapters["slow"].list_models = AsyncMock(side_effect=hang)

    results = await run_health_checks(adapters, timeout_sec=0.05)

    ok, err = results["slow"]
    assert ok is False
    assert "No answer" in err
