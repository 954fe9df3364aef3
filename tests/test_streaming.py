"""Tests for CancellableStream and FailoverRouter.stream."""

from unittest.mock import AsyncMock

import pytest

from solvent.augmenter import GRAPH_SUFFIX
from solvent.errors import AuthenticationError, FailoverExhausted, NetworkError, QuotaExceeded, ValidationError
from solvent.models import ChatRequest, Message, Mode
from solvent.router import estimate_tokens
from solvent.streaming import CancellableStream


async def _fragments(*parts: str):
    for part in parts:
        yield part


def _request(fallback="ollama/llama3", mode=Mode.PLAIN):
    return ChatRequest(
        messages=[Message("user", "Tell me a story")],
        provider="groq",
        model="llama-3.3-70b-versatile",
        mode=mode,
        fallback_model=fallback,
    )


async def test_stream_yields_all_fragments_and_completes():
    on_complete = AsyncMock()
    stream = CancellableStream(_fragments("a", "b", "c"), on_complete=on_complete)
    received = [fragment async for fragment in stream]
    assert received == ["a", "b", "c"]
    assert stream.text == "abc"
    on_complete.assert_awaited_once_with("abc")


async def test_cancel_stops_further_fragments():
    on_complete = AsyncMock()
    stream = CancellableStream(_fragments("a", "b", "c"), on_complete=on_complete)
    received = []
    async for fragment in stream:
        received.append(fragment)
        await stream.cancel()
    assert received == ["a"]
    on_complete.assert_not_called()


async def test_cancel_before_start_yields_nothing():
    on_complete = AsyncMock()
    stream = CancellableStream(_fragments("a"), on_complete=on_complete)
    await stream.cancel()
    assert [fragment async for fragment in stream] == []
    on_complete.assert_not_called()


async def test_cancel_is_idempotent():
    stream = CancellableStream(_fragments("a"))
    await stream.cancel()
    await stream.cancel()
    assert [fragment async for fragment in stream] == []


async def test_source_error_propagates_without_completion():
    async def failing():
        yield "a"
        raise NetworkError("groq", "reset")

    on_complete = AsyncMock()
    stream = CancellableStream(failing(), on_complete=on_complete)
    with pytest.raises(NetworkError):
        async for _ in stream:
            pass
    on_complete.assert_not_called()


async def test_context_exit_releases_source():
    closed = []

    async def source():
        try:
            yield "a"
            yield "b"
        finally:
            closed.append(True)

    async with CancellableStream(source()) as stream:
        await stream.__anext__()
    assert closed == [True]
    assert [fragment async for fragment in stream] == []


async def test_router_stream_records_usage_on_completion(router, stub_adapters, store):
    stream = await router.stream(_request())
    text = "".join([fragment async for fragment in stream])
    assert text == "Hello, world"
    usage = await store.get_usage()
    assert usage.request_count == 1
    assert usage.tokens_consumed == estimate_tokens("Hello, world")


async def test_router_stream_cancel_records_nothing_and_closes_adapter(router, stub_adapters, store):
    stream = await router.stream(_request())
    received = []
    async for fragment in stream:
        received.append(fragment)
        await stream.cancel()
    assert received == ["Hello"]
    assert stub_adapters["groq"].stream_closed
    assert (await store.get_usage()).request_count == 0


async def test_router_stream_falls_back_before_first_fragment(router, stub_adapters, store):
    stub_adapters["groq"].stream_error = QuotaExceeded("groq", "HTTP 429")
    stub_adapters["ollama"].fragments = ["local ", "story"]
    stream = await router.stream(_request())
    text = "".join([fragment async for fragment in stream])
    assert text == "local story"
    assert len(stub_adapters["ollama"].stream_calls) == 1
    assert (await store.get_usage()).request_count == 1


async def test_router_stream_no_fallback_after_first_fragment(router, stub_adapters):
    stub_adapters["groq"].stream_error = NetworkError("groq", "reset")
    stub_adapters["groq"].stream_error_after = 1
    stream = await router.stream(_request())
    received = []
    with pytest.raises(NetworkError):
        async for fragment in stream:
            received.append(fragment)
    assert received == ["Hello"]
    assert stub_adapters["ollama"].stream_calls == []


async def test_router_stream_fatal_error_propagates(router, stub_adapters):
    stub_adapters["groq"].stream_error = AuthenticationError("groq", "bad key")
    stream = await router.stream(_request())
    with pytest.raises(AuthenticationError):
        async for _ in stream:
            pass
    assert stub_adapters["ollama"].stream_calls == []


async def test_router_stream_both_fail(router, stub_adapters, store):
    stub_adapters["groq"].stream_error = QuotaExceeded("groq", "HTTP 429")
    stub_adapters["ollama"].stream_error = NetworkError("ollama", "daemon down")
    stream = await router.stream(_request())
    with pytest.raises(FailoverExhausted):
        async for _ in stream:
            pass
    assert (await store.get_usage()).request_count == 0


async def test_router_stream_rejects_vision(router):
    with pytest.raises(ValidationError):
        await router.stream(_request(mode=Mode.VISION))


async def test_router_stream_fallback_drops_cloud_graph_suffix(router, stub_adapters):
    stub_adapters["gemini"].stream_error = NetworkError("gemini", "reset")
    request = _request()
    request.provider, request.model = "gemini", "gemini-2.0-flash"
    stream = await router.stream(request)
    text = "".join([fragment async for fragment in stream])
    assert text == "Hello, world"
    assert GRAPH_SUFFIX in stub_adapters["gemini"].stream_calls[0]
    assert stub_adapters["ollama"].stream_calls == ["Tell me a story"]
