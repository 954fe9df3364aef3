"""Cancellable lazy sequence of text fragments."""

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable

logger = logging.getLogger(__name__)


class CancellableStream:
    """Wraps an async generator of fragments with an explicit ``cancel()``.

    ``on_complete`` receives the full text once the source is exhausted
    normally. It is never called after ``cancel()`` or when the source fails,
    so partially streamed calls are never accounted.
    """

    def __init__(
        self,
        source: AsyncGenerator[str, None],
        on_complete: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._source = source
        self._on_complete = on_complete
        self._parts: list[str] = []
        self._running = False
        self._closed = False
        self._cancelled = False

    @property
    def text(self) -> str:
        """Fragments received so far, joined."""
        return "".join(self._parts)

    def __aiter__(self) -> "CancellableStream":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration

        self._running = True
        try:
            fragment = await self._source.__anext__()
        except StopAsyncIteration:
            self._closed = True
            if not self._cancelled and self._on_complete is not None:
                await self._on_complete(self.text)
            raise
        except BaseException:
            self._closed = True
            raise
        finally:
            self._running = False

        # cancel() was called while this fragment was in flight
        if self._cancelled:
            await self._release()
            raise StopAsyncIteration

        self._parts.append(fragment)
        return fragment

    async def cancel(self) -> None:
        """Stop fragment production and release the underlying connection."""
        if self._closed or self._cancelled:
            return
        self._cancelled = True
        logger.info("Stream cancelled after %d fragments", len(self._parts))
        if not self._running:
            await self._release()

    async def _release(self) -> None:
        self._closed = True
        await self._source.aclose()

    async def __aenter__(self) -> "CancellableStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        if not self._closed:
            await self.cancel()
