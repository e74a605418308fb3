"""
Cooperative cancellation for a single in-flight stream.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, TypeVar

T = TypeVar("T")


class StreamCancelled(Exception):
    """Raised inside a pipeline once its CancelToken has been triggered."""


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelled()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, source: AsyncIterator[T]) -> AsyncIterator[T]:
        """
        Re-yield `source` until cancelled. Each pending read races the token,
        so cancel() interrupts a read that is blocked on a stalled source.
        The source is closed on the way out.
        """
        iterator = source.__aiter__()
        try:
            while True:
                self.raise_if_cancelled()
                read = asyncio.ensure_future(_next_item(iterator))
                stop = asyncio.ensure_future(self.wait())
                try:
                    await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    stop.cancel()
                    if not read.done():
                        read.cancel()
                        # The source must be idle before it can be closed.
                        await asyncio.wait({read})
                if self.cancelled:
                    if not read.cancelled():
                        read.exception()
                    raise StreamCancelled()
                has_item, item = read.result()
                if not has_item:
                    return
                yield item
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()


async def _next_item(iterator: AsyncIterator[T]) -> tuple[bool, Optional[T]]:
    try:
        return True, await iterator.__anext__()
    except StopAsyncIteration:
        return False, None
