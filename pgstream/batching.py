"""Async stream adapters that batch items by size and time, or flag idle periods."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, TypeVar, Union

from pgstream.config import BatchConfig

T = TypeVar("T")

_END = object()


async def _next_or_end(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


@dataclass(frozen=True)
class Value(Generic[T]):
    """An item produced by the inner stream."""

    value: T


@dataclass(frozen=True)
class Timeout:
    """No item arrived within the configured duration."""


TimeoutStreamResult = Union[Value[T], Timeout]


class _PendingNext:
    """Keeps one outstanding `__anext__` of an async iterator alive across waits."""

    def __init__(self, stream: AsyncIterable[Any]) -> None:
        self.stream = stream
        self._iterator = stream.__aiter__()
        self._task: asyncio.Future[Any] | None = None

    async def wait(self, timeout: float | None) -> tuple[bool, Any]:
        """Wait up to `timeout` seconds; return (ready, item-or-_END)."""
        if self._task is None:
            self._task = asyncio.ensure_future(_next_or_end(self._iterator))
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            return False, None
        task, self._task = self._task, None
        return True, task.result()

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class TimeoutBatchStream(Generic[T]):
    """Collects items from an async stream into lists.

    A batch is emitted as soon as it holds `max_size` items, or once
    `max_fill_ms` has passed since the batch was started and no further
    item is immediately available. A final partial batch is emitted when
    the inner stream ends.
    """

    def __init__(self, stream: AsyncIterable[T], batch_config: BatchConfig) -> None:
        self._next = _PendingNext(stream)
        self._max_size = batch_config.max_size
        self._max_fill = batch_config.max_fill_ms / 1000.0
        self._items: list[T] = []
        self._deadline = 0.0
        self._reset_timer = True
        self._ended = False

    @property
    def inner(self) -> AsyncIterable[T]:
        return self._next.stream

    def __aiter__(self) -> TimeoutBatchStream[T]:
        return self

    def _take(self) -> list[T]:
        batch, self._items = self._items, []
        return batch

    async def __anext__(self) -> list[T]:
        if self._ended:
            raise StopAsyncIteration
        loop = asyncio.get_running_loop()
        while True:
            if self._reset_timer:
                self._deadline = loop.time() + self._max_fill
                self._reset_timer = False

            timeout = max(0.0, self._deadline - loop.time()) if self._items else None
            ready, item = await self._next.wait(timeout)

            if not ready:
                self._reset_timer = True
                return self._take()

            if item is _END:
                self._ended = True
                if self._items:
                    self._reset_timer = True
                    return self._take()
                raise StopAsyncIteration

            self._items.append(item)
            if len(self._items) >= self._max_size:
                self._reset_timer = True
                return self._take()

    async def aclose(self) -> None:
        """Cancel any outstanding read of the inner stream."""
        self._ended = True
        await self._next.close()


class TimeoutStream(Generic[T]):
    """Yields `Value(item)` for each inner item, or `Timeout()` when idle.

    The timer starts on the first read and restarts only after a timeout is
    yielded or after `mark_reset_timer` is called.
    """

    def __init__(
        self, stream: AsyncIterable[T], max_batch_fill_duration: float | timedelta
    ) -> None:
        if isinstance(max_batch_fill_duration, timedelta):
            max_batch_fill_duration = max_batch_fill_duration.total_seconds()
        self._next = _PendingNext(stream)
        self._duration = float(max_batch_fill_duration)
        self._deadline = 0.0
        self._reset_timer = True
        self._ended = False

    @property
    def inner(self) -> AsyncIterable[T]:
        """The wrapped stream."""
        return self._next.stream

    def mark_reset_timer(self) -> None:
        """Restart the countdown on the next read."""
        self._reset_timer = True

    def __aiter__(self) -> TimeoutStream[T]:
        return self

    async def __anext__(self) -> Value[T] | Timeout:
        if self._ended:
            raise StopAsyncIteration
        loop = asyncio.get_running_loop()
        if self._reset_timer:
            self._deadline = loop.time() + self._duration
            self._reset_timer = False

        ready, item = await self._next.wait(max(0.0, self._deadline - loop.time()))
        if not ready:
            self._reset_timer = True
            return Timeout()
        if item is _END:
            self._ended = True
            raise StopAsyncIteration
        return Value(item)

    async def aclose(self) -> None:
        """Cancel any outstanding read of the inner stream."""
        self._ended = True
        await self._next.close()