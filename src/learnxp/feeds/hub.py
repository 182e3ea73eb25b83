"""Feed hub: long-lived subscriptions to per-key Result streams.

Tracks every live subscription by key (``progress:<user_id>``,
``leaderboard:weekly`` ...) and fans published results out to them.
Each subscriber owns a bounded queue. A slow consumer never stalls the
publisher: when its queue is full, the oldest Success or Loading that a
later value supersedes is dropped. The first Loading and every Error are
always delivered, even past the bound.

Every subscription starts with a ``Loading`` (carrying the last known value
as stale data, if any), so consumers can always render a spinner first.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from typing import Any, Generic, TypeVar

import structlog

from learnxp.result import Loading, Result, Success, get_or_none

logger = structlog.get_logger()

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """A cancellable handle on one feed.

    Iterate with ``async for``; iteration ends after ``cancel()`` or when the
    hub closes. Dropping a subscription without cancelling it leaks its
    queue in the hub, so consumers tear down with ``cancel()`` or a ``with``
    block.
    """

    def __init__(self, hub: FeedHub, key: str, sub_id: int, maxsize: int) -> None:
        self.key = key
        self.sub_id = sub_id
        self.dropped = 0
        self._hub = hub
        self._maxsize = maxsize
        # Bound enforced in _offer; Errors may exceed it
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._head_pending = True
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _droppable(self, items: list[Any], index: int) -> bool:
        if index == 0 and self._head_pending:
            return False
        if index + 1 >= len(items):
            return False
        return isinstance(items[index], (Success, Loading)) and isinstance(items[index + 1], (Success, Loading))

    def _compact(self, item: Any) -> None:
        """Make room for ``item`` by collapsing the oldest superseded value."""
        items = [self._queue.get_nowait() for _ in range(self._queue.qsize())]
        items.append(item)
        for index in range(len(items)):
            if self._droppable(items, index):
                del items[index]
                self.dropped += 1
                break
        for queued in items:
            self._queue.put_nowait(queued)

    def _offer(self, item: Any) -> None:
        if self._queue.qsize() < self._maxsize:
            self._queue.put_nowait(item)
        else:
            self._compact(item)

    def _push(self, result: Result[T]) -> None:
        if not self._closed:
            self._offer(result)

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def cancel(self) -> None:
        """Stop receiving values and release the hub's reference."""
        self._hub.unsubscribe(self)

    async def get(self, timeout: float | None = None) -> Result[T]:
        """Next value. Raises ``StopAsyncIteration`` once the subscription is closed."""
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # Leave the marker for any other waiter
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        self._head_pending = False
        return item

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> Result[T]:
        return await self.get()

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.cancel()

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.cancel()


class FeedHub:
    """Manages all live feed subscriptions.

    Safe for asyncio via the single-threaded event loop; ``publish`` never
    awaits, so a fan-out is never interleaved with another.
    """

    def __init__(self, queue_size: int = 64) -> None:
        if queue_size < 2:
            msg = f"queue_size must be at least 2, got {queue_size}"
            raise ValueError(msg)
        self._queue_size = queue_size
        self._subs: dict[str, dict[int, Subscription[Any]]] = defaultdict(dict)
        self._last: dict[str, Result[Any]] = {}
        self._ids = itertools.count(1)
        self._closed = False

    def subscribe(self, key: str, stale: Any = None) -> Subscription[Any]:
        """New subscription to ``key``.

        The first value is a Loading carrying the last published value, or
        ``stale`` when nothing has been published yet.
        """
        if self._closed:
            msg = "FeedHub is closed"
            raise RuntimeError(msg)

        sub: Subscription[Any] = Subscription(self, key, next(self._ids), self._queue_size)
        self._subs[key][sub.sub_id] = sub

        last = self._last.get(key)
        sub._push(Loading(partial=get_or_none(last) if last is not None else stale))
        if last is not None and not isinstance(last, Loading):
            sub._push(last)

        logger.debug("feed_subscribed", key=key, sub_id=sub.sub_id)
        return sub

    def unsubscribe(self, sub: Subscription[Any]) -> None:
        subs = self._subs.get(sub.key)
        if subs is not None:
            subs.pop(sub.sub_id, None)
            if not subs:
                del self._subs[sub.key]
                self._last.pop(sub.key, None)
        sub._close()
        logger.debug("feed_unsubscribed", key=sub.key, sub_id=sub.sub_id)

    def publish(self, key: str, result: Result[Any]) -> int:
        """Push ``result`` to every subscriber of ``key``. Returns the number reached."""
        subs = self._subs.get(key)
        if not subs:
            return 0
        self._last[key] = result
        for sub in list(subs.values()):
            sub._push(result)
        return len(subs)

    def has_subscribers(self, key: str) -> bool:
        return bool(self._subs.get(key))

    def close(self) -> None:
        """End every subscription. Further ``subscribe`` calls fail."""
        self._closed = True
        for subs in list(self._subs.values()):
            for sub in list(subs.values()):
                sub._close()
        self._subs.clear()
        self._last.clear()

    def get_stats(self) -> dict:
        return {
            "total_subscriptions": sum(len(s) for s in self._subs.values()),
            "keys": {key: len(subs) for key, subs in self._subs.items() if subs},
        }


def progress_key(user_id: str) -> str:
    return f"progress:{user_id}"


def leaderboard_key(scope: str) -> str:
    return f"leaderboard:{scope}"


def sync_key(user_id: str) -> str:
    return f"sync:{user_id}"
