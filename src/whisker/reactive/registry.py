"""Subscription registry — which viewers watch which file.

Maps each watched path to the ordered set of subscribers viewing it and
owns the arm/disarm policy for the filesystem watch: the first subscriber
of a path arms the watch, the last one to leave disarms it.

Results are fanned out through per-subscriber bounded queues.  Delivery is
``put_nowait``, so a broadcast never waits on a viewer; a viewer whose
queue is full is dropped and its session closed.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import TYPE_CHECKING, Any

from whisker._errors import WatchError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from whisker._types import ClientID, WatchedPath
    from whisker.compiler.options import CompileOptions
    from whisker.compiler.runner import CompileResult
    from whisker.observability.collector import EventCollector
    from whisker.source.watcher import PathWatch


# Queued after the last result when a subscriber closes.
_CLOSED = object()


class Subscriber:
    """One viewer connection on one path.

    Identity-hashed: two subscribers are equal only if they are the same
    object.  ``options`` belongs to the owning session; nothing else
    writes it.

    The queue is an ``asyncio.Queue``, so ``deliver()`` and ``close()``
    must be called from the event loop thread.

    Args:
        client_id: Unique identifier for this connection.
        path: The watched path this viewer subscribes to.
        options: Compile options currently in effect for this viewer.
        queue_size: Results the viewer may fall behind before it is dropped.
        on_failure: Called with a reason when a delivery fails.  Defaults
            to closing the subscriber.

    """

    __slots__ = ("_closed", "_on_failure", "_queue", "client_id", "options", "path")

    def __init__(
        self,
        client_id: ClientID,
        path: WatchedPath,
        options: CompileOptions,
        *,
        queue_size: int = 16,
        on_failure: Callable[[str], None] | None = None,
    ) -> None:
        self.client_id = client_id
        self.path = path
        self.options = options
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self._on_failure = on_failure

    def __repr__(self) -> str:
        return f"Subscriber({self.client_id!r}, {self.path!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Results queued but not yet consumed by the transport."""
        return self._queue.qsize()

    def deliver(self, result: CompileResult) -> bool:
        """Queue a result without waiting.  False if closed or full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(result)
        except asyncio.QueueFull:
            return False
        return True

    def fail(self, reason: str) -> None:
        """Report a failed delivery to the owner."""
        if self._closed:
            return
        if self._on_failure is not None:
            self._on_failure(reason)
        else:
            self.close()

    def close(self) -> None:
        """Stop accepting results and end ``results()``.  Idempotent.

        Undelivered results are discarded.
        """
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def results(self) -> AsyncIterator[CompileResult]:
        """Yield delivered results in order until the subscriber closes."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class SubscriptionRegistry:
    """Thread-safe map of watched path to subscribers.

    Invariants:
        - A path is present iff it has at least one subscriber.
        - A subscriber is registered under at most one path.
        - The watch for a path is armed while the path is present, unless
          arming failed (the path is then *degraded* until a later
          subscribe re-arms it).

    A single lock guards the map and serializes arm/disarm calls, so two
    first subscribers cannot both arm a path and two last subscribers
    cannot both disarm it.  ``broadcast`` holds the lock only long enough
    to snapshot the subscriber set.

    Args:
        watch: Watch capability to arm and disarm.  None disables
            change-driven recompiles entirely.
        collector: Optional event collector.

    """

    def __init__(
        self,
        watch: PathWatch | None = None,
        collector: EventCollector | None = None,
    ) -> None:
        self._watch = watch
        self._collector = collector
        self._subscribers: dict[WatchedPath, dict[Subscriber, None]] = {}
        self._owner: dict[Subscriber, WatchedPath] = {}
        self._degraded: set[WatchedPath] = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        """Total number of subscribers across all paths."""
        with self._lock:
            return len(self._owner)

    def subscribe(self, path: WatchedPath, subscriber: Subscriber) -> bool:
        """Register ``subscriber`` for ``path``.

        Returns True if the subscriber was added, False if it was already
        registered (here or under another path, which is left untouched).

        """
        with self._lock:
            existing = self._owner.get(subscriber)
            if existing is not None:
                if existing != path:
                    print(
                        f"  Ignored subscribe of {subscriber.client_id} to {path}: "
                        f"already on {existing}",
                        file=sys.stderr,
                    )
                return False

            subs = self._subscribers.get(path)
            if subs is None:
                subs = self._subscribers[path] = {}
                self._arm(path)
            elif path in self._degraded:
                self._arm(path)

            subs[subscriber] = None
            self._owner[subscriber] = path
            count = len(subs)

        if self._collector is not None:
            self._collector.record_subscription(
                path, subscriber.client_id, action="subscribe", subscribers=count
            )
        return True

    def unsubscribe(self, path: WatchedPath, subscriber: Subscriber) -> bool:
        """Remove ``subscriber`` from ``path``.  No-op if it is not there."""
        with self._lock:
            if self._owner.get(subscriber) != path:
                return False
            del self._owner[subscriber]
            subs = self._subscribers[path]
            del subs[subscriber]
            count = len(subs)
            if not subs:
                del self._subscribers[path]
                self._disarm(path)

        if self._collector is not None:
            self._collector.record_subscription(
                path, subscriber.client_id, action="unsubscribe", subscribers=count
            )
        return True

    def promote(self, path: WatchedPath, subscriber: Subscriber) -> None:
        """Make ``subscriber`` the path's current subscriber.

        The current subscriber's options decide how change-triggered
        compiles run.  It is whoever subscribed or updated options last.
        """
        with self._lock:
            subs = self._subscribers.get(path)
            if subs is None or subscriber not in subs:
                return
            del subs[subscriber]
            subs[subscriber] = None

    def current_options(self, path: WatchedPath) -> CompileOptions | None:
        """Options of the path's current subscriber, or None if it has none."""
        with self._lock:
            subs = self._subscribers.get(path)
            if not subs:
                return None
            return next(reversed(subs)).options

    def has_subscribers(self, path: WatchedPath) -> bool:
        with self._lock:
            return path in self._subscribers

    def get_subscribers(self, path: WatchedPath) -> tuple[Subscriber, ...]:
        """Get all subscribers for a path (snapshot, no lock held on return)."""
        with self._lock:
            return tuple(self._subscribers.get(path, ()))

    def get_watched_paths(self) -> frozenset[WatchedPath]:
        """Get all paths that have at least one subscriber."""
        with self._lock:
            return frozenset(self._subscribers)

    def is_degraded(self, path: WatchedPath) -> bool:
        """True if the path has subscribers but its watch could not be armed."""
        with self._lock:
            return path in self._degraded

    def broadcast(self, path: WatchedPath, result: CompileResult) -> int:
        """Deliver ``result`` to every current subscriber of ``path``.

        Subscribers that join after the snapshot miss this result.  A
        failed delivery drops that subscriber (unsubscribe, then its
        failure callback) and delivery to the rest continues.

        Returns:
            Number of subscribers the result was delivered to.

        """
        subscribers = self.get_subscribers(path)
        if not subscribers:
            return 0

        delivered = 0
        failed: list[Subscriber] = []
        for sub in subscribers:
            if sub.closed:
                continue  # left after the snapshot
            if sub.deliver(result):
                delivered += 1
            else:
                failed.append(sub)

        for sub in failed:
            print(
                f"  Delivery to {sub.client_id} failed ({sub.pending} pending), "
                f"dropping viewer of {path}",
                file=sys.stderr,
            )
            self.unsubscribe(path, sub)
            sub.fail("delivery queue full")

        if self._collector is not None:
            self._collector.record_broadcast(path, delivered=delivered, failed=len(failed))
        return delivered

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready summary of registry state."""
        with self._lock:
            paths = {
                path: {
                    "subscribers": len(subs),
                    "watching": path not in self._degraded and self._watch is not None,
                }
                for path, subs in sorted(self._subscribers.items())
            }
            total = len(self._owner)
        return {"subscribers": total, "paths": paths}

    # ----- watch arm/disarm (lock held) -----

    def _arm(self, path: WatchedPath) -> None:
        if self._watch is None:
            return
        try:
            self._watch.watch(path)
        except WatchError as exc:
            self._degraded.add(path)
            print(
                f"  Watch failed: {path}: {exc}, live updates disabled for this file",
                file=sys.stderr,
            )
            if self._collector is not None:
                self._collector.record_watch(path, action="failed", error=str(exc))
            return
        self._degraded.discard(path)
        if self._collector is not None:
            self._collector.record_watch(path, action="armed")

    def _disarm(self, path: WatchedPath) -> None:
        self._degraded.discard(path)
        if self._watch is None:
            return
        self._watch.unwatch(path)
        if self._collector is not None:
            self._collector.record_watch(path, action="disarmed")
