"""Event log — bounded, thread-safe store of whisker events.

Compile worker threads and the event loop both append here, so every
access goes through one lock.  Old events fall off the front once
``max_events`` is reached.
"""

import threading
from collections import Counter, deque
from collections.abc import Iterable
from typing import Any

from whisker.observability.events import CompileFinished


def _matches(event: Any, event_type: type | None, since_ns: int, path: str | None) -> bool:
    if event_type is not None and not isinstance(event, event_type):
        return False
    if since_ns and getattr(event, "timestamp_ns", 0) < since_ns:
        return False
    return path is None or getattr(event, "path", None) == path


class EventLog:
    """Ring buffer of events with filtered lookup.

    Server lifecycle events share the buffer with whisker's own, so stored
    items are only assumed to be objects; ``timestamp_ns`` and ``path`` are
    read when present.

    Args:
        max_events: Capacity of the ring buffer.

    """

    __slots__ = ("_events", "_lock", "_max_events")

    def __init__(self, max_events: int = 10_000) -> None:
        self._max_events = max_events
        self._events: deque[Any] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(self, event: Any) -> None:
        with self._lock:
            self._events.append(event)

    def append_many(self, events: Iterable[Any]) -> None:
        with self._lock:
            self._events.extend(events)

    def query(
        self,
        *,
        event_type: type | None = None,
        since_ns: int = 0,
        path: str | None = None,
        limit: int = 100,
    ) -> list[Any]:
        """Return up to ``limit`` matching events, newest first.

        ``path`` matches a watched path exactly.
        """
        with self._lock:
            snapshot = list(self._events)

        found: list[Any] = []
        for event in reversed(snapshot):
            if len(found) >= limit:
                break
            if _matches(event, event_type, since_ns, path):
                found.append(event)
        return found

    def recent(self, n: int = 20) -> list[Any]:
        """The ``n`` newest events, oldest first."""
        with self._lock:
            snapshot = list(self._events)
        return snapshot[-n:] if n > 0 else []

    def clear(self) -> int:
        """Drop every event.  Returns how many were dropped."""
        with self._lock:
            dropped = len(self._events)
            self._events.clear()
        return dropped

    def stats(self) -> dict[str, Any]:
        """Counts for the stats endpoint."""
        with self._lock:
            snapshot = list(self._events)

        by_type = Counter(type(event).__name__ for event in snapshot)
        compiles = [e for e in snapshot if isinstance(e, CompileFinished)]
        return {
            "total": len(snapshot),
            "max_events": self._max_events,
            "by_type": dict(by_type),
            "compiles": len(compiles),
            "failed_compiles": sum(1 for e in compiles if not e.success),
        }
