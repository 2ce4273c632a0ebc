"""Event collector — the single recording surface for whisker events.

Implements the server's ``LifecycleCollector`` protocol (``record()``) so
it can be handed to the server as its lifecycle collector, and provides
explicit methods for registry, compile, and broadcast events.

Thread Safety:
    The collector delegates to ``EventLog`` which is internally locked.
    Safe for concurrent use from worker threads.

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from whisker.observability.events import (
    BroadcastDelivered,
    CompileFinished,
    SubscriptionChanged,
    WatchChanged,
    now_ns,
)
from whisker.observability.log import EventLog

if TYPE_CHECKING:
    from whisker._types import CompileTrigger


class EventCollector:
    """Unified event collector.

    Args:
        log: The EventLog to store events in.

    """

    __slots__ = ("_log",)

    def __init__(self, log: EventLog | None = None) -> None:
        self._log = log if log is not None else EventLog()

    @property
    def log(self) -> EventLog:
        """The underlying event log."""
        return self._log

    # ----- Server LifecycleCollector protocol -----

    def record(self, event: Any) -> None:
        """Record a server lifecycle event as-is (they are frozen dataclasses)."""
        self._log.append(event)

    # ----- Registry events -----

    def record_subscription(
        self, path: str, client_id: str, *, action: str, subscribers: int
    ) -> None:
        self._log.append(
            SubscriptionChanged(
                path=path,
                client_id=client_id,
                action=action,  # type: ignore[arg-type]
                subscribers=subscribers,
                timestamp_ns=now_ns(),
            )
        )

    def record_watch(self, path: str, *, action: str, error: str = "") -> None:
        self._log.append(
            WatchChanged(
                path=path,
                action=action,  # type: ignore[arg-type]
                error=error,
                timestamp_ns=now_ns(),
            )
        )

    # ----- Compile and delivery events -----

    def record_compile(
        self,
        path: str,
        *,
        compiler: str,
        output_kind: str,
        success: bool,
        trigger: CompileTrigger,
        duration_ms: float = 0.0,
    ) -> None:
        """Record a finished compile-and-deliver cycle."""
        self._log.append(
            CompileFinished(
                path=path,
                compiler=compiler,
                output_kind=output_kind,
                success=success,
                trigger=trigger,
                duration_ms=duration_ms,
                timestamp_ns=now_ns(),
            )
        )

    def record_broadcast(self, path: str, *, delivered: int, failed: int = 0) -> None:
        """Record a fan-out of one result."""
        self._log.append(
            BroadcastDelivered(
                path=path,
                delivered=delivered,
                failed=failed,
                timestamp_ns=now_ns(),
            )
        )
