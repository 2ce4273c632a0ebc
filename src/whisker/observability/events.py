"""Event model for whisker observability.

Defines event types for subscriptions, watches, compiles and broadcasts.
Server lifecycle events recorded through ``EventCollector.record()`` are
stored as-is next to these.

All events are frozen dataclasses with:
- ``timestamp_ns``: Monotonic nanosecond timestamp
- Descriptive fields for the specific event type

Thread Safety:
    All events are frozen (immutable) and safe to share across threads.

"""

import time
from dataclasses import dataclass
from typing import Literal

from whisker._types import CompileTrigger


# ---------------------------------------------------------------------------
# Registry events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SubscriptionChanged:
    """A viewer joined or left a path.

    Attributes:
        path: Watched path.
        client_id: The viewer's connection id.
        action: Whether the viewer subscribed or unsubscribed.
        subscribers: Subscriber count for the path after the change.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    path: str
    client_id: str
    action: Literal["subscribe", "unsubscribe"]
    subscribers: int
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class WatchChanged:
    """A filesystem watch was armed, disarmed, or failed to arm.

    Attributes:
        path: Watched path.
        action: What happened to the watch.
        error: Arming failure reason (empty otherwise).
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    path: str
    action: Literal["armed", "disarmed", "failed"]
    error: str
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Compile and delivery events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CompileFinished:
    """A compile-and-deliver cycle produced a result.

    Attributes:
        path: Compiled path.
        compiler: Tool that ran (empty if none did).
        output_kind: Requested artifact kind.
        success: Whether the compile succeeded.
        trigger: What started the cycle.
        duration_ms: Time spent reading and compiling.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    path: str
    compiler: str
    output_kind: str
    success: bool
    trigger: CompileTrigger
    duration_ms: float
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class BroadcastDelivered:
    """A result was fanned out to a path's subscribers.

    Attributes:
        path: Target path.
        delivered: Subscribers that accepted the result.
        failed: Subscribers whose delivery failed (and were dropped).
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    path: str
    delivered: int
    failed: int
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Union type
# ---------------------------------------------------------------------------

type WhiskerEvent = (
    SubscriptionChanged
    | WatchChanged
    | CompileFinished
    | BroadcastDelivered
)


def now_ns() -> int:
    """Return the current monotonic clock value in nanoseconds."""
    return time.monotonic_ns()
