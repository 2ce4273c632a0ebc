"""Observability — structured events for subscriptions, compiles and broadcasts.

All events are frozen dataclasses with nanosecond timestamps, safe for
concurrent production from the event loop and compile worker threads.

Quick Start:
    >>> from whisker.observability import EventCollector, EventLog
    >>> log = EventLog()
    >>> collector = EventCollector(log)
    >>> collector.record_broadcast("Add.c", delivered=2)
    >>> log.stats()["total"]
    1

"""

from whisker.observability.collector import EventCollector
from whisker.observability.events import (
    BroadcastDelivered,
    CompileFinished,
    SubscriptionChanged,
    WatchChanged,
    WhiskerEvent,
    now_ns,
)
from whisker.observability.log import EventLog

__all__ = [
    "BroadcastDelivered",
    "CompileFinished",
    "EventCollector",
    "EventLog",
    "SubscriptionChanged",
    "WatchChanged",
    "WhiskerEvent",
    "now_ns",
]
