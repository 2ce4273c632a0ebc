"""Live layer — subscription registry, change dispatcher, and viewer sessions."""

from whisker.reactive.dispatcher import NotificationDispatcher
from whisker.reactive.registry import Subscriber, SubscriptionRegistry
from whisker.reactive.session import ConnectionSession, SessionState

__all__ = [
    "ConnectionSession",
    "NotificationDispatcher",
    "SessionState",
    "Subscriber",
    "SubscriptionRegistry",
]
