from messaging_toolkit.realtime.base import ChangeEvent, ChangeFeed, ChangeType, Subscription
from messaging_toolkit.realtime.in_memory import InMemoryChangeFeed

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "ChangeType",
    "InMemoryChangeFeed",
    "Subscription",
]
