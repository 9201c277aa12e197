"""
Change feed abstractions.

A change feed pushes row-level change events from the backing store to the
client. Delivery is asynchronous and at-least-once, with no ordering guarantee
relative to the client's own writes: consumers must key all reconciliation on
record ids.

A subscription is an explicitly owned handle. Whoever subscribes is
responsible for calling 'unsubscribe' (typically from an 'async with' block),
so listeners never outlive the view that registered them.

Concrete implementations: 'InMemoryChangeFeed'.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel


MESSAGES_TABLE = "messages"
PROFILES_TABLE = "profiles"


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class ChangeEvent(BaseModel):
    """
    A single change to one row of 'table'.

    'record' holds the row after the change, in the field layout of the
    corresponding data model. 'old_record' is only populated by feeds that
    replicate the previous row state.
    """

    table: str
    type: ChangeType
    record: dict[str, Any]
    old_record: dict[str, Any] | None = None


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


class Subscription(ABC):
    """Handle to a live subscription. 'unsubscribe' must be safe to call more than once."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        pass


class ChangeFeed(ABC):
    """Abstract source of change events."""

    @abstractmethod
    async def subscribe(self, table: str, events: Iterable[ChangeType], callback: ChangeCallback) -> Subscription:
        """Invoke 'callback' for every event of a type in 'events' on 'table' until unsubscribed."""
        pass
