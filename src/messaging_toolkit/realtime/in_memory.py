"""
In-process change feed.

'InMemoryChangeFeed' delivers events synchronously with respect to the
publisher: 'publish' awaits every matching callback, in subscription order,
before returning. Stores attached to the feed therefore announce a write before
the write call itself returns to its caller, which is the least convenient
ordering for optimistic reconciliation and the one tests most want to cover.
"""

from collections.abc import Iterable

from loguru import logger

from messaging_toolkit.realtime.base import ChangeCallback, ChangeEvent, ChangeFeed, ChangeType, Subscription


class InMemorySubscription(Subscription):
    def __init__(self, feed: "InMemoryChangeFeed", table: str, events: frozenset[ChangeType], callback: ChangeCallback):
        self._feed = feed
        self.table = table
        self.events = events
        self.callback = callback
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self)


class InMemoryChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._subscriptions: list[InMemorySubscription] = []

    async def subscribe(self, table: str, events: Iterable[ChangeType], callback: ChangeCallback) -> Subscription:
        subscription = InMemorySubscription(self, table, frozenset(events), callback)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} {sorted(subscription.events)}")
        return subscription

    async def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.active or subscription.table != event.table:
                continue
            if event.type in subscription.events:
                await subscription.callback(event)

    def subscriber_count(self, table: str | None = None) -> int:
        return sum(1 for s in self._subscriptions if table is None or s.table == table)

    def _remove(self, subscription: InMemorySubscription) -> None:
        self._subscriptions.remove(subscription)
        logger.debug(f"Unsubscribed from {subscription.table}")
