"""
Timeline reducer for one conversation.

'Timeline' is a pure, synchronous state container: it performs no I/O and can
be driven by any interleaving of local sends and live events. Each slot holds
either a 'PendingEntry' (an optimistic record the store has not confirmed yet,
keyed by a temporary id) or a 'ConfirmedEntry' (a stored record, keyed by its
real id).

A pending entry and its confirmed counterpart never coexist. The confirmation
can reach the client by two routes, in either order: the result of the write
call ('confirm') or the echo of the insert on the change feed ('upsert').
Whichever comes first swaps the pending slot in place; the second finds the id
already present and becomes a no-op.

A read flag never reverts: once a record was seen as read, an older copy of it
(a redelivered insert, a write result racing the receipt) cannot unset it.
Updates for ids the timeline has not confirmed yet are held back and applied
when the matching entry is confirmed.

Order is non-decreasing by 'create_timestamp'. A pending entry is stamped
with the later of "now" and the newest timestamp already shown, so it always
lands at the end, and its confirmation reuses the same slot instead of
re-sorting.
"""

import bisect
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from messaging_toolkit.conversation_database.data_models.message import Message
from messaging_toolkit.utils.database import generate_temp_id


class PendingEntry(BaseModel):
    kind: Literal["pending"] = "pending"
    temp_id: str
    message: Message

    @property
    def key(self) -> str:
        return self.temp_id


class ConfirmedEntry(BaseModel):
    kind: Literal["confirmed"] = "confirmed"
    message: Message

    @property
    def key(self) -> str:
        return self.message.id


TimelineEntry = Annotated[PendingEntry | ConfirmedEntry, Field(discriminator="kind")]


class Timeline:
    def __init__(self, conversation_id: str | None = None) -> None:
        self.conversation_id = conversation_id
        self._entries: list[TimelineEntry] = []
        self._early_updates: dict[str, Message] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[TimelineEntry]:
        return list(self._entries)

    @property
    def messages(self) -> list[Message]:
        return [entry.message for entry in self._entries]

    @property
    def pending(self) -> list[PendingEntry]:
        return [entry for entry in self._entries if isinstance(entry, PendingEntry)]

    def _index_of(self, key: str) -> int | None:
        for i, entry in enumerate(self._entries):
            if entry.key == key:
                return i
        return None

    def _index_of_message(self, message_id: str) -> int | None:
        for i, entry in enumerate(self._entries):
            if isinstance(entry, ConfirmedEntry) and entry.message.id == message_id:
                return i
        return None

    def _matching_pending(self, message: Message) -> int | None:
        # Oldest first: sends are confirmed in the order they were issued.
        for i, entry in enumerate(self._entries):
            if (
                isinstance(entry, PendingEntry)
                and entry.message.sender_id == message.sender_id
                and entry.message.conversation_id == message.conversation_id
                and entry.message.content == message.content
            ):
                return i
        return None

    def _settle(self, message: Message, previous: Message | None = None) -> ConfirmedEntry:
        early = self._early_updates.pop(message.id, None)
        if early is not None:
            message = early.model_copy(update={"read": early.read or message.read})
        if previous is not None and previous.read and not message.read:
            message = message.model_copy(update={"read": True})
        return ConfirmedEntry(message=message)

    def get(self, message_id: str) -> Message | None:
        index = self._index_of_message(message_id)
        return self._entries[index].message if index is not None else None

    def load(self, conversation_id: str, messages: list[Message]) -> None:
        """Replace the whole timeline with stored history."""
        self.conversation_id = conversation_id
        self._early_updates = {}
        ordered = sorted(messages, key=lambda m: m.create_timestamp)
        self._entries = [ConfirmedEntry(message=m) for m in ordered]

    def clear(self) -> None:
        self.conversation_id = None
        self._entries = []
        self._early_updates = {}

    def add_pending(self, sender_id: str, content: str, now: int) -> PendingEntry:
        if self.conversation_id is None:
            raise RuntimeError("Timeline has no conversation")
        newest = self._entries[-1].message.create_timestamp if self._entries else now
        temp_id = generate_temp_id()
        entry = PendingEntry(
            temp_id=temp_id,
            message=Message(
                id=temp_id,
                sender_id=sender_id,
                conversation_id=self.conversation_id,
                content=content,
                create_timestamp=max(now, newest),
            ),
        )
        self._entries.append(entry)
        return entry

    def confirm(self, temp_id: str, message: Message) -> bool:
        """
        Swap the pending slot 'temp_id' for the stored 'message'.

        Returns False when there was nothing to swap: either the live echo
        already confirmed the slot, or the pending entry is gone (discarded, or
        the timeline was reloaded for another conversation).
        """
        index = self._index_of(temp_id)
        if self._index_of_message(message.id) is not None:
            if index is not None:
                del self._entries[index]
            return False
        if index is None:
            return False
        self._entries[index] = self._settle(message)
        return True

    def discard(self, temp_id: str) -> bool:
        index = self._index_of(temp_id)
        if index is None:
            return False
        del self._entries[index]
        return True

    def upsert(self, message: Message) -> bool:
        """
        Apply a stored record arriving from the change feed.

        Returns True if the timeline grew. A record whose id is already present
        is a redelivery and leaves the timeline untouched; a record matching
        one of our own pending sends confirms that slot in place; anything
        else is inserted by timestamp, which for new messages is an append.
        """
        if message.conversation_id != self.conversation_id:
            return False
        if self._index_of_message(message.id) is not None:
            return False
        pending_index = self._matching_pending(message)
        if pending_index is not None:
            self._entries[pending_index] = self._settle(message)
            return True
        timestamps = [entry.message.create_timestamp for entry in self._entries]
        position = bisect.bisect_right(timestamps, message.create_timestamp)
        self._entries.insert(position, self._settle(message))
        return True

    def replace(self, message: Message) -> bool:
        """
        Apply an update to a confirmed record by id.

        An update for an id not shown yet (its insert is still on the way, or
        our own send is still pending) is kept and applied on confirmation.
        """
        if message.conversation_id != self.conversation_id:
            return False
        index = self._index_of_message(message.id)
        if index is None:
            self._early_updates[message.id] = message
            return False
        self._entries[index] = self._settle(message, previous=self._entries[index].message)
        return True

    def mark_read(self, message_ids: set[str]) -> None:
        for i, entry in enumerate(self._entries):
            if isinstance(entry, ConfirmedEntry) and entry.message.id in message_ids and not entry.message.read:
                self._entries[i] = ConfirmedEntry(message=entry.message.model_copy(update={"read": True}))

    def contains(self, message_id: str) -> bool:
        return self._index_of_message(message_id) is not None
