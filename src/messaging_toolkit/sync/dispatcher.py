"""
Live update dispatcher.

'LiveUpdateDispatcher' owns the two change-feed subscriptions of a session,
message inserts/updates and profile updates, and routes every event to the
active timeline, the conversation index, or both. It is an async context
manager: the subscriptions exist exactly for the duration of the 'async with'
block, and a dispatcher refuses to be entered twice, so listeners can neither
leak across view transitions nor pile up and apply events twice.

Events are filtered client-side against the currently active conversation, so
switching conversations needs no re-subscription.
"""

from types import TracebackType

from loguru import logger
from pydantic import ValidationError

from messaging_toolkit.conversation_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.errors import StoreError
from messaging_toolkit.realtime.base import (
    MESSAGES_TABLE,
    PROFILES_TABLE,
    ChangeEvent,
    ChangeFeed,
    ChangeType,
    Subscription,
)
from messaging_toolkit.sync.conversation_index import ConversationIndex
from messaging_toolkit.sync.message_timeline import MessageTimeline


class LiveUpdateDispatcher:
    def __init__(
        self,
        feed: ChangeFeed,
        user_id: str,
        index: ConversationIndex,
        timeline: MessageTimeline,
        message_db: MessageDatabase,
    ) -> None:
        self.feed = feed
        self.user_id = user_id
        self.index = index
        self.timeline = timeline
        self.message_db = message_db
        self.active = False
        self._subscriptions: list[Subscription] = []

    async def __aenter__(self) -> "LiveUpdateDispatcher":
        if self.active:
            raise RuntimeError("Live update dispatcher is already running")
        self.active = True
        try:
            self._subscriptions.append(
                await self.feed.subscribe(MESSAGES_TABLE, [ChangeType.INSERT, ChangeType.UPDATE], self._on_message)
            )
            self._subscriptions.append(await self.feed.subscribe(PROFILES_TABLE, [ChangeType.UPDATE], self._on_profile))
        except BaseException:
            await self._release()
            raise
        logger.info(f"Live updates started for {self.user_id}")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self._release()
        logger.info(f"Live updates stopped for {self.user_id}")

    async def _release(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.unsubscribe()
        self.active = False

    async def _on_message(self, event: ChangeEvent) -> None:
        try:
            message = Message.model_validate(event.record)
        except ValidationError as exc:
            logger.warning(f"Ignoring malformed message event: {exc}")
            return
        match event.type:
            case ChangeType.INSERT:
                await self.handle_message_insert(message)
            case ChangeType.UPDATE:
                await self.handle_message_update(message)

    async def handle_message_insert(self, message: Message) -> None:
        logger.debug(f"Message inserted: {message.id} in {message.conversation_id}")
        preview = message
        if self.timeline.is_active(message.conversation_id):
            self.timeline.timeline.upsert(message)
            preview = self.timeline.timeline.get(message.id) or message
            if preview.sender_id != self.user_id and not preview.read:
                preview = await self._mark_read(preview)
        await self.index.refresh_conversation(message.conversation_id, preview)

    async def _mark_read(self, message: Message) -> Message:
        try:
            flipped = await self.message_db.mark_message_read(message.id)
        except StoreError as exc:
            logger.warning(f"Marking {message.id} read failed: {exc}")
            return message
        if flipped is None:
            return message
        if self.timeline.is_active(flipped.conversation_id):
            self.timeline.timeline.replace(flipped)
        return flipped

    async def handle_message_update(self, message: Message) -> None:
        logger.debug(f"Message updated: {message.id} (read={message.read})")
        if self.timeline.is_active(message.conversation_id):
            self.timeline.timeline.replace(message)
        if self.index.get(message.conversation_id) is not None:
            self.index.patch_message(message)
            await self.index.refresh_conversation(message.conversation_id)

    async def _on_profile(self, event: ChangeEvent) -> None:
        record = event.record
        if "online" not in record and "last_seen" not in record:
            return
        user_id = record.get("id")
        if not user_id:
            logger.warning("Ignoring profile event without id")
            return
        last_seen = record.get("last_seen")
        try:
            last_seen = int(last_seen) if last_seen is not None else None
        except (TypeError, ValueError):
            logger.warning(f"Ignoring profile event for {user_id}: bad last_seen {last_seen!r}")
            return
        online = record.get("online")
        self.handle_presence(str(user_id), bool(online) if online is not None else None, last_seen)

    def handle_presence(self, user_id: str, online: bool | None, last_seen: int | None) -> None:
        """Patch the presence of 'user_id'; None leaves the corresponding field as it was."""
        patched_index = self.index.patch_presence(user_id, online, last_seen)
        patched_chat = self.timeline.patch_counterpart_presence(user_id, online, last_seen)
        if patched_index or patched_chat:
            logger.debug(f"Presence of {user_id}: online={online}")
