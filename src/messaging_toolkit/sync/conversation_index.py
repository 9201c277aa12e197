"""
Conversation index: the recency-ordered list of a user's conversations.

A full load joins four independent fetches by conversation id (membership,
counterpart profiles, unread counts, latest messages). The fetches are not
transactionally consistent with each other; small windows of staleness are
accepted and healed by the next load or patch.

Live events are applied as incremental patches ('refresh_conversation',
'patch_presence'). A patch that refers to a conversation the index has never
seen is treated as a gap and falls back to a full reload.
"""

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.conversation_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.conversation_database.data_models.participant import ParticipantDatabase
from messaging_toolkit.conversation_database.data_models.profile import Profile, ProfileDatabase
from messaging_toolkit.errors import StoreError


class ConversationView(BaseModel):
    """One row of the conversation list, from the point of view of the local user."""

    id: str
    other_user: Profile
    unread_count: int = 0
    last_message: Message | None = None

    @property
    def last_activity(self) -> int:
        # Conversations without messages sort as if they were from the epoch.
        return self.last_message.create_timestamp if self.last_message else 0


def presence_changes(online: bool | None, last_seen: int | None) -> dict[str, object]:
    """Profile fields to update for a presence event; absent values are left out."""
    changes: dict[str, object] = {}
    if online is not None:
        changes["online"] = online
    if last_seen is not None:
        changes["last_seen"] = last_seen
    return changes


def sort_conversations(conversations: list[ConversationView]) -> list[ConversationView]:
    """Newest activity first; ties broken by id so the order is total."""
    by_id = sorted(conversations, key=lambda c: c.id)
    return sorted(by_id, key=lambda c: c.last_activity, reverse=True)


class ConversationIndex:
    def __init__(
        self,
        user_id: str,
        profile_db: ProfileDatabase,
        participant_db: ParticipantDatabase,
        message_db: MessageDatabase,
    ) -> None:
        self.user_id = user_id
        self.profile_db = profile_db
        self.participant_db = participant_db
        self.message_db = message_db
        self.conversations: list[ConversationView] = []
        self._load_generation = 0

    def get(self, conversation_id: str) -> ConversationView | None:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    async def _fetch(self) -> list[ConversationView]:
        conversation_ids = await self.participant_db.get_conversation_ids_by_user_id(self.user_id)
        if not conversation_ids:
            return []

        counterparts = await self.participant_db.get_counterparts(self.user_id, conversation_ids)
        profiles = {
            p.id: p for p in await self.profile_db.get_profiles_by_ids(sorted({c.user_id for c in counterparts}))
        }
        other_user_by_conversation = {
            c.conversation_id: profiles[c.user_id] for c in counterparts if c.user_id in profiles
        }
        unread_counts = await self.message_db.count_unread(self.user_id, conversation_ids)
        latest_messages = await self.message_db.get_latest_messages(conversation_ids)

        views: list[ConversationView] = []
        for conversation_id in conversation_ids:
            other_user = other_user_by_conversation.get(conversation_id)
            if other_user is None:
                logger.warning(f"Skipping conversation {conversation_id}: counterpart profile not found")
                continue
            views.append(
                ConversationView(
                    id=conversation_id,
                    other_user=other_user,
                    unread_count=unread_counts.get(conversation_id, 0),
                    last_message=latest_messages.get(conversation_id),
                )
            )
        return sort_conversations(views)

    async def load_conversations(self) -> list[ConversationView]:
        """
        Rebuild the list from the store and replace the previous one wholesale.

        Safe to call repeatedly and concurrently: when loads overlap, only the
        most recently issued one is applied. On a fetch failure the previous
        list is kept.
        """
        self._load_generation += 1
        generation = self._load_generation
        try:
            conversations = await self._fetch()
        except StoreError as exc:
            logger.error(f"Loading conversations for {self.user_id} failed: {exc}")
            return self.conversations

        if generation != self._load_generation:
            logger.debug(f"Discarding superseded conversation load #{generation}")
            return self.conversations
        self.conversations = conversations
        logger.debug(f"Loaded {len(conversations)} conversations for {self.user_id}")
        return self.conversations

    async def _participates_in(self, conversation_id: str) -> bool:
        try:
            shared = await self.participant_db.filter_conversation_ids_by_user_id(self.user_id, [conversation_id])
        except StoreError as exc:
            logger.warning(f"Membership check for {conversation_id} failed: {exc}")
            return False
        return bool(shared)

    async def refresh_conversation(self, conversation_id: str, message: Message | None = None) -> None:
        """
        Patch one conversation after a message insert or update.

        'message', when given, is a newly inserted record; it becomes the
        preview if it is at least as new as the current one. A record that is
        already the preview is a redelivery and is ignored ('patch_message'
        applies updates to it). The unread count is recounted from the store for
        this conversation only, which keeps at-least-once event delivery from
        double counting.
        """
        view = self.get(conversation_id)
        if view is None:
            if await self._participates_in(conversation_id):
                logger.debug(f"Conversation {conversation_id} not in index, reloading")
                await self.load_conversations()
            return

        try:
            unread = await self.message_db.count_unread(self.user_id, [conversation_id])
        except StoreError as exc:
            logger.warning(f"Unread recount for {conversation_id} failed: {exc}")
            unread = None

        # The list may have been replaced while we were waiting on the store.
        view = self.get(conversation_id)
        if view is None:
            return
        if unread is not None:
            view.unread_count = unread.get(conversation_id, 0)
        if message is not None:
            last = view.last_message
            if last is None or (last.id != message.id and message.create_timestamp >= last.create_timestamp):
                view.last_message = message
        self.conversations = sort_conversations(self.conversations)

    def patch_message(self, message: Message) -> bool:
        """Apply an updated record to the preview it is shown as, if any."""
        view = self.get(message.conversation_id)
        if view is None or view.last_message is None or view.last_message.id != message.id:
            return False
        read = view.last_message.read or message.read
        view.last_message = message.model_copy(update={"read": read})
        return True

    def patch_presence(self, user_id: str, online: bool | None, last_seen: int | None) -> bool:
        changes = presence_changes(online, last_seen)
        patched = False
        for view in self.conversations:
            if view.other_user.id == user_id:
                view.other_user = view.other_user.model_copy(update=changes)
                patched = True
        return patched

    def mark_read_locally(self, conversation_id: str) -> None:
        view = self.get(conversation_id)
        if view is not None:
            view.unread_count = 0
            if view.last_message is not None and view.last_message.sender_id != self.user_id:
                view.last_message = view.last_message.model_copy(update={"read": True})
