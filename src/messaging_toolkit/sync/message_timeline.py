"""
Message timeline service: the active conversation and its history.

'MessageTimeline' owns the 'Timeline' reducer and performs the I/O around it:
resolving or creating the conversation with a counterpart, loading history,
marking incoming messages read, and persisting outgoing messages behind an
optimistic entry.

Only one conversation is active at a time. Every 'open_conversation' call bumps
a generation counter; results of loads issued for an earlier generation are
dropped instead of being applied to the newly selected conversation.
"""

from collections.abc import Awaitable, Callable

from loguru import logger

from messaging_toolkit.conversation_database.data_models.conversation import ConversationDatabase
from messaging_toolkit.conversation_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.conversation_database.data_models.participant import Participant, ParticipantDatabase
from messaging_toolkit.conversation_database.data_models.profile import Profile, ProfileDatabase
from messaging_toolkit.errors import (
    ConversationUnavailableError,
    EmptyMessageError,
    NoActiveConversationError,
    SelfConversationError,
    SendFailedError,
    StoreError,
)
from messaging_toolkit.sync.conversation_index import ConversationView, presence_changes
from messaging_toolkit.sync.timeline import Timeline
from messaging_toolkit.utils.time import get_current_timestamp

MessageSentHook = Callable[[Message], Awaitable[None]]


class MessageTimeline:
    """
    Active-conversation state for one signed-in user.

    Attributes:
        timeline: Entries shown for the active conversation, oldest first.
        active_conversation_id: Conversation live events are routed to, or None.
        counterpart: Profile of the other participant of the active conversation.
        on_message_sent: Awaited after every confirmed send (index refresh, push).
    """

    def __init__(
        self,
        user_id: str,
        profile_db: ProfileDatabase,
        conversation_db: ConversationDatabase,
        participant_db: ParticipantDatabase,
        message_db: MessageDatabase,
        on_message_sent: MessageSentHook | None = None,
        now_func: Callable[[], int] = get_current_timestamp,
    ) -> None:
        self.user_id = user_id
        self.profile_db = profile_db
        self.conversation_db = conversation_db
        self.participant_db = participant_db
        self.message_db = message_db
        self.on_message_sent = on_message_sent
        self.now = now_func
        self.timeline = Timeline()
        self.active_conversation_id: str | None = None
        self.counterpart: Profile | None = None
        self._generation = 0

    @property
    def messages(self) -> list[Message]:
        return self.timeline.messages

    def is_active(self, conversation_id: str) -> bool:
        return self.active_conversation_id is not None and self.active_conversation_id == conversation_id

    async def find_conversation(self, other_user_id: str) -> str | None:
        """Return a conversation both users participate in, if any."""
        mine = await self.participant_db.get_conversation_ids_by_user_id(self.user_id)
        if not mine:
            return None
        shared = await self.participant_db.filter_conversation_ids_by_user_id(other_user_id, mine)
        return shared[0] if shared else None

    async def create_conversation(self, other_user_id: str) -> str:
        conversation = await self.conversation_db.create_conversation()
        await self.participant_db.add_participants(
            [
                Participant(conversation_id=conversation.id, user_id=self.user_id),
                Participant(conversation_id=conversation.id, user_id=other_user_id),
            ]
        )
        logger.info(f"Created conversation {conversation.id} between {self.user_id} and {other_user_id}")
        return conversation.id

    async def _resolve(self, target: ConversationView | Profile | str) -> tuple[str, Profile | None]:
        match target:
            case ConversationView():
                return target.id, target.other_user
            case Profile():
                other_user_id, counterpart = target.id, target
            case str():
                other_user_id, counterpart = target, None
            case _:
                raise TypeError(f"Cannot open a conversation with {target!r}")

        if other_user_id == self.user_id:
            raise SelfConversationError()
        # Check-then-create: two users opening each other at the same moment may
        # both miss and create two conversations for the same pair.
        conversation_id = await self.find_conversation(other_user_id)
        if conversation_id is None:
            conversation_id = await self.create_conversation(other_user_id)
        if counterpart is None:
            try:
                counterpart = await self.profile_db.get_profile_by_id(other_user_id)
            except StoreError as exc:
                logger.warning(f"Loading profile of {other_user_id} failed: {exc}")
        return conversation_id, counterpart

    async def open_conversation(self, target: ConversationView | Profile | str) -> str | None:
        """
        Make the conversation with 'target' active and load its history.

        'target' is a row of the conversation index, a profile picked from a
        user search, or a bare user id. A conversation is created when the two
        users have none yet. Incoming unread messages are marked read as a side
        effect. Returns the conversation id, or None when a later
        'open_conversation' call superseded this one.
        """
        self._generation += 1
        generation = self._generation
        self.active_conversation_id = None
        self.counterpart = None
        self.timeline.clear()

        try:
            conversation_id, counterpart = await self._resolve(target)
        except StoreError as exc:
            logger.error(f"Opening conversation with {target!r} failed: {exc}")
            raise ConversationUnavailableError() from exc
        if generation != self._generation:
            return None

        self.active_conversation_id = conversation_id
        self.counterpart = counterpart
        self.timeline.load(conversation_id, [])

        try:
            history = await self.message_db.get_messages_by_conversation_id(conversation_id)
        except StoreError as exc:
            logger.error(f"Loading messages of {conversation_id} failed: {exc}")
            history = []
        if generation != self._generation:
            logger.debug(f"Discarding stale history load for {conversation_id}")
            return None
        self.timeline.load(conversation_id, history)

        try:
            flipped = await self.message_db.mark_conversation_read(conversation_id, self.user_id)
        except StoreError as exc:
            logger.warning(f"Marking {conversation_id} read failed: {exc}")
            flipped = []
        if generation == self._generation:
            self.timeline.mark_read({m.id for m in flipped})

        logger.info(f"Opened conversation {conversation_id} ({len(history)} messages)")
        return conversation_id

    def close(self) -> None:
        self._generation += 1
        self.active_conversation_id = None
        self.counterpart = None
        self.timeline.clear()

    async def send_message(self, text: str) -> Message:
        """
        Send 'text' into the active conversation.

        The message shows up immediately as a pending entry and is swapped in
        place for the stored record once the store confirms it. If the write
        fails the pending entry is removed and 'SendFailedError' is raised.
        """
        if not text.strip():
            raise EmptyMessageError()
        conversation_id = self.active_conversation_id
        if conversation_id is None:
            raise NoActiveConversationError()

        pending = self.timeline.add_pending(self.user_id, text, self.now())
        try:
            stored = await self.message_db.create_message(self.user_id, conversation_id, text)
        except StoreError as exc:
            self.timeline.discard(pending.temp_id)
            logger.error(f"Sending message to {conversation_id} failed: {exc}")
            raise SendFailedError() from exc

        self.timeline.confirm(pending.temp_id, stored)
        try:
            await self.conversation_db.touch_conversation(conversation_id, stored.create_timestamp)
        except StoreError as exc:
            logger.warning(f"Updating timestamp of {conversation_id} failed: {exc}")

        if self.on_message_sent is not None:
            await self.on_message_sent(stored)
        return stored

    def patch_counterpart_presence(self, user_id: str, online: bool | None, last_seen: int | None) -> bool:
        if self.counterpart is None or self.counterpart.id != user_id:
            return False
        self.counterpart = self.counterpart.model_copy(update=presence_changes(online, last_seen))
        return True
