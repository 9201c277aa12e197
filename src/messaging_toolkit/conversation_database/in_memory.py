"""
In-memory storage backend.

'InMemoryStore' holds the four tables of the messaging schema in plain dicts
and lists. The repository classes are thin views over one shared store, so a
test or a walkthrough can hand the same store to several clients and watch them
interact. Every read returns copies; callers can mutate what they get back
without touching the stored rows.

When a change feed is attached, message inserts and updates and profile updates
are published to it, mirroring the change feed of the hosted backend.
"""

from collections.abc import Callable

from loguru import logger

from messaging_toolkit.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from messaging_toolkit.conversation_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.conversation_database.data_models.participant import Participant, ParticipantDatabase
from messaging_toolkit.conversation_database.data_models.profile import Profile, ProfileDatabase
from messaging_toolkit.errors import ConflictError, NotFoundError
from messaging_toolkit.realtime.base import MESSAGES_TABLE, PROFILES_TABLE, ChangeEvent, ChangeType
from messaging_toolkit.realtime.in_memory import InMemoryChangeFeed
from messaging_toolkit.utils.database import generate_uid
from messaging_toolkit.utils.time import get_current_timestamp


class InMemoryStore:
    def __init__(
        self,
        feed: InMemoryChangeFeed | None = None,
        now_func: Callable[[], int] = get_current_timestamp,
    ) -> None:
        self.feed = feed
        self.now = now_func
        self.profiles: dict[str, Profile] = {}
        self.conversations: dict[str, Conversation] = {}
        self.participants: list[Participant] = []
        self.messages: dict[str, Message] = {}

    async def emit(self, table: str, change_type: ChangeType, record: dict, old_record: dict | None = None) -> None:
        if self.feed is None:
            return
        await self.feed.publish(ChangeEvent(table=table, type=change_type, record=record, old_record=old_record))


class InMemoryProfileDatabase(ProfileDatabase):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def _check_phone_unique(self, user_id: str, phone_number: str | None) -> None:
        if not phone_number:
            return
        for profile in self.store.profiles.values():
            if profile.id != user_id and profile.phone_number == phone_number:
                raise ConflictError(f"Phone number already used by profile {profile.id}")

    async def create_profile(self, profile: Profile) -> Profile:
        if profile.id in self.store.profiles:
            raise ConflictError(f"Profile {profile.id} already exists")
        self._check_phone_unique(profile.id, profile.phone_number)
        self.store.profiles[profile.id] = profile.model_copy()
        return profile.model_copy()

    async def get_profile_by_id(self, user_id: str) -> Profile | None:
        profile = self.store.profiles.get(user_id)
        return profile.model_copy() if profile else None

    async def get_profiles_by_ids(self, user_ids: list[str]) -> list[Profile]:
        wanted = set(user_ids)
        return [p.model_copy() for p in self.store.profiles.values() if p.id in wanted]

    async def search_profiles(self, query: str, exclude_user_id: str, limit: int) -> list[Profile]:
        needle = query.strip().lower()
        if not needle:
            return []
        matches = [
            p.model_copy()
            for p in self.store.profiles.values()
            if p.id != exclude_user_id
            and (needle in (p.email or "").lower() or needle in (p.display_name or "").lower())
        ]
        return matches[:limit]

    async def _update(self, user_id: str, **changes: object) -> Profile:
        current = self.store.profiles.get(user_id)
        if current is None:
            raise NotFoundError(f"Profile {user_id} not found")
        updated = current.model_copy(update=changes)
        self.store.profiles[user_id] = updated
        await self.store.emit(PROFILES_TABLE, ChangeType.UPDATE, updated.model_dump(), current.model_dump())
        return updated.model_copy()

    async def update_presence(self, user_id: str, online: bool, last_seen: int) -> None:
        await self._update(user_id, online=online, last_seen=last_seen)

    async def update_phone_number(self, user_id: str, phone_number: str) -> Profile:
        self._check_phone_unique(user_id, phone_number)
        return await self._update(user_id, phone_number=phone_number)

    async def update_push_token(self, user_id: str, push_token: str | None) -> None:
        await self._update(user_id, push_token=push_token)


class InMemoryConversationDatabase(ConversationDatabase):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def create_conversation(self) -> Conversation:
        now = self.store.now()
        conversation = Conversation(id=generate_uid(), create_timestamp=now, update_timestamp=now)
        self.store.conversations[conversation.id] = conversation
        return conversation.model_copy()

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        conversation = self.store.conversations.get(conversation_id)
        return conversation.model_copy() if conversation else None

    async def touch_conversation(self, conversation_id: str, update_timestamp: int) -> None:
        conversation = self.store.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        self.store.conversations[conversation_id] = conversation.model_copy(
            update={"update_timestamp": update_timestamp}
        )


class InMemoryParticipantDatabase(ParticipantDatabase):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def add_participants(self, participants: list[Participant]) -> list[Participant]:
        existing = {(p.conversation_id, p.user_id) for p in self.store.participants}
        for participant in participants:
            if participant.conversation_id not in self.store.conversations:
                raise NotFoundError(f"Conversation {participant.conversation_id} not found")
            if (participant.conversation_id, participant.user_id) in existing:
                raise ConflictError(f"{participant.user_id} already participates in {participant.conversation_id}")
        self.store.participants.extend(p.model_copy() for p in participants)
        return [p.model_copy() for p in participants]

    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        return [p.conversation_id for p in self.store.participants if p.user_id == user_id]

    async def filter_conversation_ids_by_user_id(self, user_id: str, conversation_ids: list[str]) -> list[str]:
        wanted = set(conversation_ids)
        return [p.conversation_id for p in self.store.participants if p.user_id == user_id and p.conversation_id in wanted]

    async def get_counterparts(self, user_id: str, conversation_ids: list[str]) -> list[Participant]:
        wanted = set(conversation_ids)
        return [
            p.model_copy() for p in self.store.participants if p.conversation_id in wanted and p.user_id != user_id
        ]


class InMemoryMessageDatabase(MessageDatabase):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def create_message(self, sender_id: str, conversation_id: str, content: str) -> Message:
        if conversation_id not in self.store.conversations:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        members = {p.user_id for p in self.store.participants if p.conversation_id == conversation_id}
        if sender_id not in members:
            raise ConflictError(f"{sender_id} is not a participant of {conversation_id}")
        message = Message(
            id=generate_uid(),
            sender_id=sender_id,
            conversation_id=conversation_id,
            content=content,
            create_timestamp=self.store.now(),
        )
        self.store.messages[message.id] = message
        logger.debug(f"Stored message {message.id} in {conversation_id}")
        await self.store.emit(MESSAGES_TABLE, ChangeType.INSERT, message.model_dump())
        return message.model_copy()

    def _history(self, conversation_id: str) -> list[Message]:
        return sorted(
            (m for m in self.store.messages.values() if m.conversation_id == conversation_id),
            key=lambda m: m.create_timestamp,
        )

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        return [m.model_copy() for m in self._history(conversation_id)]

    async def get_message_by_id(self, message_id: str) -> Message | None:
        message = self.store.messages.get(message_id)
        return message.model_copy() if message else None

    async def count_unread(self, user_id: str, conversation_ids: list[str]) -> dict[str, int]:
        wanted = set(conversation_ids)
        counts: dict[str, int] = {}
        for message in self.store.messages.values():
            if message.conversation_id in wanted and message.sender_id != user_id and not message.read:
                counts[message.conversation_id] = counts.get(message.conversation_id, 0) + 1
        return counts

    async def get_latest_messages(self, conversation_ids: list[str]) -> dict[str, Message]:
        latest: dict[str, Message] = {}
        for conversation_id in conversation_ids:
            history = self._history(conversation_id)
            if history:
                latest[conversation_id] = history[-1].model_copy()
        return latest

    async def _set_read(self, message: Message) -> Message:
        updated = message.model_copy(update={"read": True})
        self.store.messages[message.id] = updated
        await self.store.emit(MESSAGES_TABLE, ChangeType.UPDATE, updated.model_dump(), message.model_dump())
        return updated.model_copy()

    async def mark_conversation_read(self, conversation_id: str, reader_id: str) -> list[Message]:
        unread = [m for m in self._history(conversation_id) if m.sender_id != reader_id and not m.read]
        return [await self._set_read(m) for m in unread]

    async def mark_message_read(self, message_id: str) -> Message | None:
        message = self.store.messages.get(message_id)
        if message is None:
            return None
        if message.read:
            return message.model_copy()
        return await self._set_read(message)


def build_in_memory_databases(
    store: InMemoryStore,
) -> tuple[InMemoryProfileDatabase, InMemoryConversationDatabase, InMemoryParticipantDatabase, InMemoryMessageDatabase]:
    return (
        InMemoryProfileDatabase(store),
        InMemoryConversationDatabase(store),
        InMemoryParticipantDatabase(store),
        InMemoryMessageDatabase(store),
    )
