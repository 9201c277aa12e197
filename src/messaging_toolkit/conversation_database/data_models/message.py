"""
Message data model and storage interface.

Messages are append-only: once stored, the only mutation is the 'read' flag
flipping from False to True when the recipient views the conversation. The
store assigns 'id' and 'create_timestamp'; 'create_message' returns the stored
record so the client can reconcile its optimistic copy.

Concrete implementations: 'InMemoryMessageDatabase', 'PostgRESTMessageDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Message(BaseModel):
    """A text message sent by 'sender_id' into 'conversation_id'."""

    id: str
    sender_id: str
    conversation_id: str
    content: str
    create_timestamp: int
    read: bool = False


class MessageDatabase(ABC):
    """Abstract repository for 'Message' records."""

    @abstractmethod
    async def create_message(self, sender_id: str, conversation_id: str, content: str) -> Message:
        pass

    @abstractmethod
    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        """Return the conversation history, oldest first."""
        pass

    @abstractmethod
    async def get_message_by_id(self, message_id: str) -> Message | None:
        pass

    @abstractmethod
    async def count_unread(self, user_id: str, conversation_ids: list[str]) -> dict[str, int]:
        """
        Count, per conversation, the messages not sent by 'user_id' whose 'read' flag is False.

        Conversations without unread messages may be missing from the result.
        """
        pass

    @abstractmethod
    async def get_latest_messages(self, conversation_ids: list[str]) -> dict[str, Message]:
        """Return the newest message of each conversation that has at least one."""
        pass

    @abstractmethod
    async def mark_conversation_read(self, conversation_id: str, reader_id: str) -> list[Message]:
        """Flip every unread message not sent by 'reader_id' to read and return the flipped records."""
        pass

    @abstractmethod
    async def mark_message_read(self, message_id: str) -> Message | None:
        pass
