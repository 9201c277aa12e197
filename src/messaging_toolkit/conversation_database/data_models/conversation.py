"""
Conversation data model and storage interface.

A conversation carries no payload of its own: membership lives in
'Participant' rows and content in 'Message' rows. 'update_timestamp' is touched
on every new message so other clients can order conversations by activity.

Concrete implementations: 'InMemoryConversationDatabase',
'PostgRESTConversationDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Conversation(BaseModel):
    """A one-to-one conversation between two participants."""

    id: str
    create_timestamp: int
    update_timestamp: int


class ConversationDatabase(ABC):
    """Abstract repository for 'Conversation' records."""

    @abstractmethod
    async def create_conversation(self) -> Conversation:
        """Insert an empty conversation; the store assigns id and timestamps."""
        pass

    @abstractmethod
    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        pass

    @abstractmethod
    async def touch_conversation(self, conversation_id: str, update_timestamp: int) -> None:
        pass
