"""
Conversation membership join table.

Two rows are written in a single call when a conversation is created, one per
participant; they are never mutated afterwards.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Participant(BaseModel):
    conversation_id: str
    user_id: str


class ParticipantDatabase(ABC):
    """Abstract repository for 'Participant' rows."""

    @abstractmethod
    async def add_participants(self, participants: list[Participant]) -> list[Participant]:
        """Insert all rows atomically."""
        pass

    @abstractmethod
    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        pass

    @abstractmethod
    async def filter_conversation_ids_by_user_id(self, user_id: str, conversation_ids: list[str]) -> list[str]:
        """Return the subset of 'conversation_ids' that 'user_id' participates in."""
        pass

    @abstractmethod
    async def get_counterparts(self, user_id: str, conversation_ids: list[str]) -> list[Participant]:
        """Return the participant rows of 'conversation_ids' that do not belong to 'user_id'."""
        pass
