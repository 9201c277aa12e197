"""
User profile data model and storage interface.

A profile is created by the client on the first successful sign-in of a
principal (see 'ProfileGate'), then mutated by presence heartbeats, phone-number
setup and push-token registration. Profiles are never deleted by the client.

Concrete implementations: 'InMemoryProfileDatabase', 'PostgRESTProfileDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Profile(BaseModel):
    """
    Public record of a user.

    'online' and 'last_seen' together form the user's presence. 'phone_number'
    is unique across profiles when set; an empty phone number means onboarding
    has not been completed. 'push_token' addresses the user's device for push
    notifications.
    """

    id: str
    display_name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    avatar_url: str | None = None
    online: bool = False
    last_seen: int | None = None
    push_token: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or self.id


class ProfileDatabase(ABC):
    """Abstract repository for 'Profile' records."""

    @abstractmethod
    async def create_profile(self, profile: Profile) -> Profile:
        """Insert 'profile'. Raise 'ConflictError' if the id or phone number is taken."""
        pass

    @abstractmethod
    async def get_profile_by_id(self, user_id: str) -> Profile | None:
        pass

    @abstractmethod
    async def get_profiles_by_ids(self, user_ids: list[str]) -> list[Profile]:
        pass

    @abstractmethod
    async def search_profiles(self, query: str, exclude_user_id: str, limit: int) -> list[Profile]:
        """Case-insensitive substring match on email or display name."""
        pass

    @abstractmethod
    async def update_presence(self, user_id: str, online: bool, last_seen: int) -> None:
        pass

    @abstractmethod
    async def update_phone_number(self, user_id: str, phone_number: str) -> Profile:
        pass

    @abstractmethod
    async def update_push_token(self, user_id: str, push_token: str | None) -> None:
        pass
