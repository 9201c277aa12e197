"""
Authentication provider abstractions.

The toolkit never implements an authentication protocol. An 'AuthProvider'
wraps whatever hosted service signs users in and exposes the four operations
the client needs: read the current session, watch it change, start a sign-in
and sign out.

'Principal' is the identity a provider vouches for. Profile defaults (display
name, avatar) are derived from its claims the same way for every provider.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from messaging_toolkit.realtime.base import Subscription


class Principal(BaseModel):
    """
    An authenticated identity.

    Attributes:
        id: Opaque, stable identifier; doubles as the profile id.
        email: Email address the provider verified.
        claims: Extra identity-provider metadata ('full_name', 'name',
            'avatar_url', 'picture', ...).
    """

    id: str
    email: str | None = None
    claims: dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str | None:
        for key in ("full_name", "name"):
            value = self.claims.get(key)
            if value:
                return str(value)
        if self.email:
            return self.email.split("@", 1)[0]
        return None

    @property
    def avatar_url(self) -> str | None:
        for key in ("avatar_url", "picture"):
            value = self.claims.get(key)
            if value:
                return str(value)
        return None


class Session(BaseModel):
    principal: Principal
    access_token: str | None = None


SessionCallback = Callable[[Session | None], Awaitable[None]]


class AuthProvider(ABC):
    """Abstract base class for hosted authentication services."""

    @abstractmethod
    async def get_session(self) -> Session | None:
        """Return the current session, or None when nobody is signed in."""
        pass

    @abstractmethod
    async def on_session_change(self, callback: SessionCallback) -> Subscription:
        """Invoke 'callback' with the new session (None after sign-out) on every change."""
        pass

    @abstractmethod
    async def sign_in(self, provider: str) -> None:
        """Start a sign-in through the third-party identity 'provider' (e.g. 'google')."""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass
