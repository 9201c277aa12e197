"""
Push notification relay abstractions.

Pushes are delivered by an external relay the client reaches through a
one-shot remote call. The relay is optional: nothing in the synchronization
core depends on it, and the controller only calls it when notifications are
enabled in 'MessagingSettings' and a relay was configured.

Concrete implementations: 'FunctionInvokeRelay'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from messaging_toolkit.errors import MessagingError


class NotificationError(MessagingError):
    """The relay failed to accept a notification."""


class PushNotification(BaseModel):
    token: str
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)


class NotificationRelay(ABC):
    @abstractmethod
    async def send(self, notification: PushNotification) -> None:
        """Hand 'notification' to the relay. Raise 'NotificationError' on failure."""
        pass
