"""
Exception hierarchy for the messaging toolkit.

Two families live here. 'StoreError' and its subclasses are raised by storage
implementations when the backing store rejects or fails a call; they carry the
backend detail for logging and never reach the user directly. The remaining
exceptions are user-facing: their message is safe to show as-is at the point of
the action that triggered them.
"""


class MessagingError(Exception):
    """Base class for all toolkit errors."""


class StoreError(MessagingError):
    """The backing store failed or rejected a request."""


class NotFoundError(StoreError):
    """A record addressed by id does not exist."""


class ConflictError(StoreError):
    """A write violated a uniqueness constraint (duplicate id, phone number, ...)."""


class NotAuthenticatedError(MessagingError):
    def __init__(self, message: str = "You need to sign in first.") -> None:
        super().__init__(message)


class NoActiveConversationError(MessagingError):
    def __init__(self, message: str = "Select a conversation before sending a message.") -> None:
        super().__init__(message)


class EmptyMessageError(MessagingError, ValueError):
    def __init__(self, message: str = "Cannot send an empty message.") -> None:
        super().__init__(message)


class SendFailedError(MessagingError):
    def __init__(self, message: str = "Failed to send message. Please try again.") -> None:
        super().__init__(message)


class InvalidPhoneNumberError(MessagingError, ValueError):
    def __init__(self, phone_number: str) -> None:
        super().__init__(f"'{phone_number}' is not a valid phone number. Use the international format, e.g. +41791234567.")
        self.phone_number = phone_number


class PhoneNumberTakenError(MessagingError):
    def __init__(self, message: str = "This phone number is already linked to another account.") -> None:
        super().__init__(message)


class ProfileUpdateError(MessagingError):
    def __init__(self, message: str = "Could not save your profile. Please try again.") -> None:
        super().__init__(message)


class ConversationUnavailableError(MessagingError):
    def __init__(self, message: str = "Could not open this conversation. Please try again.") -> None:
        super().__init__(message)


class SelfConversationError(MessagingError, ValueError):
    def __init__(self, message: str = "Cannot start a conversation with yourself.") -> None:
        super().__init__(message)
