"""Exception types raised by the session core."""
from __future__ import annotations


class ScreenTechError(Exception):
    """Base class for errors raised by the assistant core."""


class InvalidSerialError(ScreenTechError, ValueError):
    pass


class NotConnectedError(ScreenTechError):
    def __init__(self, action: str = "this operation") -> None:
        super().__init__(f"No press connected; connect a serial number before {action}")


class ConfirmationRequiredError(ScreenTechError):
    pass


class ReplyInProgressError(ScreenTechError):
    pass


class MessageNotFoundError(ScreenTechError, KeyError):
    def __init__(self, message_id: str) -> None:
        super().__init__(message_id)
        self.message_id = message_id

    def __str__(self) -> str:
        return f"Message {self.message_id} not found in transcript"


class SessionNotInitializedError(ScreenTechError, RuntimeError):
    pass


class CorruptRecordError(ScreenTechError):
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Stored record {key!r} is malformed: {reason}")
        self.key = key


class StorageError(ScreenTechError):
    """A durable storage backend failed to read or write a key."""


class EmptyMessageError(ScreenTechError, ValueError):
    pass


class NotVerifiableError(ScreenTechError, ValueError):
    pass
