"""Exceptions raised by the giveaway lifecycle engine."""

from __future__ import annotations

from typing import Optional


class GiveawayError(Exception):
    """Base class for every giveaway failure surfaced to callers."""


class ValidationError(GiveawayError):
    """Raised when start or edit options are missing or malformed."""


class NotReadyError(GiveawayError):
    """Raised when the manager is used before persisted giveaways are loaded."""


class NotFoundError(GiveawayError):
    def __init__(self, message_id: Optional[int]) -> None:
        super().__init__(f"No giveaway found with ID {message_id}.")
        self.message_id = message_id


class AlreadyEndedError(GiveawayError):
    def __init__(self, message_id: Optional[int]) -> None:
        super().__init__(f"Giveaway with message ID {message_id} is already ended.")
        self.message_id = message_id


class NotYetEndedError(GiveawayError):
    def __init__(self, message_id: Optional[int]) -> None:
        super().__init__(f"Giveaway with message ID {message_id} is not ended.")
        self.message_id = message_id


class ChannelUnavailableError(GiveawayError):
    def __init__(self, channel_id: int, message_id: Optional[int] = None) -> None:
        super().__init__(
            f"Unable to get the channel {channel_id} of the giveaway with message ID {message_id}."
        )
        self.channel_id = channel_id
        self.message_id = message_id


class MessageNotFoundError(GiveawayError):
    def __init__(self, message_id: Optional[int]) -> None:
        super().__init__(f"Unable to fetch message with ID {message_id}.")
        self.message_id = message_id


class PersistenceError(GiveawayError):
    """Raised when the giveaway storage document cannot be parsed."""
