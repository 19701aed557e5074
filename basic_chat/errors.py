"""
Error types raised by the storage layer and the presence coordinator
"""

from typing import Optional

from .constants import ERROR_MESSAGES


class ChatError(Exception):
    """Base class for every error the chat core raises"""

    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidPropertyError(ChatError, TypeError):
    """A property token outside the entity's registered set was used"""

    default_message = ERROR_MESSAGES["invalid_property"]


class StorageError(ChatError):
    """The underlying store failed to execute a statement"""

    default_message = ERROR_MESSAGES["storage_failed"]


class DuplicateError(StorageError):
    """A UNIQUE constraint rejected an insert or update"""


class ClaimRejectedError(ChatError):
    """A username claim was refused"""


class EmptyUsernameError(ClaimRejectedError):
    default_message = ERROR_MESSAGES["username_empty"]


class UsernameTakenError(ClaimRejectedError):
    default_message = ERROR_MESSAGES["username_taken"]


class AlreadyNamedError(ClaimRejectedError):
    default_message = ERROR_MESSAGES["already_named"]


class NotNamedError(ChatError):
    """A message arrived from a connection without a username"""

    default_message = ERROR_MESSAGES["not_named"]


class EmptyMessageError(ChatError):
    default_message = ERROR_MESSAGES["empty_message"]


class InvalidPayloadError(ChatError):
    """A WebSocket frame could not be understood"""

    default_message = ERROR_MESSAGES["invalid_payload"]
