"""
Basic Chat core: storage, property registry, presence and broadcasting
"""

from .models import User, Message
from .properties import EntityKind, UserProperty, MessageProperty, is_valid_property
from .row_store import RowStore, Identifier
from .database import Database, EntityTable
from .username_management import UsernameStatus, USERNAME_STATUS_MESSAGES, check_username
from .presence import PresenceCoordinator, PresenceRegistry, ConnectionState
from .validators import parse_client_frame
from .events import error_event, username_accepted_event
from .errors import (
    ChatError,
    InvalidPropertyError,
    StorageError,
    DuplicateError,
    ClaimRejectedError,
    EmptyUsernameError,
    UsernameTakenError,
    AlreadyNamedError,
    NotNamedError,
    EmptyMessageError,
    InvalidPayloadError,
)
from .constants import *
from .logger import (
    get_logger,
    log_security_event,
    log_connection_event,
    log_message_event,
    log_database_event,
    log_websocket_event,
    log_system_event,
)

__all__ = [
    'User',
    'Message',
    'EntityKind',
    'UserProperty',
    'MessageProperty',
    'is_valid_property',
    'RowStore',
    'Identifier',
    'Database',
    'EntityTable',
    'UsernameStatus',
    'USERNAME_STATUS_MESSAGES',
    'check_username',
    'PresenceCoordinator',
    'PresenceRegistry',
    'ConnectionState',
    'parse_client_frame',
    'error_event',
    'username_accepted_event',
    'ChatError',
    'InvalidPropertyError',
    'StorageError',
    'DuplicateError',
    'ClaimRejectedError',
    'EmptyUsernameError',
    'UsernameTakenError',
    'AlreadyNamedError',
    'NotNamedError',
    'EmptyMessageError',
    'InvalidPayloadError',
    'get_logger',
    'log_security_event',
    'log_connection_event',
    'log_message_event',
    'log_database_event',
    'log_websocket_event',
    'log_system_event',
]
