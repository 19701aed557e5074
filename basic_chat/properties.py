"""
Registry of the queryable properties of each stored entity

Every column name that reaches a query built from caller input must be a
member of the property enum of the entity being queried.
"""

from enum import Enum
from typing import Any, Dict, Optional, Type, Union

from .errors import InvalidPropertyError
from .logger import log_security_event


class EntityKind(Enum):
    USER = "user"
    MESSAGE = "message"


class UserProperty(Enum):
    """Columns of the users table"""
    socketID = "socketID"
    username = "username"


class MessageProperty(Enum):
    """Columns of the messages table"""
    id = "id"
    text = "text"
    userID = "userID"
    time = "time"


PROPERTIES: Dict[EntityKind, Type[Enum]] = {
    EntityKind.USER: UserProperty,
    EntityKind.MESSAGE: MessageProperty,
}


def is_valid_property(kind: EntityKind, token: Any) -> bool:
    """
    Check that a token is one of the registered properties of an entity

    Tokens are compared by identity, so ``UserProperty.username`` is never
    accepted for messages even if both entities had a ``username`` column.

    Args:
        kind: Entity being queried
        token: Candidate property token

    Returns:
        True if the token belongs to the entity's property enum
    """
    properties = PROPERTIES[kind]
    if not isinstance(token, Enum):
        return False
    return properties.__members__.get(token.name) is token


def require_property(kind: EntityKind, token: Any) -> Enum:
    """Return the token unchanged, or raise InvalidPropertyError"""
    if not is_valid_property(kind, token):
        log_security_event("invalid_property", {"entity": kind.value, "token": repr(token)})
        raise InvalidPropertyError(
            f"Property must be a member of {PROPERTIES[kind].__name__}, got {token!r}"
        )
    return token


def property_for_key(kind: EntityKind, key: Union[str, Enum]) -> Optional[Enum]:
    """
    Resolve a mapping key (column name or property token) to a property

    Args:
        kind: Entity the key should belong to
        key: Column name or property enum member

    Returns:
        The matching property, or None if the key is not one of the entity's
    """
    if isinstance(key, Enum):
        return key if is_valid_property(kind, key) else None
    if isinstance(key, str):
        return PROPERTIES[kind].__members__.get(key)
    return None
