"""
Validated access to the users and messages tables

This is the only way the rest of the server reads or writes chat data.
Every property a caller passes is checked against the property registry
before any condition is built, so the row store only ever sees registered
column names.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from .constants import USERS_TABLE, MESSAGES_TABLE
from .errors import InvalidPropertyError
from .logger import get_logger, log_security_event
from .models import User, Message
from .properties import (
    EntityKind,
    MessageProperty,
    PROPERTIES,
    require_property,
    property_for_key,
)
from .row_store import RowStore, Identifier

logger = get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    socketID TEXT,
    username TEXT UNIQUE
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT,
    userID TEXT,
    time INTEGER
);
"""

# Marks "argument not passed", so an explicit None is still validated
_MISSING = object()

Entity = Union[User, Message]


class EntityTable:
    """Validated CRUD operations for one entity kind"""

    def __init__(self, store: RowStore, kind: EntityKind, table: str, model: Type[Any]):
        self.store = store
        self.kind = kind
        self.table = Identifier(table)
        self.model = model

    @staticmethod
    def _equals(prop: Enum) -> str:
        return f"{Identifier(prop).quoted()} = ?"

    async def get_by(self, prop: Any = _MISSING, value: Any = None, return_all: bool = True):
        """
        Read entities whose property equals a value

        Args:
            prop: Property token of this entity; omit to read every row
            value: Value the property must equal
            return_all: Return every match, or only the first one

        Returns:
            List of entities, or one entity / None when ``return_all`` is false
        """
        if prop is _MISSING:
            result = await self.store.select(self.table, all=return_all)
        else:
            require_property(self.kind, prop)
            result = await self.store.select(self.table, self._equals(prop), [value], return_all)

        if return_all:
            return [self.model.from_row(row) for row in result]
        return self.model.from_row(result) if result is not None else None

    async def add(self, entity: Union[Entity, Mapping[Any, Any]]) -> Optional[int]:
        """
        Insert one entity

        Raises:
            InvalidPropertyError: a key is not a property of this entity
            DuplicateError: a UNIQUE column already holds the value

        Returns:
            rowid assigned by the store
        """
        row = entity.to_row() if isinstance(entity, self.model) else dict(entity)
        data = {}
        for key, value in row.items():
            prop = property_for_key(self.kind, key)
            if prop is None:
                log_security_event("invalid_insert_column", {"entity": self.kind.value, "column": repr(key)})
                raise InvalidPropertyError(
                    f"{key!r} is not a property of {PROPERTIES[self.kind].__name__}"
                )
            data[Identifier(prop)] = value
        return await self.store.insert(self.table, data)

    async def delete_by(self, prop: Any = _MISSING, value: Any = None) -> int:
        """
        Delete entities whose property equals a value

        Called without arguments this empties the whole table.
        """
        if prop is _MISSING:
            logger.warning(f"Deleting every row of {self.table}")
            return await self.store.remove(self.table)
        require_property(self.kind, prop)
        return await self.store.remove(self.table, self._equals(prop), [value])

    async def edit_by(self, prop: Any, value: Any, new_values: Mapping[Any, Any]) -> int:
        """
        Update entities whose property equals a value

        Keys of ``new_values`` that are not properties of this entity are
        dropped. Nothing happens if no key survives.
        """
        require_property(self.kind, prop)
        data = {}
        for key, new_value in new_values.items():
            column = property_for_key(self.kind, key)
            if column is not None:
                data[Identifier(column)] = new_value
        if not data:
            return 0
        return await self.store.update(self.table, data, self._equals(prop), [value])


class Database:
    """Users and messages, backed by a RowStore"""

    def __init__(self, store: RowStore):
        self.store = store
        self.users = EntityTable(store, EntityKind.USER, USERS_TABLE, User)
        self.messages = EntityTable(store, EntityKind.MESSAGE, MESSAGES_TABLE, Message)

    async def initialize(self):
        """Create the tables if they do not exist yet"""
        await self.store.execute_script(SCHEMA)

    async def get_users(self, prop: Any = _MISSING, value: Any = None, all_users: bool = True):
        return await self.users.get_by(prop, value, all_users)

    async def get_messages(self, prop: Any = _MISSING, value: Any = None, all_messages: bool = True):
        return await self.messages.get_by(prop, value, all_messages)

    async def get_chat_history(self) -> List[Message]:
        """Every message, in the order it was stored"""
        rows = await self.store.select(self.messages.table, order_by=MessageProperty.id)
        return [Message.from_row(row) for row in rows]

    async def get_usernames(self) -> Dict[str, str]:
        """socketID -> username for every stored user"""
        return {user.socketID: user.username for user in await self.users.get_by()}

    async def add_user(self, user: Union[User, Mapping[Any, Any]]):
        await self.users.add(user)

    async def add_message(self, message: Union[Message, Mapping[Any, Any]]) -> Message:
        """Store a message and return it as stored, id included"""
        rowid = await self.messages.add(message)
        return await self.messages.get_by(MessageProperty.id, rowid, False)

    async def delete_users(self, prop: Any = _MISSING, value: Any = None) -> int:
        return await self.users.delete_by(prop, value)

    async def delete_messages(self, prop: Any = _MISSING, value: Any = None) -> int:
        return await self.messages.delete_by(prop, value)

    async def edit_users(self, prop: Any, value: Any, new_values: Mapping[Any, Any]) -> int:
        return await self.users.edit_by(prop, value, new_values)

    async def edit_messages(self, prop: Any, value: Any, new_values: Mapping[Any, Any]) -> int:
        return await self.messages.edit_by(prop, value, new_values)
