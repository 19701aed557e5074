"""
Presence tracking and message broadcasting

The coordinator owns the in-memory binding between live connections and
usernames. The users table is the durable record of claimed names; the
bindings themselves live only as long as the process does.

Events for a connection go through its outbox, a bounded queue drained by
a writer task, so a client that stops reading never holds up the others.
"""

import asyncio
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .constants import CONNECTION_ID_BYTES, OUTBOX_MAX_EVENTS
from .database import Database
from .errors import (
    AlreadyNamedError,
    DuplicateError,
    EmptyMessageError,
    EmptyUsernameError,
    NotNamedError,
    UsernameTakenError,
)
from .events import chat_history_event, new_message_event
from .logger import (
    get_logger,
    log_connection_event,
    log_message_event,
    log_security_event,
)
from .models import Message, User, current_time_ms
from .properties import UserProperty
from .username_management import UsernameStatus, check_username

logger = get_logger()


class ConnectionState(Enum):
    CONNECTED = "connected"
    NAMED = "named"


@dataclass
class PresenceEntry:
    """One live connection"""
    connection_id: str
    connection: Any  # anything with an async send_json(data)
    outbox: asyncio.Queue
    state: ConnectionState = ConnectionState.CONNECTED
    username: Optional[str] = None
    claim_pending: bool = False
    writer: Optional[asyncio.Task] = None
    connected_at: float = field(default_factory=time.time)


class PresenceRegistry:
    """Live connections keyed by connection id"""

    def __init__(self):
        self._entries: Dict[str, PresenceEntry] = {}

    def add(self, connection_id: str, connection: Any, outbox_size: int = OUTBOX_MAX_EVENTS) -> PresenceEntry:
        entry = PresenceEntry(
            connection_id=connection_id,
            connection=connection,
            outbox=asyncio.Queue(maxsize=outbox_size),
        )
        self._entries[connection_id] = entry
        return entry

    def get(self, connection_id: str) -> Optional[PresenceEntry]:
        return self._entries.get(connection_id)

    def bind(self, connection_id: str, username: str) -> bool:
        """Mark a connection as named; False if it is no longer present"""
        entry = self._entries.get(connection_id)
        if entry is None:
            return False
        entry.username = username
        entry.state = ConnectionState.NAMED
        return True

    def remove(self, connection_id: str) -> Optional[PresenceEntry]:
        return self._entries.pop(connection_id, None)

    def connections(self) -> List[PresenceEntry]:
        return list(self._entries.values())

    def named(self) -> List[PresenceEntry]:
        return [entry for entry in self._entries.values() if entry.state is ConnectionState.NAMED]

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class PresenceCoordinator:
    """Binds connections to usernames and fans out new messages"""

    def __init__(
        self,
        database: Database,
        presence: Optional[PresenceRegistry] = None,
        outbox_size: int = OUTBOX_MAX_EVENTS,
    ):
        self.database = database
        self.presence = presence if presence is not None else PresenceRegistry()
        self.outbox_size = outbox_size
        # Held while a message is appended and queued for every connection
        self._broadcast_lock = asyncio.Lock()

    @staticmethod
    def new_connection_id() -> str:
        return secrets.token_urlsafe(CONNECTION_ID_BYTES)

    async def on_connect(self, connection_id: str, connection: Any) -> List[Message]:
        """
        Register a new connection and queue the chat history for it

        Registration and the history read happen under the broadcast lock, so
        every message is either in the history or broadcast afterwards.

        Args:
            connection_id: Identifier of the new connection
            connection: Connection object used to send events

        Returns:
            The history that was queued
        """
        async with self._broadcast_lock:
            entry = self.presence.add(connection_id, connection, self.outbox_size)
            entry.writer = asyncio.create_task(self._write_events(entry))
            history = await self.database.get_chat_history()
            usernames = await self.database.get_usernames()
            self._enqueue(entry, chat_history_event(history, usernames))

        log_connection_event(connection_id, "connect")
        logger.info(f"Chat history queued for {connection_id}: {len(history)} messages")
        return history

    async def on_username_claim(self, connection_id: str, username: str) -> str:
        """
        Bind a username to a connection

        Args:
            connection_id: Claiming connection
            username: Requested username (surrounding whitespace is ignored)

        Returns:
            The bound username

        Raises:
            AlreadyNamedError: the connection already has (or is claiming) a name
            EmptyUsernameError: the trimmed username is empty
            UsernameTakenError: another user owns the username
        """
        entry = self._entry(connection_id)
        if entry.state is ConnectionState.NAMED or entry.claim_pending:
            log_security_event("repeated_username_claim", {
                "connection_id": connection_id,
                "bound_username": entry.username,
                "requested": username
            })
            raise AlreadyNamedError()

        clean_username = username.strip()
        entry.claim_pending = True
        try:
            status = await check_username(self.database, clean_username)
            if status is UsernameStatus.EMPTY:
                raise EmptyUsernameError()
            if status is UsernameStatus.TAKEN:
                raise UsernameTakenError()

            # The UNIQUE constraint settles claims racing past the check above
            try:
                await self.database.add_user(User(socketID=connection_id, username=clean_username))
            except DuplicateError as e:
                log_security_event("username_claim_race", {
                    "connection_id": connection_id,
                    "username": clean_username
                })
                raise UsernameTakenError() from e
        finally:
            entry.claim_pending = False

        if not self.presence.bind(connection_id, clean_username):
            logger.warning(f"Connection {connection_id} left before its claim of {clean_username} completed")
            return clean_username

        log_connection_event(connection_id, "named", clean_username)
        return clean_username

    async def on_message(self, connection_id: str, text: str) -> Message:
        """
        Store a message and queue it for every live connection

        Raises:
            NotNamedError: the connection has no username
            EmptyMessageError: the trimmed text is empty
            StorageError: the message was not stored (nothing is broadcast)

        Returns:
            The stored message
        """
        received_at = current_time_ms()
        entry = self.presence.get(connection_id)
        if entry is None or entry.state is not ConnectionState.NAMED:
            log_message_event(None, connection_id, "rejected", "connection has no username")
            raise NotNamedError()

        clean_text = text.strip()
        if not clean_text:
            log_message_event(None, connection_id, "rejected", "empty text")
            raise EmptyMessageError()

        async with self._broadcast_lock:
            message = await self.database.add_message(
                Message(text=clean_text, userID=connection_id, time=received_at)
            )
            log_message_event(message.id, connection_id, "stored", f"length={len(clean_text)}")
            recipients = self._broadcast(new_message_event(message, entry.username))

        log_message_event(message.id, connection_id, "broadcast", f"recipients={recipients}")
        return message

    async def on_disconnect(self, connection_id: str) -> Optional[str]:
        """
        Forget a connection; its user row stays in the database

        Returns:
            The username the connection was bound to, if any
        """
        entry = self.presence.remove(connection_id)
        if entry is None:
            return None
        self._stop_writer(entry)
        log_connection_event(connection_id, "disconnect", entry.username or "")
        return entry.username

    def send_to(self, connection_id: str, event: Dict[str, Any]) -> bool:
        """
        Queue an event for one connection

        Returns:
            False if the connection is gone or was dropped as stalled
        """
        entry = self.presence.get(connection_id)
        if entry is None:
            return False
        return self._enqueue(entry, event)

    async def flush(self, connection_id: Optional[str] = None):
        """Wait until queued events have been handed to the connection(s)"""
        if connection_id is not None:
            entry = self.presence.get(connection_id)
            entries = [entry] if entry is not None else []
        else:
            entries = self.presence.connections()
        await asyncio.gather(*(entry.outbox.join() for entry in entries))

    async def close(self):
        """Stop every writer task"""
        writers = []
        for entry in self.presence.connections():
            if entry.writer is not None:
                writers.append(entry.writer)
            self._stop_writer(entry)
        await asyncio.gather(*writers, return_exceptions=True)

    async def check_consistency(self) -> List[str]:
        """
        Compare named connections against the users table

        Returns:
            Connection ids whose binding has no matching user row
        """
        stale = []
        for entry in self.presence.named():
            user = await self.database.get_users(UserProperty.socketID, entry.connection_id, False)
            if user is None or user.username != entry.username:
                log_security_event("presence_mismatch", {
                    "connection_id": entry.connection_id,
                    "bound_username": entry.username,
                    "stored_username": user.username if user else None
                })
                stale.append(entry.connection_id)
        return stale

    def get_username(self, connection_id: str) -> Optional[str]:
        entry = self.presence.get(connection_id)
        return entry.username if entry else None

    def stats(self) -> Dict[str, int]:
        return {
            "connected": len(self.presence),
            "named": len(self.presence.named()),
        }

    def _entry(self, connection_id: str) -> PresenceEntry:
        entry = self.presence.get(connection_id)
        if entry is None:
            raise LookupError(f"Unknown connection: {connection_id}")
        return entry

    def _broadcast(self, event: Dict[str, Any]) -> int:
        """Queue an event for every live connection; returns how many took it"""
        return sum(1 for entry in self.presence.connections() if self._enqueue(entry, event))

    def _enqueue(self, entry: PresenceEntry, event: Dict[str, Any]) -> bool:
        try:
            entry.outbox.put_nowait(event)
            return True
        except asyncio.QueueFull:
            # The client stopped reading; drop it instead of blocking everyone
            log_security_event("stalled_connection_dropped", {
                "connection_id": entry.connection_id,
                "queued_events": entry.outbox.qsize()
            })
            self.presence.remove(entry.connection_id)
            self._stop_writer(entry)
            return False

    @staticmethod
    def _stop_writer(entry: PresenceEntry):
        if entry.writer is not None and not entry.writer.done():
            entry.writer.cancel()

    async def _write_events(self, entry: PresenceEntry):
        """Send queued events to one connection, in order"""
        while True:
            event = await entry.outbox.get()
            try:
                await entry.connection.send_json(event)
            except Exception as e:
                # Log send failure but keep draining the outbox
                logger.error(f"Failed to send {event.get('type')} to {entry.connection_id}: {e}")
                log_security_event("message_send_failed", {
                    "recipient": entry.connection_id,
                    "error": str(e)
                })
            finally:
                entry.outbox.task_done()
