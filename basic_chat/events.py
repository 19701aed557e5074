"""
Server -> client event payloads
"""

import time
from typing import Any, Dict, Iterable, Mapping, Optional

from .models import Message


def message_payload(message: Message, username: Optional[str]) -> Dict[str, Any]:
    """Stored message plus the username of its sender, if known"""
    payload = message.to_dict()
    payload["username"] = username
    return payload


def chat_history_event(messages: Iterable[Message], usernames: Mapping[str, str]) -> Dict[str, Any]:
    return {
        "type": "chat history",
        "messages": [message_payload(message, usernames.get(message.userID)) for message in messages],
    }


def new_message_event(message: Message, username: Optional[str]) -> Dict[str, Any]:
    return {"type": "new message", "message": message_payload(message, username)}


def username_accepted_event(username: str) -> Dict[str, Any]:
    return {"type": "username accepted", "username": username}


def error_event(error_message: str) -> Dict[str, Any]:
    return {"type": "error", "message": error_message, "timestamp": int(time.time())}
