"""
Data models for the stored chat entities
"""

import time
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, Mapping


def current_time_ms() -> int:
    """Milliseconds since the epoch"""
    return int(time.time() * 1000)


@dataclass
class User:
    """A username bound to the connection that claimed it"""
    socketID: str
    username: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        return cls(socketID=row["socketID"], username=row["username"])

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {"socketID": self.socketID, "username": self.username}


@dataclass
class Message:
    """A chat message; the id is assigned by the store"""
    text: str
    userID: str
    time: int = field(default_factory=current_time_ms)
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Message":
        return cls(
            id=row["id"],
            text=row["text"],
            userID=row["userID"],
            time=row["time"],
        )

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        if self.id is None:
            del row["id"]
        return row

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "text": self.text,
            "userID": self.userID,
            "time": self.time,
        }
