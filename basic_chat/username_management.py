"""
Username availability checks
"""

from enum import Enum

from .logger import get_logger
from .properties import UserProperty

logger = get_logger()


class UsernameStatus(Enum):
    VALID = "valid"
    TAKEN = "taken"
    EMPTY = "empty"


USERNAME_STATUS_MESSAGES = {
    UsernameStatus.VALID: "Username is valid.",
    UsernameStatus.TAKEN: "Sorry, that username is already taken, try another one.",
    UsernameStatus.EMPTY: "The username cannot be empty.",
}


async def check_username(database, username: str) -> UsernameStatus:
    """
    Check whether a username can be claimed

    Args:
        database: Database to look the username up in
        username: Candidate username

    Returns:
        UsernameStatus of the trimmed username
    """
    if username != username.strip():
        logger.warning("Don't forget to trim the username!")
        username = username.strip()

    if username == "":
        return UsernameStatus.EMPTY

    user = await database.get_users(UserProperty.username, username, False)
    if user is not None:
        return UsernameStatus.TAKEN

    return UsernameStatus.VALID
