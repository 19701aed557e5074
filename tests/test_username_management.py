import pytest

from basic_chat import User, UsernameStatus, USERNAME_STATUS_MESSAGES, check_username


@pytest.mark.parametrize("username", ["", "   ", "\t\n"])
async def test_blank_username_is_empty(database, username):
    assert await check_username(database, username) is UsernameStatus.EMPTY


async def test_free_username_is_valid(database):
    assert await check_username(database, "alice") is UsernameStatus.VALID


async def test_stored_username_is_taken(database):
    await database.add_user(User(socketID="s1", username="alice"))
    assert await check_username(database, "alice") is UsernameStatus.TAKEN
    assert await check_username(database, "  alice ") is UsernameStatus.TAKEN
    assert await check_username(database, "Alice") is UsernameStatus.VALID


def test_every_status_has_a_message():
    assert set(USERNAME_STATUS_MESSAGES) == set(UsernameStatus)
