import asyncio
import time

import pytest

from basic_chat import (
    ConnectionState,
    PresenceCoordinator,
    Message,
    User,
    UserProperty,
    UsernameStatus,
)
from basic_chat.errors import (
    AlreadyNamedError,
    EmptyMessageError,
    EmptyUsernameError,
    NotNamedError,
    StorageError,
    UsernameTakenError,
)
from basic_chat.events import message_payload
from conftest import FakeConnection, StalledConnection


async def connect(coordinator, connection_id):
    connection = FakeConnection()
    await coordinator.on_connect(connection_id, connection)
    await coordinator.flush(connection_id)
    return connection


async def test_connect_sends_history_in_id_order(coordinator, database):
    for text in ["first", "second", "third"]:
        await database.add_message(Message(text=text, userID="old"))

    connection = await connect(coordinator, "A")

    assert len(connection.sent) == 1
    history = connection.sent[0]
    assert history["type"] == "chat history"
    assert [m["text"] for m in history["messages"]] == ["first", "second", "third"]
    ids = [m["id"] for m in history["messages"]]
    assert ids == sorted(ids)
    assert coordinator.presence.get("A").state is ConnectionState.CONNECTED


async def test_connect_with_empty_history(coordinator):
    connection = await connect(coordinator, "A")
    assert connection.sent == [{"type": "chat history", "messages": []}]


async def test_username_uniqueness_scenario(coordinator, database):
    a = await connect(coordinator, "A")
    b = await connect(coordinator, "B")

    assert await coordinator.on_username_claim("A", "alice") == "alice"
    assert coordinator.get_username("A") == "alice"

    with pytest.raises(UsernameTakenError):
        await coordinator.on_username_claim("B", "alice")
    assert coordinator.presence.get("B").state is ConnectionState.CONNECTED
    assert coordinator.get_username("B") is None

    with pytest.raises(NotNamedError):
        await coordinator.on_message("B", "hello")
    assert a.of_type("new message") == []
    assert b.of_type("new message") == []
    assert await database.get_messages() == []


async def test_claim_is_trimmed_and_stored(coordinator, database):
    await connect(coordinator, "A")
    assert await coordinator.on_username_claim("A", "  alice  ") == "alice"
    assert await database.get_users(UserProperty.username, "alice", False) == User("A", "alice")


async def test_blank_claim_is_rejected(coordinator, database):
    await connect(coordinator, "A")
    with pytest.raises(EmptyUsernameError):
        await coordinator.on_username_claim("A", "   ")
    assert coordinator.get_username("A") is None
    assert await database.get_users() == []


async def test_second_claim_is_rejected(coordinator, database):
    await connect(coordinator, "A")
    await coordinator.on_username_claim("A", "alice")

    with pytest.raises(AlreadyNamedError):
        await coordinator.on_username_claim("A", "alicia")
    assert coordinator.get_username("A") == "alice"
    assert await database.get_users(UserProperty.username, "alicia") == []


async def test_unique_constraint_settles_racing_claims(coordinator, database, monkeypatch):
    async def always_valid(database, username):
        return UsernameStatus.VALID

    monkeypatch.setattr("basic_chat.presence.check_username", always_valid)
    await database.add_user(User(socketID="other", username="alice"))
    await connect(coordinator, "A")

    with pytest.raises(UsernameTakenError):
        await coordinator.on_username_claim("A", "alice")
    assert coordinator.get_username("A") is None

    # The failed claim does not block a later one
    assert await coordinator.on_username_claim("A", "alicia") == "alicia"


async def test_concurrent_claims_for_one_name(coordinator, database):
    await connect(coordinator, "A")
    await connect(coordinator, "B")

    results = await asyncio.gather(
        coordinator.on_username_claim("A", "alice"),
        coordinator.on_username_claim("B", "alice"),
        return_exceptions=True,
    )

    assert sorted(type(r).__name__ for r in results) == ["UsernameTakenError", "str"]
    assert len(await database.get_users(UserProperty.username, "alice")) == 1


async def test_message_is_trimmed_stored_and_broadcast(coordinator, database):
    a = await connect(coordinator, "A")
    b = await connect(coordinator, "B")
    c = await connect(coordinator, "C")
    await coordinator.on_username_claim("A", "alice")
    await coordinator.on_username_claim("B", "bob")

    before = int(time.time() * 1000)
    message = await coordinator.on_message("A", "  hi  ")
    after = int(time.time() * 1000)
    await coordinator.flush()

    assert message.text == "hi"
    assert message.userID == "A"
    assert before <= message.time <= after
    assert await database.get_chat_history() == [message]

    expected = {"type": "new message", "message": message_payload(message, "alice")}
    for connection in (a, b, c):
        assert connection.of_type("new message") == [expected]
    assert expected["message"]["id"] == message.id
    assert expected["message"]["username"] == "alice"


async def test_empty_message_is_rejected(coordinator, database):
    a = await connect(coordinator, "A")
    await coordinator.on_username_claim("A", "alice")

    with pytest.raises(EmptyMessageError):
        await coordinator.on_message("A", "   ")
    await coordinator.flush()
    assert a.of_type("new message") == []
    assert await database.get_messages() == []


async def test_storage_failure_prevents_broadcast(coordinator, database, monkeypatch):
    a = await connect(coordinator, "A")
    await coordinator.on_username_claim("A", "alice")

    async def broken_add_message(message):
        raise StorageError("disk I/O error")

    monkeypatch.setattr(database, "add_message", broken_add_message)

    with pytest.raises(StorageError):
        await coordinator.on_message("A", "hi")
    await coordinator.flush()
    assert a.of_type("new message") == []


async def test_broadcast_skips_failing_connection(coordinator):
    a = await connect(coordinator, "A")
    await connect(coordinator, "B")
    coordinator.presence.get("B").connection = FakeConnection(fail=True)
    await coordinator.on_username_claim("A", "alice")

    message = await coordinator.on_message("A", "still delivered")
    await coordinator.flush()
    assert a.of_type("new message") == [{"type": "new message", "message": message_payload(message, "alice")}]


async def test_concurrent_messages_broadcast_in_id_order(coordinator):
    a = await connect(coordinator, "A")
    b = await connect(coordinator, "B")
    await coordinator.on_username_claim("A", "alice")
    await coordinator.on_username_claim("B", "bob")

    await asyncio.gather(*[
        coordinator.on_message("A" if n % 2 else "B", f"message {n}") for n in range(10)
    ])
    await coordinator.flush()

    for connection in (a, b):
        ids = [event["message"]["id"] for event in connection.of_type("new message")]
        assert len(ids) == 10
        assert ids == sorted(ids)


async def test_disconnect_keeps_durable_user(coordinator, database):
    await connect(coordinator, "A")
    await coordinator.on_username_claim("A", "alice")

    assert await coordinator.on_disconnect("A") == "alice"
    assert "A" not in coordinator.presence
    assert await database.get_users(UserProperty.username, "alice", False) == User("A", "alice")
    assert await coordinator.on_disconnect("A") is None


async def test_disconnected_connection_cannot_send(coordinator):
    await connect(coordinator, "A")
    await coordinator.on_username_claim("A", "alice")
    await coordinator.on_disconnect("A")

    with pytest.raises(NotNamedError):
        await coordinator.on_message("A", "hi")


async def test_check_consistency_reports_missing_rows(coordinator, database):
    await connect(coordinator, "A")
    await connect(coordinator, "B")
    await coordinator.on_username_claim("A", "alice")
    await coordinator.on_username_claim("B", "bob")
    assert await coordinator.check_consistency() == []

    await database.delete_users(UserProperty.username, "alice")
    assert await coordinator.check_consistency() == ["A"]


async def test_stats(coordinator):
    await connect(coordinator, "A")
    await connect(coordinator, "B")
    await coordinator.on_username_claim("A", "alice")
    assert coordinator.stats() == {"connected": 2, "named": 1}


def test_connection_ids_are_unique():
    from basic_chat import PresenceCoordinator
    ids = {PresenceCoordinator.new_connection_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(len(connection_id) == 20 for connection_id in ids)


async def test_history_carries_sender_usernames(coordinator, database):
    await database.add_user(User(socketID="A", username="alice"))
    await database.add_message(Message(text="from alice", userID="A"))
    await database.add_message(Message(text="from nobody", userID="gone"))

    connection = await connect(coordinator, "B")

    messages = connection.sent[0]["messages"]
    assert [(m["text"], m["username"]) for m in messages] == [
        ("from alice", "alice"),
        ("from nobody", None),
    ]
    assert messages[0]["userID"] == "A"


async def test_stalled_connection_does_not_block_the_room(database):
    coordinator = PresenceCoordinator(database, outbox_size=2)
    try:
        a = await connect(coordinator, "A")
        stalled = StalledConnection()
        await coordinator.on_connect("S", stalled)
        await coordinator.flush("S")
        await coordinator.on_username_claim("A", "alice")

        for n in range(5):
            await asyncio.wait_for(coordinator.on_message("A", f"message {n}"), timeout=1)
        await asyncio.wait_for(coordinator.flush("A"), timeout=1)

        assert len(a.of_type("new message")) == 5
        assert "S" not in coordinator.presence
        assert stalled.of_type("new message") == []

        # The room keeps working once the stalled connection is gone
        await asyncio.wait_for(coordinator.on_message("A", "after"), timeout=1)
        await coordinator.flush()
        assert a.of_type("new message")[-1]["message"]["text"] == "after"
    finally:
        await coordinator.close()


async def test_newcomer_gets_history_while_a_peer_is_stalled(coordinator):
    await connect(coordinator, "A")
    await coordinator.on_username_claim("A", "alice")
    await coordinator.on_connect("S", StalledConnection())
    await coordinator.on_message("A", "hi")

    newcomer = FakeConnection()
    await asyncio.wait_for(coordinator.on_connect("N", newcomer), timeout=1)
    await asyncio.wait_for(coordinator.flush("N"), timeout=1)

    history = newcomer.of_type("chat history")[0]["messages"]
    assert [(m["text"], m["username"]) for m in history] == [("hi", "alice")]


async def test_send_to_queues_for_one_connection(coordinator):
    a = await connect(coordinator, "A")
    b = await connect(coordinator, "B")

    assert coordinator.send_to("A", {"type": "error", "message": "only for A"})
    assert not coordinator.send_to("missing", {"type": "error", "message": "nobody"})
    await coordinator.flush()

    assert a.of_type("error") == [{"type": "error", "message": "only for A"}]
    assert b.of_type("error") == []
