import asyncio
import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__) + '/..'))

from basic_chat import RowStore, Database, PresenceCoordinator


class FakeConnection:
    """Records every event sent to it"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("connection is gone")
        self.sent.append(data)

    def of_type(self, event_type):
        return [event for event in self.sent if event["type"] == event_type]


@pytest.fixture()
def database_path(tmp_path):
    return str(tmp_path / "chat.sqlite")


@pytest.fixture()
async def store(database_path):
    store = RowStore(database_path)
    store.open()
    yield store
    await store.close()


@pytest.fixture()
async def database(store):
    database = Database(store)
    await database.initialize()
    return database


@pytest.fixture()
async def coordinator(database):
    coordinator = PresenceCoordinator(database)
    yield coordinator
    await coordinator.close()


@pytest.fixture()
def app(database_path):
    """Create a new FastAPI app instance backed by a temporary database."""
    from main import create_app
    return create_app(database_path, reconcile_interval=3600)


@pytest.fixture()
def client(app):
    """A test client for the FastAPI app, with the lifespan running."""
    with TestClient(app) as client:
        yield client


class StalledConnection(FakeConnection):
    """Takes the chat history, then never finishes sending a new message"""

    def __init__(self):
        super().__init__()
        self.never = asyncio.Event()

    async def send_json(self, data):
        if data["type"] == "new message":
            await self.never.wait()
        self.sent.append(data)
