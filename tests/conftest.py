"""
Shared fixtures: isolated stores, relays and apps per test.
"""

import json

import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import USER_DEFAULTS, MemoryBackend
from relay import SignalingRelay

ADMIN = {"id": 1, "username": "admin", "role": "admin", "roomId": None}
ALICE = {"id": 2, "username": "alice", "role": "user", "roomId": 1}
BOB = {"id": 3, "username": "bob", "role": "user", "roomId": 1}
CAROL = {"id": 4, "username": "carol", "role": "user", "roomId": 2}
OPS = {"id": 5, "username": "ops", "role": "admin", "roomId": None}
LONER = {"id": 6, "username": "loner", "role": "user", "roomId": None}


class FakeWebSocket:
    """Records what the relay sends; optionally fails every send."""

    def __init__(self, fail_sends: bool = False):
        self.sent = []
        self.closed_with = None
        self.fail_sends = fail_sends

    async def send_text(self, text: str):
        if self.fail_sends:
            raise RuntimeError("socket is closing")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason=None):
        self.closed_with = (code, reason)

    def of_type(self, message_type: str):
        return [m for m in self.sent if m.get("type") == message_type]


def build_storage(*users) -> MemoryBackend:
    storage = MemoryBackend()
    for user in users:
        storage.users[user["id"]] = {**USER_DEFAULTS, "password": "secret", **user}
    storage._next_ids["users"] = max([u["id"] for u in users], default=0) + 1
    return storage


async def connect_user(relay: SignalingRelay, user_id: int, fail_sends: bool = False):
    """Open a fake connection, authenticate it and clear the auth ack."""
    websocket = FakeWebSocket()
    connection = relay.connect(websocket)
    await relay.handle_message(connection, {"type": "auth", "userId": user_id})
    assert websocket.sent[-1]["type"] == "auth_success"
    websocket.sent.clear()
    websocket.fail_sends = fail_sends
    return connection, websocket


@pytest.fixture
def storage():
    return build_storage(ADMIN, ALICE, BOB, CAROL, OPS, LONER)


@pytest.fixture
def relay(storage):
    return SignalingRelay(storage)


@pytest.fixture
def app():
    return create_app(backend=MemoryBackend(), seed=True)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_client(client):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "admin123"})
    assert response.status_code == 200
    return client
