import pytest

from backend import MemoryBackend, RedisBackend, create_backend


class FakeRedis:
    """Dict-backed subset of the redis.asyncio client used by RedisBackend."""

    def __init__(self):
        self.strings = {}
        self.hashes = {}
        self.sets = {}
        self.expiry = {}
        self.closed = False

    async def ping(self):
        return True

    async def incr(self, key):
        self.strings[key] = str(int(self.strings.get(key, 0)) + 1)
        return int(self.strings[key])

    async def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(str(member))

    async def srem(self, key, member):
        self.sets.get(key, set()).discard(str(member))

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def set(self, key, value, ex=None):
        self.strings[key] = str(value)
        self.expiry[key] = ex

    async def get(self, key):
        return self.strings.get(key)

    async def delete(self, key):
        found = key in self.hashes or key in self.strings
        self.hashes.pop(key, None)
        self.strings.pop(key, None)
        return int(found)

    async def aclose(self):
        self.closed = True


@pytest.fixture(params=["memory", "redis"])
def backend(request):
    if request.param == "memory":
        return MemoryBackend()
    return RedisBackend(client=FakeRedis())


@pytest.mark.asyncio
async def test_seed_defaults_is_idempotent(backend):
    await backend.seed_defaults()
    await backend.seed_defaults()

    users = await backend.get_all_users()
    rooms = await backend.get_all_rooms()
    assert [(u["id"], u["username"], u["role"], u["roomId"]) for u in users] == [
        (1, "admin", "admin", None),
        (2, "user", "user", 1),
    ]
    assert [(r["id"], r["name"], r["capacity"], r["active"]) for r in rooms] == [
        (1, "Main Conference Room", 20, True),
        (2, "Training Room", 10, False),
    ]


@pytest.mark.asyncio
async def test_user_crud(backend):
    user = await backend.create_user({"username": "dana", "password": "pw"})
    assert user["role"] == "user"
    assert user["roomId"] is None

    updated = await backend.update_user(user["id"], {"roomId": 3, "id": 99})
    assert updated["roomId"] == 3
    assert updated["id"] == user["id"]
    assert (await backend.get_user(user["id"]))["roomId"] == 3
    assert (await backend.get_user_by_username("dana"))["id"] == user["id"]

    assert await backend.delete_user(user["id"])
    assert not await backend.delete_user(user["id"])
    assert await backend.get_user(user["id"]) is None
    assert await backend.update_user(user["id"], {"roomId": 1}) is None


@pytest.mark.asyncio
async def test_room_defaults_and_lookup(backend):
    room = await backend.create_room({"name": "Dispatch"})
    assert room["capacity"] == 20
    assert room["encrypted"] is True
    assert (await backend.get_room_by_name("Dispatch"))["id"] == room["id"]
    assert await backend.get_room_by_name("Nowhere") is None


@pytest.mark.asyncio
async def test_recordings_by_user_and_room(backend):
    first = await backend.create_recording({"userId": 2, "roomId": 1, "fileName": "a.webm", "duration": 3})
    await backend.create_recording({"userId": 3, "roomId": 1, "fileName": "b.webm", "duration": 5})
    await backend.create_recording({"userId": 2, "roomId": 2, "fileName": "c.webm", "duration": 1})

    assert first["createdAt"]
    assert [r["fileName"] for r in await backend.get_recordings_by_user(2)] == ["a.webm", "c.webm"]
    assert [r["fileName"] for r in await backend.get_recordings_by_room(1)] == ["a.webm", "b.webm"]

    assert await backend.delete_recording(first["id"])
    assert await backend.get_recording(first["id"]) is None


@pytest.mark.asyncio
async def test_sessions(backend):
    token = await backend.create_session(7)
    assert await backend.get_session(token) == 7
    assert await backend.get_session("unknown") is None

    assert await backend.delete_session(token)
    assert await backend.get_session(token) is None


@pytest.mark.asyncio
async def test_redis_session_ttl_and_encoding():
    client = FakeRedis()
    backend = RedisBackend(client=client)

    token = await backend.create_session(4, ttl=60)
    assert client.expiry[f"onra:session:{token}"] == 60

    user = await backend.create_user({"username": "eve", "password": "pw", "roomId": 2})
    stored = client.hashes[f"onra:user:{user['id']}"]
    assert stored["roomId"] == "2"
    assert stored["authId"] == "null"
    assert client.sets["onra:users"] == {str(user["id"])}

    await backend.close()
    assert client.closed


def test_create_backend_modes():
    assert isinstance(create_backend("memory"), MemoryBackend)
    assert isinstance(create_backend("bogus"), MemoryBackend)
