import json
import secrets
from datetime import datetime
from typing import Dict, List, Optional

import redis.asyncio as redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, SESSION_TTL_SECONDS, STORAGE_MODE
from redis_keys import (
    REDIS_USER_KEY, REDIS_USERS_INDEX, REDIS_ROOM_KEY, REDIS_ROOMS_INDEX,
    REDIS_RECORDING_KEY, REDIS_RECORDINGS_INDEX, REDIS_COUNTER_KEY, REDIS_SESSION_KEY,
)
from logging_config import get_logger

logger = get_logger(__name__)

USER_DEFAULTS = {"role": "user", "roomId": None, "authId": None, "email": None, "fullName": None}
ROOM_DEFAULTS = {"capacity": 20, "active": True, "encrypted": True, "isolated": True}

DEFAULT_ADMIN = {
    "username": "admin",
    "password": "admin123",
    "email": "admin@onravoice.com",
    "fullName": "Admin User",
    "role": "admin",
    "roomId": None,
}
DEFAULT_USER = {
    "username": "user",
    "password": "User@123",
    "email": "user@onravoice.com",
    "fullName": "Demo User",
    "role": "user",
    "roomId": 1,
}
DEFAULT_ROOMS = [
    {"name": "Main Conference Room", "capacity": 20, "active": True, "encrypted": True, "isolated": True},
    {"name": "Training Room", "capacity": 10, "active": False, "encrypted": True, "isolated": True},
]


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


class StorageBackend:
    """Common behaviour shared by the in-memory and redis stores.

    Records are plain dicts using the camelCase field names of the JSON API.
    """

    mode = "base"

    async def seed_defaults(self):
        """Create the default admin, the two default rooms and the demo user if missing."""
        if not await self.get_user_by_username(DEFAULT_ADMIN["username"]):
            admin = await self.create_user(dict(DEFAULT_ADMIN))
            logger.info(f"Seeded admin user {admin['username']} (id={admin['id']})")

        for room in DEFAULT_ROOMS:
            if not await self.get_room_by_name(room["name"]):
                created = await self.create_room(dict(room))
                logger.info(f"Seeded room {created['name']} (id={created['id']})")

        if not await self.get_user_by_username(DEFAULT_USER["username"]):
            user = await self.create_user(dict(DEFAULT_USER))
            logger.info(f"Seeded demo user {user['username']} (id={user['id']})")

    async def get_user_by_username(self, username: str) -> Optional[dict]:
        for user in await self.get_all_users():
            if user["username"] == username:
                return user
        return None

    async def get_user_by_email(self, email: str) -> Optional[dict]:
        for user in await self.get_all_users():
            if user.get("email") == email:
                return user
        return None

    async def get_room_by_name(self, name: str) -> Optional[dict]:
        for room in await self.get_all_rooms():
            if room["name"] == name:
                return room
        return None

    async def get_recordings_by_user(self, user_id: int) -> List[dict]:
        return [r for r in await self.get_all_recordings() if r["userId"] == user_id]

    async def get_recordings_by_room(self, room_id: int) -> List[dict]:
        return [r for r in await self.get_all_recordings() if r["roomId"] == room_id]

    async def ping(self):
        pass

    async def close(self):
        pass


class MemoryBackend(StorageBackend):
    mode = "memory"

    def __init__(self):
        self.users: Dict[int, dict] = {}
        self.rooms: Dict[int, dict] = {}
        self.recordings: Dict[int, dict] = {}
        self.sessions: Dict[str, int] = {}
        self._next_ids = {"users": 1, "rooms": 1, "recordings": 1}
        logger.info("Initializing in-memory storage backend")

    def _allocate_id(self, entity: str) -> int:
        next_id = self._next_ids[entity]
        self._next_ids[entity] = next_id + 1
        return next_id

    # Users
    async def get_user(self, user_id: int) -> Optional[dict]:
        user = self.users.get(user_id)
        return dict(user) if user else None

    async def create_user(self, data: dict) -> dict:
        user = {**USER_DEFAULTS, **data, "id": self._allocate_id("users")}
        self.users[user["id"]] = user
        logger.debug(f"Created user {user['id']} ({user['username']})")
        return dict(user)

    async def update_user(self, user_id: int, changes: dict) -> Optional[dict]:
        user = self.users.get(user_id)
        if not user:
            return None
        user.update({k: v for k, v in changes.items() if k != "id"})
        logger.debug(f"Updated user {user_id}: {sorted(changes)}")
        return dict(user)

    async def delete_user(self, user_id: int) -> bool:
        return self.users.pop(user_id, None) is not None

    async def get_all_users(self) -> List[dict]:
        return [dict(self.users[k]) for k in sorted(self.users)]

    # Rooms
    async def get_room(self, room_id: int) -> Optional[dict]:
        room = self.rooms.get(room_id)
        return dict(room) if room else None

    async def create_room(self, data: dict) -> dict:
        room = {**ROOM_DEFAULTS, **data, "id": self._allocate_id("rooms")}
        self.rooms[room["id"]] = room
        logger.debug(f"Created room {room['id']} ({room['name']})")
        return dict(room)

    async def update_room(self, room_id: int, changes: dict) -> Optional[dict]:
        room = self.rooms.get(room_id)
        if not room:
            return None
        room.update({k: v for k, v in changes.items() if k != "id"})
        return dict(room)

    async def delete_room(self, room_id: int) -> bool:
        return self.rooms.pop(room_id, None) is not None

    async def get_all_rooms(self) -> List[dict]:
        return [dict(self.rooms[k]) for k in sorted(self.rooms)]

    # Recordings
    async def get_recording(self, recording_id: int) -> Optional[dict]:
        recording = self.recordings.get(recording_id)
        return dict(recording) if recording else None

    async def create_recording(self, data: dict) -> dict:
        recording = {**data, "id": self._allocate_id("recordings"), "createdAt": datetime.now().isoformat()}
        self.recordings[recording["id"]] = recording
        return dict(recording)

    async def delete_recording(self, recording_id: int) -> bool:
        return self.recordings.pop(recording_id, None) is not None

    async def get_all_recordings(self) -> List[dict]:
        return [dict(self.recordings[k]) for k in sorted(self.recordings)]

    # Sessions
    async def create_session(self, user_id: int, ttl: int = SESSION_TTL_SECONDS) -> str:
        # TTL is not enforced in memory; sessions live until logout or restart
        token = new_session_token()
        self.sessions[token] = user_id
        return token

    async def get_session(self, token: str) -> Optional[int]:
        return self.sessions.get(token)

    async def delete_session(self, token: str) -> bool:
        return self.sessions.pop(token, None) is not None


class RedisBackend(StorageBackend):
    """Stores each record as a redis hash with JSON encoded field values.

    An index set per entity lists the live ids and an INCR counter allocates new ones.
    """

    mode = "redis"

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True
        )
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    async def ping(self):
        try:
            await self.redis_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise

    @staticmethod
    def _encode(record: dict) -> dict:
        return {k: json.dumps(v) for k, v in record.items()}

    @staticmethod
    def _decode(data: dict) -> dict:
        result = {}
        for k, v in data.items():
            try:
                result[k] = json.loads(v)
            except (json.JSONDecodeError, TypeError):
                result[k] = v
        return result

    async def _get(self, key_template: str, record_id: int) -> Optional[dict]:
        data = await self.redis_client.hgetall(key_template.format(id=record_id))
        if not data:
            return None
        return self._decode(data)

    async def _create(self, entity: str, key_template: str, index_key: str, record: dict) -> dict:
        record_id = await self.redis_client.incr(REDIS_COUNTER_KEY.format(entity=entity))
        record = {**record, "id": record_id}
        await self.redis_client.hset(key_template.format(id=record_id), mapping=self._encode(record))
        await self.redis_client.sadd(index_key, record_id)
        logger.debug(f"Created {entity} record {record_id}")
        return record

    async def _update(self, key_template: str, record_id: int, changes: dict) -> Optional[dict]:
        current = await self._get(key_template, record_id)
        if current is None:
            return None
        changes = {k: v for k, v in changes.items() if k != "id"}
        if changes:
            await self.redis_client.hset(key_template.format(id=record_id), mapping=self._encode(changes))
        return {**current, **changes}

    async def _delete(self, key_template: str, index_key: str, record_id: int) -> bool:
        deleted = await self.redis_client.delete(key_template.format(id=record_id))
        await self.redis_client.srem(index_key, record_id)
        return bool(deleted)

    async def _all(self, key_template: str, index_key: str) -> List[dict]:
        ids = sorted(int(i) for i in await self.redis_client.smembers(index_key))
        records = []
        for record_id in ids:
            record = await self._get(key_template, record_id)
            if record is not None:
                records.append(record)
        return records

    # Users
    async def get_user(self, user_id: int) -> Optional[dict]:
        return await self._get(REDIS_USER_KEY, user_id)

    async def create_user(self, data: dict) -> dict:
        return await self._create("users", REDIS_USER_KEY, REDIS_USERS_INDEX, {**USER_DEFAULTS, **data})

    async def update_user(self, user_id: int, changes: dict) -> Optional[dict]:
        return await self._update(REDIS_USER_KEY, user_id, changes)

    async def delete_user(self, user_id: int) -> bool:
        return await self._delete(REDIS_USER_KEY, REDIS_USERS_INDEX, user_id)

    async def get_all_users(self) -> List[dict]:
        return await self._all(REDIS_USER_KEY, REDIS_USERS_INDEX)

    # Rooms
    async def get_room(self, room_id: int) -> Optional[dict]:
        return await self._get(REDIS_ROOM_KEY, room_id)

    async def create_room(self, data: dict) -> dict:
        return await self._create("rooms", REDIS_ROOM_KEY, REDIS_ROOMS_INDEX, {**ROOM_DEFAULTS, **data})

    async def update_room(self, room_id: int, changes: dict) -> Optional[dict]:
        return await self._update(REDIS_ROOM_KEY, room_id, changes)

    async def delete_room(self, room_id: int) -> bool:
        return await self._delete(REDIS_ROOM_KEY, REDIS_ROOMS_INDEX, room_id)

    async def get_all_rooms(self) -> List[dict]:
        return await self._all(REDIS_ROOM_KEY, REDIS_ROOMS_INDEX)

    # Recordings
    async def get_recording(self, recording_id: int) -> Optional[dict]:
        return await self._get(REDIS_RECORDING_KEY, recording_id)

    async def create_recording(self, data: dict) -> dict:
        record = {**data, "createdAt": datetime.now().isoformat()}
        return await self._create("recordings", REDIS_RECORDING_KEY, REDIS_RECORDINGS_INDEX, record)

    async def delete_recording(self, recording_id: int) -> bool:
        return await self._delete(REDIS_RECORDING_KEY, REDIS_RECORDINGS_INDEX, recording_id)

    async def get_all_recordings(self) -> List[dict]:
        return await self._all(REDIS_RECORDING_KEY, REDIS_RECORDINGS_INDEX)

    # Sessions
    async def create_session(self, user_id: int, ttl: int = SESSION_TTL_SECONDS) -> str:
        token = new_session_token()
        await self.redis_client.set(REDIS_SESSION_KEY.format(token=token), user_id, ex=ttl)
        logger.debug(f"Created session for user {user_id} with TTL {ttl} seconds")
        return token

    async def get_session(self, token: str) -> Optional[int]:
        value = await self.redis_client.get(REDIS_SESSION_KEY.format(token=token))
        return int(value) if value is not None else None

    async def delete_session(self, token: str) -> bool:
        return bool(await self.redis_client.delete(REDIS_SESSION_KEY.format(token=token)))

    async def close(self):
        await self.redis_client.aclose()


def create_backend(mode: str = STORAGE_MODE) -> StorageBackend:
    """Build the store selected by STORAGE_MODE."""
    if mode == "redis":
        return RedisBackend()
    if mode != "memory":
        logger.warning(f"Unknown storage mode '{mode}', falling back to memory")
    return MemoryBackend()
