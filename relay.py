"""WebSocket signaling relay.

Binds sockets to authenticated user ids, tracks WebRTC room membership, and
forwards call-control, WebRTC signaling and push-to-talk audio between users.
All state lives on a SignalingRelay instance; nothing is persisted and every
client must re-authenticate and rejoin rooms after a restart.
"""
import asyncio
import json
import uuid
from typing import Dict, Iterable, List, Optional, Set

from fastapi import WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from constants import WS_CLOSE_POLICY_VIOLATION
from logging_config import get_logger
from schemas.messages import AllAdmins, BroadcastMessage, Target, UserTarget, parse_int, parse_target

logger = get_logger(__name__)

SIGNALING_PAYLOAD_KEYS = {
    "webrtc_offer": "offer",
    "webrtc_answer": "answer",
    "webrtc_ice_candidate": "candidate",
}

CALL_CONTROL_TYPES = ("call-request", "call-accepted", "call-rejected", "call-ended")


class Connection:
    """One live socket and the identity bound to it by `auth`."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.connection_id = connection_id or str(uuid.uuid4())
        self.user: Optional[dict] = None
        self.closed = False
        self.released = False

    @property
    def user_id(self) -> Optional[int]:
        return self.user["id"] if self.user else None

    @property
    def authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_open(self) -> bool:
        if self.closed:
            return False
        application_state = getattr(self.websocket, "application_state", WebSocketState.CONNECTED)
        client_state = getattr(self.websocket, "client_state", WebSocketState.CONNECTED)
        return application_state == WebSocketState.CONNECTED and client_state == WebSocketState.CONNECTED

    async def send(self, message: dict) -> bool:
        """Best-effort send. Returns False instead of raising when the socket is gone."""
        if not self.is_open:
            return False
        try:
            await self.websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            logger.warning(f"Error sending {message.get('type')} to connection {self.connection_id} (user {self.user_id}): {e}")
            return False

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing WebSocket {self.connection_id}: {e}")


class ConnectionRegistry:
    """user id -> the single live Connection for that user (last auth wins)."""

    def __init__(self):
        self._connections: Dict[int, Connection] = {}

    def register(self, user_id: int, connection: Connection) -> Optional[Connection]:
        """Bind user_id to connection and return the connection it replaced, if any."""
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection
        if previous is connection:
            return None
        return previous

    def unregister(self, user_id: int, connection: Connection) -> bool:
        # A replaced connection must not evict its successor
        if self._connections.get(user_id) is not connection:
            return False
        del self._connections[user_id]
        return True

    def get(self, user_id: int) -> Optional[Connection]:
        return self._connections.get(user_id)

    def user_ids(self) -> List[int]:
        return sorted(self._connections)

    def __contains__(self, user_id) -> bool:
        return user_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)


class RoomMembership:
    """room id -> user ids currently signaling in that room. Empty rooms are dropped."""

    def __init__(self):
        self._rooms: Dict[int, Set[int]] = {}

    def join(self, room_id: int, user_id: int) -> Set[int]:
        """Add user_id and return the other members."""
        members = self._rooms.setdefault(room_id, set())
        members.add(user_id)
        return members - {user_id}

    def leave(self, room_id: int, user_id: int) -> Optional[Set[int]]:
        """Remove user_id and return the remaining members, or None if it was not a member."""
        members = self._rooms.get(room_id)
        if members is None or user_id not in members:
            return None
        members.discard(user_id)
        if not members:
            del self._rooms[room_id]
        return set(members)

    def remove_everywhere(self, user_id: int) -> Dict[int, Set[int]]:
        """Remove user_id from every room. Returns {room_id: remaining members}."""
        left = {}
        for room_id in [r for r, members in self._rooms.items() if user_id in members]:
            left[room_id] = self.leave(room_id, user_id)
        return left

    def participants(self, room_id: int) -> List[int]:
        return sorted(self._rooms.get(room_id, ()))

    def snapshot(self) -> Dict[int, List[int]]:
        return {room_id: sorted(members) for room_id, members in self._rooms.items()}

    def __contains__(self, room_id) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)


class SignalingRelay:
    """Routes relay messages by `type`.

    `storage` is the user store; only get_user() and get_all_users() are used.
    """

    def __init__(self, storage, registry: Optional[ConnectionRegistry] = None, rooms: Optional[RoomMembership] = None):
        self.storage = storage
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.rooms = rooms if rooms is not None else RoomMembership()
        self._handlers = {
            "broadcast": self._handle_broadcast,
            "webrtc_join_room": self._handle_join_room,
            "webrtc_leave_room": self._handle_leave_room,
            "webrtc_get_participants": self._handle_get_participants,
        }
        for message_type in SIGNALING_PAYLOAD_KEYS:
            self._handlers[message_type] = self._handle_signaling
        for message_type in CALL_CONTROL_TYPES:
            self._handlers[message_type] = self._handle_call_control

    def connect(self, websocket: WebSocket) -> Connection:
        connection = Connection(websocket)
        logger.debug(f"Opened relay connection {connection.connection_id}")
        return connection

    async def serve(self, websocket: WebSocket):
        """Accept the socket and process its frames serially until it closes."""
        await websocket.accept()
        connection = self.connect(websocket)
        try:
            while not connection.closed:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.debug(f"WebSocket disconnected for connection {connection.connection_id}")
                    break
                text = message.get("text")
                if text is None and message.get("bytes") is not None:
                    text = message["bytes"].decode("utf-8", errors="replace")
                if text is None:
                    continue
                await self.handle_text(connection, text)
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection.connection_id} (user {connection.user_id}): {e}", exc_info=True)
        finally:
            # Cleanup must finish even when the handler task itself is cancelled
            await asyncio.shield(self.disconnect(connection))

    async def handle_text(self, connection: Connection, text: str):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            logger.warning(f"Malformed frame from connection {connection.connection_id}")
            await connection.send({"type": "error", "message": "Invalid message format"})
            return
        await self.handle_message(connection, data)

    async def handle_message(self, connection: Connection, data: dict):
        message_type = data.get("type")
        if message_type == "auth":
            await self._handle_auth(connection, data)
            return

        if not connection.authenticated:
            logger.warning(f"Rejected {message_type} from unauthenticated connection {connection.connection_id}")
            await connection.send({"type": "error", "message": "Not authenticated"})
            return

        handler = self._handlers.get(message_type)
        if handler is None:
            logger.debug(f"Ignoring unknown message type {message_type!r} from user {connection.user_id}")
            return

        try:
            await handler(connection, data)
        except Exception as e:
            logger.error(f"Error handling {message_type} from user {connection.user_id}: {e}", exc_info=True)
            await connection.send({"type": "error", "message": f"Failed to process {message_type}"})

    async def disconnect(self, connection: Connection):
        """Release the connection's identity and room memberships. Runs once per connection."""
        if connection.released:
            return
        connection.released = True
        connection.closed = True
        await self._release(connection)
        if connection.user:
            logger.info(f"User {connection.user['username']} disconnected from WebSocket")

    async def drop_user(self, user_id: int) -> bool:
        """Close and release the live connection of a user that was removed from the store."""
        connection = self.registry.get(user_id)
        if connection is None:
            return False
        logger.info(f"Closing relay connection {connection.connection_id} of deleted user {user_id}")
        await connection.close(code=WS_CLOSE_POLICY_VIOLATION, reason="User deleted")
        await self.disconnect(connection)
        return True

    def online_user_ids(self) -> List[int]:
        return self.registry.user_ids()

    def stats(self) -> dict:
        return {"connections": len(self.registry), "rooms": len(self.rooms)}

    # Auth

    async def _handle_auth(self, connection: Connection, data: dict):
        user_id = parse_int(data.get("userId"))
        if user_id is None:
            logger.warning(f"Auth rejected for connection {connection.connection_id}: invalid user id {data.get('userId')!r}")
            await connection.close(code=WS_CLOSE_POLICY_VIOLATION, reason="Invalid user ID")
            return

        try:
            user = await self.storage.get_user(user_id)
        except Exception as e:
            logger.error(f"User lookup failed during auth for user {user_id}: {e}", exc_info=True)
            await connection.send({"type": "error", "message": "Failed to verify user"})
            return

        if not user:
            logger.warning(f"Auth rejected for connection {connection.connection_id}: user {user_id} not found")
            await connection.close(code=WS_CLOSE_POLICY_VIOLATION, reason="User not found")
            return

        if connection.authenticated and connection.user_id != user_id:
            await self._release(connection)

        connection.user = user
        previous = self.registry.register(user_id, connection)
        if previous is not None:
            logger.info(f"User {user_id} re-authenticated, closing stale connection {previous.connection_id}")
            await previous.close(code=WS_CLOSE_POLICY_VIOLATION, reason="Replaced by new connection")

        logger.info(f"User {user['username']} connected via WebSocket")
        await connection.send({"type": "auth_success", "userId": user["id"], "username": user["username"]})

    async def _release(self, connection: Connection):
        user_id = connection.user_id
        if user_id is None or not self.registry.unregister(user_id, connection):
            return
        # Registry and rooms are both cleared before the first await
        left = self.rooms.remove_everywhere(user_id)
        notify: Set[int] = set()
        for room_id, remaining in left.items():
            logger.info(f"User {user_id} removed from room {room_id} ({len(remaining)} remaining)")
            notify |= remaining
        await self._deliver(notify, {"type": "webrtc_user_left", "userId": user_id})

    # Room membership

    async def _handle_join_room(self, connection: Connection, data: dict):
        room_id = parse_int(data.get("roomId"))
        if room_id is None:
            await connection.send({"type": "error", "message": "Invalid room ID"})
            return
        self._warn_on_claimed_identity(connection, data)

        others = self.rooms.join(room_id, connection.user_id)
        logger.info(f"User {connection.user_id} joined room {room_id} ({len(others) + 1} participants)")
        await self._deliver(others, {"type": "webrtc_user_joined", "userId": connection.user_id})

    async def _handle_leave_room(self, connection: Connection, data: dict):
        room_id = parse_int(data.get("roomId"))
        if room_id is None:
            return
        self._warn_on_claimed_identity(connection, data)

        remaining = self.rooms.leave(room_id, connection.user_id)
        if remaining is None:
            return
        logger.info(f"User {connection.user_id} left room {room_id} ({len(remaining)} remaining)")
        await self._deliver(remaining, {"type": "webrtc_user_left", "userId": connection.user_id})

    async def _handle_get_participants(self, connection: Connection, data: dict):
        room_id = parse_int(data.get("roomId"))
        participants = self.rooms.participants(room_id) if room_id is not None else []
        await connection.send({"type": "webrtc_participants", "roomId": room_id, "participants": participants})

    def _warn_on_claimed_identity(self, connection: Connection, data: dict):
        claimed = data.get("userId")
        if claimed is not None and parse_int(claimed) != connection.user_id:
            logger.warning(f"Connection for user {connection.user_id} claimed userId {claimed!r}; using authenticated id")

    # Point-to-point signaling

    async def _handle_signaling(self, connection: Connection, data: dict):
        message_type = data["type"]
        target_id = parse_int(data.get("to"))
        if target_id is None:
            logger.debug(f"Dropping {message_type} from user {connection.user_id}: invalid target {data.get('to')!r}")
            return
        payload_key = SIGNALING_PAYLOAD_KEYS[message_type]
        forwarded = {"type": message_type, payload_key: data.get(payload_key), "from": connection.user_id}
        if not await self._send_to_user(target_id, forwarded):
            logger.debug(f"Dropped {message_type} from user {connection.user_id}: user {target_id} not connected")

    # Call control

    async def _handle_call_control(self, connection: Connection, data: dict):
        target = parse_target(data.get("targetUserId"))
        if target is None:
            logger.debug(f"Dropping {data['type']} from user {connection.user_id}: invalid target {data.get('targetUserId')!r}")
            return
        recipients = await self._resolve_target(target, sender_id=connection.user_id)
        message = {**data, "fromUserId": connection.user_id}
        delivered = await self._deliver(recipients, message)
        logger.info(f"Relayed {data['type']} from user {connection.user_id} to {delivered} recipient(s)")

    async def _resolve_target(self, target: Target, sender_id: int) -> List[int]:
        if isinstance(target, UserTarget):
            return [target.user_id] if target.user_id in self.registry else []
        if isinstance(target, AllAdmins):
            users = await self.storage.get_all_users()
            return sorted(
                u["id"] for u in users
                if u.get("role") == "admin" and u["id"] != sender_id and u["id"] in self.registry
            )
        return []

    # Push-to-talk broadcast

    async def _handle_broadcast(self, connection: Connection, data: dict):
        try:
            message = BroadcastMessage.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid broadcast from user {connection.user_id}: {e}")
            await connection.send({"type": "error", "message": "Invalid broadcast message"})
            return
        if not message.audio:
            return

        # Role and room come from the store, never from the frame
        sender = await self.storage.get_user(connection.user_id)
        if sender is None:
            logger.warning(f"Dropping broadcast from user {connection.user_id}: user no longer exists")
            await connection.send({"type": "error", "message": "User not found"})
            return
        users = await self.storage.get_all_users()
        recipients, room_id = self._broadcast_scope(sender, message, users)

        outgoing = {
            "type": "admin-broadcast",
            "audio": message.audio,
            "from": sender["username"],
            "fromUserId": sender["id"],
            "roomId": room_id,
            "directMessage": message.directMessage,
            "fromAdmin": sender.get("role") == "admin",
        }
        if message.voiceEffect:
            outgoing["voiceEffect"] = message.voiceEffect
        if message.directMessage:
            outgoing["targetUserId"] = parse_int(message.targetUserId)

        delivered = await self._deliver(recipients, outgoing)
        logger.debug(f"Broadcast from user {sender['id']} delivered to {delivered}/{len(recipients)} recipient(s)")

    def _broadcast_scope(self, sender: dict, message: BroadcastMessage, users: List[dict]):
        """Return (connected recipient ids, room id the broadcast is scoped to)."""
        is_admin = sender.get("role") == "admin"
        admins = {u["id"] for u in users if u.get("role") == "admin"}
        target_user = parse_int(message.targetUserId)
        room_id = None

        if message.directMessage and target_user is not None:
            if is_admin or target_user in admins:
                ids = {target_user}
            else:
                logger.warning(f"User {sender['id']} attempted direct talk to non-admin user {target_user}")
                ids = set()
        elif is_admin:
            room_id = parse_int(message.roomId) or None
            if room_id:
                ids = {u["id"] for u in users if u.get("roomId") == room_id}
            else:
                ids = {u["id"] for u in users}
            if message.targetAdmins:
                ids |= admins
        else:
            claimed_room = parse_int(message.roomId)
            room_id = sender.get("roomId")
            if claimed_room and claimed_room != room_id:
                logger.warning(f"User {sender['id']} claimed room {claimed_room} for broadcast; scoping to assigned room {room_id}")
            if message.targetAdmins or not room_id:
                room_id = None
                ids = set(admins)
            else:
                ids = {u["id"] for u in users if u.get("roomId") == room_id}

        ids.discard(sender["id"])
        return sorted(uid for uid in ids if uid in self.registry), room_id

    # Delivery

    async def _send_to_user(self, user_id: int, message: dict) -> bool:
        connection = self.registry.get(user_id)
        if connection is None or not connection.is_open:
            return False
        return await connection.send(message)

    async def _deliver(self, user_ids: Iterable[int], message: dict) -> int:
        """Send message to each user id. A failed send never stops the rest."""
        delivered = 0
        for user_id in sorted(user_ids):
            if await self._send_to_user(user_id, message):
                delivered += 1
        return delivered
