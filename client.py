"""Reference relay client.

Authenticates on every (re)connect, rejoins the WebRTC rooms it was in, and
hands incoming frames to registered listeners and to its CallSession.
"""
import asyncio
import json
from typing import Callable, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from call_session import CallSession
from logging_config import get_logger

logger = get_logger(__name__)

RETRY_INTERVAL_SECONDS = 3.0
RETRY_BACKOFF_FACTOR = 1.5
MAX_RETRIES = 5


class RelayAuthError(Exception):
    pass


class RelayClient:
    def __init__(
        self,
        url: str,
        user_id: int,
        retry_interval: float = RETRY_INTERVAL_SECONDS,
        max_retries: int = MAX_RETRIES,
        connect: Callable = websockets.connect,
    ):
        self.url = url
        self.user_id = user_id
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self._connect = connect
        self.websocket = None
        self.username: Optional[str] = None
        self.joined_rooms: Set[int] = set()
        self.listeners: List[Callable[[dict], None]] = []
        self.call_session = CallSession(self.send)
        self._closing = False

    def on_message(self, listener: Callable[[dict], None]):
        self.listeners.append(listener)

    def remove_listener(self, listener: Callable[[dict], None]):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def retry_delay(self, attempt: int) -> float:
        return self.retry_interval * (RETRY_BACKOFF_FACTOR ** attempt)

    async def connect(self):
        """Open the socket, authenticate, and rejoin remembered rooms."""
        logger.info(f"Connecting to relay at {self.url} as user {self.user_id}")
        self.websocket = await self._connect(self.url)
        try:
            await self._authenticate()
        except (RelayAuthError, ConnectionClosed):
            await self._drop_socket()
            raise
        logger.info(f"Authenticated with relay as {self.username}")

        for room_id in sorted(self.joined_rooms):
            await self.send({"type": "webrtc_join_room", "roomId": room_id, "userId": self.user_id})

    async def _authenticate(self):
        await self.websocket.send(json.dumps({"type": "auth", "userId": self.user_id}))
        while True:
            try:
                raw = await self.websocket.recv()
            except ConnectionClosed as e:
                raise RelayAuthError(f"Relay closed the connection during auth: {e}") from e
            message = json.loads(raw)
            if message.get("type") == "auth_success":
                self.username = message.get("username")
                return
            if message.get("type") == "error":
                raise RelayAuthError(message.get("message", "Authentication failed"))
            self._dispatch(message)

    async def _drop_socket(self):
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Error closing relay socket: {e}")

    async def send(self, message: dict) -> bool:
        if self.websocket is None:
            logger.warning(f"Relay not connected, dropping {message.get('type')}")
            return False
        try:
            await self.websocket.send(json.dumps(message))
            return True
        except ConnectionClosed as e:
            logger.warning(f"Relay connection closed while sending {message.get('type')}: {e}")
            return False

    async def join_room(self, room_id: int):
        self.joined_rooms.add(room_id)
        await self.send({"type": "webrtc_join_room", "roomId": room_id, "userId": self.user_id})

    async def leave_room(self, room_id: int):
        self.joined_rooms.discard(room_id)
        await self.send({"type": "webrtc_leave_room", "roomId": room_id, "userId": self.user_id})

    async def run(self):
        """Receive until close() is called, reconnecting with exponential backoff."""
        attempt = 0
        while not self._closing:
            try:
                if self.websocket is None:
                    await self.connect()
                attempt = 0
                async for raw in self.websocket:
                    try:
                        message = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.error(f"Error parsing relay message: {raw!r}")
                        continue
                    self._dispatch(message)
            except RelayAuthError as e:
                logger.warning(f"Relay authentication failed: {e}")
            except (ConnectionClosed, OSError) as e:
                logger.info(f"Relay connection lost: {e}")
            await self._drop_socket()
            if self._closing:
                break
            if attempt >= self.max_retries:
                logger.error("Maximum relay reconnection attempts reached")
                break
            delay = self.retry_delay(attempt)
            attempt += 1
            logger.info(f"Attempting reconnection in {delay:.1f}s (attempt {attempt}/{self.max_retries})")
            await asyncio.sleep(delay)

    def _dispatch(self, message: dict):
        if str(message.get("type") or "").startswith("call-"):
            self.call_session.handle_message(message)
        for listener in list(self.listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Error in message listener: {e}", exc_info=True)

    async def close(self):
        self._closing = True
        await self._drop_socket()
