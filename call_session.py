"""Client-side call state shared by the admin and user sides.

The relay forwards call-control messages without tracking them; the state
machine (idle -> pending -> accepted | rejected -> idle) and its request
timeout live here so every caller uses the same rules.
"""
import asyncio
from enum import Enum
from typing import Any, Callable, Optional

from logging_config import get_logger
from schemas.messages import ADMIN_TARGET, parse_int

logger = get_logger(__name__)

CALL_REQUEST_TIMEOUT_SECONDS = 30.0


class CallState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class CallSessionError(Exception):
    pass


class CallSession:
    def __init__(
        self,
        send: Callable[[dict], Any],
        request_timeout: float = CALL_REQUEST_TIMEOUT_SECONDS,
        on_change: Optional[Callable[[CallState, CallState], None]] = None,
    ):
        self._send = send
        self.request_timeout = request_timeout
        self.on_change = on_change
        self.state = CallState.IDLE
        self.from_user_id: Optional[int] = None
        self.target: Any = None
        self.peer_user_id: Optional[int] = None
        self.timed_out = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending_sends = set()

    def _emit(self, message: dict):
        result = self._send(message)
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending_sends.add(task)
            task.add_done_callback(self._pending_sends.discard)

    def _transition(self, new_state: CallState):
        old_state = self.state
        if new_state != CallState.PENDING:
            self._cancel_timer()
        self.state = new_state
        logger.debug(f"Call session {old_state.value} -> {new_state.value}")
        if self.on_change and old_state != new_state:
            self.on_change(old_state, new_state)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def request(self, from_user_id: int, from_user_name: str, target: Any = ADMIN_TARGET):
        """Send a call-request and arm the request timeout. Needs a running event loop."""
        if self.state != CallState.IDLE:
            raise CallSessionError(f"Cannot request a call while {self.state.value}")
        self.from_user_id = from_user_id
        self.target = target
        self.peer_user_id = None
        self.timed_out = False
        self._emit({
            "type": "call-request",
            "fromUserId": from_user_id,
            "fromUserName": from_user_name,
            "targetUserId": target,
        })
        self._transition(CallState.PENDING)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.request_timeout, self._on_timeout)

    def _on_timeout(self):
        self._timer = None
        if self.state != CallState.PENDING:
            return
        logger.info(f"Call request from user {self.from_user_id} timed out after {self.request_timeout}s")
        self.timed_out = True
        self._transition(CallState.IDLE)

    def handle_message(self, message: dict) -> bool:
        """Apply an incoming call-control message. Returns True if the state changed."""
        message_type = message.get("type")
        before = self.state
        if message_type == "call-accepted" and self.state == CallState.PENDING:
            self.peer_user_id = parse_int(message.get("fromUserId"))
            self._transition(CallState.ACCEPTED)
        elif message_type == "call-rejected" and self.state == CallState.PENDING:
            self.peer_user_id = parse_int(message.get("fromUserId"))
            self._transition(CallState.REJECTED)
        elif message_type == "call-ended" and self.state != CallState.IDLE:
            self._transition(CallState.IDLE)
        return self.state != before

    def cancel(self):
        if self.state != CallState.PENDING:
            return
        self._emit({"type": "call-ended", "fromUserId": self.from_user_id, "targetUserId": self.target})
        self._transition(CallState.IDLE)

    def end(self):
        if self.state == CallState.ACCEPTED:
            target = self.peer_user_id if self.peer_user_id is not None else self.target
            self._emit({"type": "call-ended", "fromUserId": self.from_user_id, "targetUserId": target})
        if self.state in (CallState.ACCEPTED, CallState.REJECTED):
            self._transition(CallState.IDLE)

    # Answering side

    def accept(self, request: dict, user_id: int):
        self._answer("call-accepted", request, user_id)

    def reject(self, request: dict, user_id: int):
        self._answer("call-rejected", request, user_id)

    def _answer(self, message_type: str, request: dict, user_id: int):
        requester = parse_int(request.get("fromUserId"))
        if requester is None:
            raise CallSessionError("Call request has no valid fromUserId")
        self._emit({"type": message_type, "fromUserId": user_id, "targetUserId": requester})
