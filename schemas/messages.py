from pydantic import BaseModel, ConfigDict
from typing import Any, Optional, Union

ADMIN_TARGET = "admin"  # call-control sentinel: every connected admin


class UserTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int

class AllAdmins(BaseModel):
    model_config = ConfigDict(frozen=True)


Target = Union[UserTarget, AllAdmins]


class BroadcastMessage(BaseModel):
    """Inbound push-to-talk frame. Scope fields are hints; the relay re-derives them."""
    model_config = ConfigDict(extra="ignore")

    audio: Optional[str] = None
    userId: Optional[Any] = None
    roomId: Optional[Any] = None
    voiceEffect: Optional[str] = None
    targetUserId: Optional[Any] = None
    directMessage: bool = False
    fromAdmin: bool = False
    targetAdmins: bool = False


def parse_int(raw: Any) -> Optional[int]:
    """Parse a numeric id from JSON (int or digit string). Returns None when it is not one."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str):
        value = raw.strip()
        if value.lstrip("-").isdigit():
            return int(value)
    return None


def parse_target(raw: Any) -> Optional[Target]:
    if isinstance(raw, str) and raw.strip().lower() == ADMIN_TARGET:
        return AllAdmins()
    user_id = parse_int(raw)
    if user_id is None:
        return None
    return UserTarget(user_id=user_id)
