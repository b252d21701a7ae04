from pydantic import BaseModel
from typing import Optional


class CreateRoomRequest(BaseModel):
    name: str
    capacity: Optional[int] = 20
    active: Optional[bool] = True
    encrypted: Optional[bool] = True
    isolated: Optional[bool] = True

class UpdateRoomRequest(BaseModel):
    name: Optional[str] = None
    capacity: Optional[int] = None
    active: Optional[bool] = None
    encrypted: Optional[bool] = None
    isolated: Optional[bool] = None

class RoomResponse(BaseModel):
    id: int
    name: str
    capacity: int
    active: bool
    encrypted: bool
    isolated: bool

class AssignUsersRequest(BaseModel):
    userIds: list[int]
