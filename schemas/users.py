from pydantic import BaseModel
from typing import Literal, Optional


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None

class CurrentUserResponse(BaseModel):
    id: int
    username: str
    fullName: Optional[str] = None
    role: str
    roomId: Optional[int] = None

class CreateUserRequest(BaseModel):
    username: str
    password: str
    email: Optional[str] = None
    fullName: Optional[str] = None
    role: Literal["admin", "user"] = "user"
    roomId: Optional[int] = None
    authId: Optional[str] = None

class UpdateUserRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None
    fullName: Optional[str] = None
    role: Optional[Literal["admin", "user"]] = None
    roomId: Optional[int] = None

class UserResponse(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    fullName: Optional[str] = None
    role: str
    roomId: Optional[int] = None
    authId: Optional[str] = None
