from fastapi import APIRouter, Depends, HTTPException

from backend import StorageBackend
from logging_config import get_logger
from routers.deps import get_current_user, get_relay, get_storage, parse_path_id, public_user, require_admin
from schemas.users import CreateUserRequest, UpdateUserRequest, UserResponse

logger = get_logger(__name__)

users_router = APIRouter(prefix="/api", tags=["users"])

NULLABLE_USER_FIELDS = {"email", "fullName", "roomId"}


@users_router.get("/users", response_model=list[UserResponse])
async def list_users(admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage)):
    return [public_user(u) for u in await storage.get_all_users()]


@users_router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(body: CreateUserRequest, admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage)):
    if await storage.get_user_by_username(body.username):
        raise HTTPException(status_code=409, detail="Username already exists")
    if body.email and await storage.get_user_by_email(body.email):
        raise HTTPException(status_code=409, detail="Email already exists")
    user = await storage.create_user(body.model_dump())
    logger.info(f"Admin {admin['username']} created user {user['username']} (id={user['id']})")
    return public_user(user)


@users_router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, current: dict = Depends(get_current_user), storage: StorageBackend = Depends(get_storage)):
    user = await storage.get_user(parse_path_id(user_id, "user"))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)


@users_router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(user_id: str, body: UpdateUserRequest, admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage)):
    uid = parse_path_id(user_id, "user")
    if not await storage.get_user(uid):
        raise HTTPException(status_code=404, detail="User not found")
    # Only the optional profile fields and roomId may be cleared with null
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k in NULLABLE_USER_FIELDS}
    updated = await storage.update_user(uid, changes)
    logger.info(f"Admin {admin['username']} updated user {uid}")
    return public_user(updated)


@users_router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage), relay=Depends(get_relay)):
    uid = parse_path_id(user_id, "user")
    if not await storage.delete_user(uid):
        raise HTTPException(status_code=404, detail="User not found")
    await relay.drop_user(uid)
    logger.info(f"Admin {admin['username']} deleted user {uid}")
    return {"message": "User deleted successfully"}


@users_router.get("/online-users")
async def online_users(admin: dict = Depends(require_admin), relay=Depends(get_relay)):
    """Ids of users that currently hold an authenticated relay connection."""
    return {"userIds": relay.online_user_ids()}
