from fastapi import APIRouter, Depends, HTTPException

from backend import StorageBackend
from logging_config import get_logger
from routers.deps import get_current_user, get_storage, parse_path_id, require_admin
from schemas.rooms import AssignUsersRequest, CreateRoomRequest, RoomResponse, UpdateRoomRequest

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api/rooms", tags=["rooms"])


@rooms_router.get("", response_model=list[RoomResponse])
async def list_rooms(user: dict = Depends(get_current_user), storage: StorageBackend = Depends(get_storage)):
    return await storage.get_all_rooms()


@rooms_router.post("", response_model=RoomResponse, status_code=201)
async def create_room(room: CreateRoomRequest, admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage)):
    logger.info(f"Room creation request from {admin['username']}, name: {room.name}, capacity: {room.capacity}")
    if await storage.get_room_by_name(room.name):
        logger.warning(f"Room creation failed: name {room.name} already exists")
        raise HTTPException(status_code=409, detail="Room with this name already exists")
    # Explicit nulls fall back to the store defaults
    created = await storage.create_room({k: v for k, v in room.model_dump().items() if v is not None})
    logger.info(f"Room {created['id']} created successfully: name={created['name']}")
    return created


@rooms_router.get("/{room_id}", response_model=RoomResponse)
async def get_room(room_id: str, user: dict = Depends(get_current_user), storage: StorageBackend = Depends(get_storage)):
    room = await storage.get_room(parse_path_id(room_id, "room"))
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@rooms_router.put("/{room_id}", response_model=RoomResponse)
async def update_room(room_id: str, body: UpdateRoomRequest, admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage)):
    rid = parse_path_id(room_id, "room")
    if not await storage.get_room(rid):
        raise HTTPException(status_code=404, detail="Room not found")
    # Every room field is required, so a null leaves it unchanged
    updated = await storage.update_room(rid, {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None})
    logger.info(f"Room {rid} updated by {admin['username']}")
    return updated


@rooms_router.delete("/{room_id}")
async def delete_room(room_id: str, admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage)):
    rid = parse_path_id(room_id, "room")
    if not await storage.delete_room(rid):
        raise HTTPException(status_code=404, detail="Room not found")
    logger.info(f"Room {rid} deleted by {admin['username']}")
    return {"message": "Room deleted successfully"}


@rooms_router.post("/{room_id}/assign-users")
async def assign_users(room_id: str, body: AssignUsersRequest, admin: dict = Depends(require_admin), storage: StorageBackend = Depends(get_storage)):
    """Replace the room's assigned users with `userIds`. Unknown ids are skipped."""
    rid = parse_path_id(room_id, "room")
    if not await storage.get_room(rid):
        raise HTTPException(status_code=404, detail="Room not found")

    for user in await storage.get_all_users():
        if user.get("roomId") == rid:
            await storage.update_user(user["id"], {"roomId": None})

    assigned = []
    for user_id in body.userIds:
        if await storage.get_user(user_id):
            await storage.update_user(user_id, {"roomId": rid})
            assigned.append(user_id)

    logger.info(f"Assigned users {assigned} to room {rid}")
    return {"message": "Users assigned to room successfully"}
