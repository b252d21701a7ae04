from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from backend import StorageBackend
from logging_config import get_logger
from routers.deps import get_current_user, get_storage, parse_path_id
from schemas.recordings import CreateRecordingRequest, RecordingResponse

logger = get_logger(__name__)

recordings_router = APIRouter(prefix="/api/recordings", tags=["recordings"])


@recordings_router.get("", response_model=list[RecordingResponse])
async def list_recordings(
    roomId: Optional[int] = Query(None, description="Admin only: recordings made in this room"),
    userId: Optional[int] = Query(None, description="Admin only: recordings made by this user"),
    user: dict = Depends(get_current_user),
    storage: StorageBackend = Depends(get_storage),
):
    """Admins may filter by room or user; everybody else only sees their own recordings."""
    if user.get("role") == "admin":
        if roomId is not None:
            return await storage.get_recordings_by_room(roomId)
        if userId is not None:
            return await storage.get_recordings_by_user(userId)
    return await storage.get_recordings_by_user(user["id"])


@recordings_router.post("", response_model=RecordingResponse, status_code=201)
async def create_recording(body: CreateRecordingRequest, user: dict = Depends(get_current_user), storage: StorageBackend = Depends(get_storage)):
    if body.userId != user["id"]:
        logger.warning(f"User {user['id']} tried to create a recording for user {body.userId}")
        raise HTTPException(status_code=403, detail="Cannot create recordings for other users")
    recording = await storage.create_recording(body.model_dump())
    logger.info(f"Recording {recording['id']} ({recording['fileName']}) stored for user {user['id']}")
    return recording


@recordings_router.delete("/{recording_id}")
async def delete_recording(recording_id: str, user: dict = Depends(get_current_user), storage: StorageBackend = Depends(get_storage)):
    rid = parse_path_id(recording_id, "recording")
    recording = await storage.get_recording(rid)
    if not recording:
        raise HTTPException(status_code=404, detail="Recording not found")
    if user.get("role") != "admin" and recording["userId"] != user["id"]:
        raise HTTPException(status_code=403, detail="Cannot delete recordings of other users")
    await storage.delete_recording(rid)
    return {"message": "Recording deleted successfully"}
