from fastapi import Depends, HTTPException, Request

from backend import StorageBackend
from constants import SESSION_COOKIE_NAME
from logging_config import get_logger

logger = get_logger(__name__)


def get_storage(request: Request) -> StorageBackend:
    return request.app.state.storage


def get_relay(request: Request):
    return request.app.state.relay


async def get_current_user(request: Request, storage: StorageBackend = Depends(get_storage)) -> dict:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user_id = await storage.get_session(token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = await storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        logger.warning(f"Admin access denied for user {user['id']}")
        raise HTTPException(status_code=403, detail="Forbidden: Admin access required")
    return user


def parse_path_id(raw: str, label: str) -> int:
    """Path ids are parsed by hand so a bad id is a 400 like the rest of the API."""
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID")


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password"}
