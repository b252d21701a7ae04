from fastapi import APIRouter, Depends, HTTPException, Request, Response

from backend import StorageBackend
from constants import SESSION_COOKIE_NAME, SESSION_TTL_SECONDS
from logging_config import get_logger
from routers.deps import get_storage
from schemas.users import CurrentUserResponse, LoginRequest

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


def current_user_payload(user: dict) -> CurrentUserResponse:
    return CurrentUserResponse(
        id=user["id"],
        username=user["username"],
        fullName=user.get("fullName"),
        role=user["role"],
        roomId=user.get("roomId"),
    )


@auth_router.post("/login", response_model=CurrentUserResponse)
async def login(credentials: LoginRequest, response: Response, storage: StorageBackend = Depends(get_storage)):
    if not credentials.username or not credentials.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    user = await storage.get_user_by_username(credentials.username)
    if not user or user.get("password") != credentials.password:
        logger.warning(f"Login failed for username {credentials.username}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = await storage.create_session(user["id"], ttl=SESSION_TTL_SECONDS)
    response.set_cookie(SESSION_COOKIE_NAME, token, max_age=SESSION_TTL_SECONDS, httponly=True, samesite="lax")
    logger.info(f"User {user['username']} logged in")
    return current_user_payload(user)


@auth_router.post("/logout")
async def logout(request: Request, response: Response, storage: StorageBackend = Depends(get_storage)):
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        await storage.delete_session(token)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"message": "Logged out successfully"}


@auth_router.get("/current", response_model=CurrentUserResponse)
async def current_user(request: Request, storage: StorageBackend = Depends(get_storage)):
    token = request.cookies.get(SESSION_COOKIE_NAME)
    user_id = await storage.get_session(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await storage.get_user(user_id)
    if not user:
        await storage.delete_session(token)
        raise HTTPException(status_code=401, detail="User not found")
    return current_user_payload(user)
