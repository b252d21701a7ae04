from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from backend import StorageBackend, create_backend
from constants import CORS_ORIGINS, SEED_DEFAULT_DATA
from relay import SignalingRelay
from routers.auth import auth_router
from routers.users import users_router
from routers.rooms import rooms_router
from routers.recordings import recordings_router
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def create_app(backend: Optional[StorageBackend] = None, seed: bool = SEED_DEFAULT_DATA) -> FastAPI:
    """Build the API and relay around one store.

    The relay's connection registry and room table belong to this app instance
    and start empty; clients re-authenticate and rejoin after every restart.
    """
    storage = backend if backend is not None else create_backend()
    relay = SignalingRelay(storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await storage.ping()
        if seed:
            await storage.seed_defaults()
        logger.info(f"Storage backend ready: {storage.mode}")
        yield
        await storage.close()
        logger.info("Storage backend closed")

    app = FastAPI(title="Onra Voice", lifespan=lifespan)
    app.state.storage = storage
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(rooms_router)
    app.include_router(recordings_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "storage": storage.mode, **relay.stats()}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Push-to-talk, call-control and WebRTC signaling relay. Send `auth` first."""
        logger.info(f"WebSocket connection attempt from {websocket.client.host if websocket.client else 'unknown'}")
        await relay.serve(websocket)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
