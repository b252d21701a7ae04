import uvicorn
import os
from logging_config import setup_logging

# Logging must be configured before app.py builds the app and its store
setup_logging(log_level=os.getenv("LOG_LEVEL", "DEBUG"), log_file=os.getenv("LOG_FILE", None))

from app import app
from constants import STORAGE_MODE
from logging_config import get_logger

logger = get_logger(__name__)


def main():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    reload = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")
    logger.info(f"Starting Onra Voice relay on {host}:{port} (storage={STORAGE_MODE}, reload={reload})")
    # uvicorn only reloads an app given as an import string
    uvicorn.run("app:app" if reload else app, host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
