import os

STORAGE_MODE = os.getenv("STORAGE_MODE", "memory").lower()

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "onra.sid")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", 86400))  # 24 hours

SEED_DEFAULT_DATA = os.getenv("SEED_DEFAULT_DATA", "true").lower() in ("1", "true", "yes")

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

WS_CLOSE_POLICY_VIOLATION = int(os.getenv("WS_CLOSE_POLICY_VIOLATION", 1008))
