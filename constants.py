import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

# redis | file | memory
STORE_BACKEND = os.getenv("STORE_BACKEND", "redis").lower()
STORE_FILE = os.getenv("STORE_FILE", os.path.join(os.path.dirname(os.path.abspath(__file__)), "db.json"))

SAVE_MAX_ATTEMPTS = int(os.getenv("SAVE_MAX_ATTEMPTS", 3))
SAVE_RETRY_DELAY = float(os.getenv("SAVE_RETRY_DELAY", 1.0))

MIN_ROOM_CODE_LENGTH = 4
ROOM_CAPACITY = 2
CALL_HISTORY_LIMIT = 20

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3000))
WS_PING_INTERVAL = float(os.getenv("WS_PING_INTERVAL", 10))
WS_PING_TIMEOUT = float(os.getenv("WS_PING_TIMEOUT", 5))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
