import os
import socket

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
STATIC_DIR = os.getenv("STATIC_DIR", "dist")

MAX_INTERESTS = int(os.getenv("MAX_INTERESTS", 10))
MAX_INTEREST_LENGTH = int(os.getenv("MAX_INTEREST_LENGTH", 32))
# Raw list entries accepted before normalization; duplicates and blanks still count here
MAX_INTEREST_ENTRIES = int(os.getenv("MAX_INTEREST_ENTRIES", MAX_INTERESTS * 5))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", 2000))

# Only forward WebRTC signals to the sender's current partner
SIGNAL_REQUIRE_PARTNER = os.getenv("SIGNAL_REQUIRE_PARTNER", "false").lower() in ("1", "true", "yes")

STATS_BACKEND = os.getenv("STATS_BACKEND", "none").lower()

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", 1.0))

INSTANCE_ID = os.getenv("INSTANCE_ID", socket.gethostname())
PRESENCE_TTL_SECONDS = int(os.getenv("PRESENCE_TTL_SECONDS", 60))
