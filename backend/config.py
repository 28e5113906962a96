"""Centralized configuration — all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")
CLIENT_PORT = int(os.getenv("CLIENT_PORT", "5173"))

# --- Rate Limiting ---
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))  # rooms created per window per IP

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10
MAX_WS_MESSAGE_SIZE = 4096  # bytes
MAX_CLIENT_ID_LENGTH = 64

# --- Room codes ---
ROOM_CODE_LENGTH = int(os.getenv("ROOM_CODE_LENGTH", "6"))
# No 0/O or 1/I: codes are read off a TV and typed on a phone
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

# --- Storage Limits ---
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "50"))
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", "1800"))
CLEANUP_INTERVAL_SECONDS = 60

# --- Session timing ---
ADMISSION_TIMEOUT_SECONDS = float(os.getenv("ADMISSION_TIMEOUT_SECONDS", "10"))
HOST_GRACE_SECONDS = float(os.getenv("HOST_GRACE_SECONDS", "30"))
PLAYER_GRACE_SECONDS = float(os.getenv("PLAYER_GRACE_SECONDS", "60"))

# --- Game ---
BOARD_SIZE = 25
STARTING_TEAM_CARDS = 9
OTHER_TEAM_CARDS = 8
ASSASSIN_CARDS = 1
MAX_CLUE_NUMBER = 9
MAX_CLUE_LENGTH = 30
MAX_WORD_LENGTH = 20
MAX_CUSTOM_WORDS = 400

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
