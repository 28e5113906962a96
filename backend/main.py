"""Codenames room server — host display + phone players over WebSockets."""

from fastapi import FastAPI, WebSocket, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator
from typing import Dict, List, Optional
from collections import defaultdict
import time
from contextlib import asynccontextmanager
import uvicorn
import secrets
import logging
import socket as socketlib

import config
config.setup_logging()

from board import make_board_factory, sanitize_words
from errors import InvalidRoomCode, RoomLimitReached, RoomNotFound
from registry import Room, RoomRegistry
from session_manager import SessionManager

logger = logging.getLogger(__name__)

registry = RoomRegistry()
session_manager = SessionManager(registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Codenames room server")
    registry.start_cleanup_loop()
    yield
    await registry.stop_cleanup_loop()
    logger.info("Shutting down Codenames room server")


app = FastAPI(title="Codenames Rooms API", lifespan=lifespan)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


@app.get("/system/info")
async def get_system_info():
    return {"ip": get_local_ip()}


# Rate limiter
_rate_limit_store: Dict[str, list] = defaultdict(list)


def _check_rate_limit(client_ip: str) -> bool:
    now = time.time()
    window = config.RATE_LIMIT_WINDOW
    _rate_limit_store[client_ip] = [
        t for t in _rate_limit_store[client_ip] if now - t < window
    ]
    if len(_rate_limit_store[client_ip]) >= config.RATE_LIMIT_MAX_REQUESTS:
        return False
    _rate_limit_store[client_ip].append(now)
    return True


def _join_url(room_code: str) -> str:
    return f"http://{get_local_ip()}:{config.CLIENT_PORT}/join/{room_code}"


def _lookup_room(code: Optional[str]) -> Room:
    try:
        return registry.get(code)
    except InvalidRoomCode as e:
        raise HTTPException(status_code=400, detail=e.to_message())
    except RoomNotFound as e:
        raise HTTPException(status_code=404, detail=e.to_message())


# --- Request Models ---

class RoomCreateRequest(BaseModel):
    words: Optional[List[str]] = None

    @field_validator('words')
    @classmethod
    def validate_words(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        if len(v) > config.MAX_CUSTOM_WORDS:
            raise ValueError(f'At most {config.MAX_CUSTOM_WORDS} words allowed')
        cleaned = sanitize_words(v)
        if len(cleaned) < config.BOARD_SIZE:
            raise ValueError(f'Need at least {config.BOARD_SIZE} distinct words')
        return cleaned


# --- Endpoints ---

@app.post("/rooms")
async def create_room(req: Request, request: Optional[RoomCreateRequest] = None):
    client_ip = req.client.host if req.client else "unknown"
    if not _check_rate_limit(client_ip):
        raise HTTPException(status_code=429, detail="Too many requests. Please wait.")

    words = request.words if request else None
    try:
        room = registry.create(secrets.token_urlsafe(32), make_board_factory(words))
    except RoomLimitReached as e:
        raise HTTPException(status_code=429, detail=e.message)

    return {
        "room_code": room.room_code,
        "host_token": room.host_token,
        "join_url": _join_url(room.room_code),
    }


@app.get("/join")
@app.get("/join/")
async def join_without_code():
    raise HTTPException(status_code=400, detail=InvalidRoomCode().to_message())


@app.get("/join/{room_code}")
async def join_room(room_code: str):
    room = _lookup_room(room_code)
    return {
        "room_code": room.room_code,
        "ready": room.state.ready,
        "roles": room.roles.snapshot(),
        "open_slots": [s.value for s in room.roles.open_slots()],
    }


@app.get("/rooms/{room_code}")
async def get_room(room_code: str):
    room = _lookup_room(room_code)
    return {
        "room_code": room.room_code,
        "ready": room.state.ready,
        "revision": room.state.revision,
        "phase": room.state.phase.value,
        "host_connected": room.host is not None,
        "client_count": len(room.clients),
        "open_slots": [s.value for s in room.roles.open_slots()],
    }


@app.websocket("/ws/{room_code}/{client_id}")
async def websocket_endpoint(websocket: WebSocket, room_code: str, client_id: str,
                             role: str = "", host: bool = False, spectator: bool = False,
                             token: str = ""):
    await session_manager.connect(websocket, room_code, client_id, role=role,
                                  is_host=host, is_spectator=spectator, token=token)


# --- CORS ---

if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
else:
    local_ip = get_local_ip()
    origins = [
        f"http://localhost:{config.CLIENT_PORT}",
        f"http://127.0.0.1:{config.CLIENT_PORT}",
        f"http://{local_ip}:{config.CLIENT_PORT}",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Codenames room server is running"}


@app.get("/health")
async def health():
    return {"status": "ok", "game": "Codenames", "rooms": len(registry)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
