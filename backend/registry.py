"""Live rooms, the clients bound to them, and the code -> room registry."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
import asyncio
import logging
import time

import config
import room_code
from board import BoardFactory, generate_board
from errors import InvalidRoomCode, InvariantViolation, RoomLimitReached, RoomNotFound
from game_state import GameState
from roles import Role, RoleAssignment

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ADMITTING = "admitting"
    JOINED = "joined"
    REJECTED = "rejected"
    DISCONNECTED = "disconnected"


_TRANSITIONS = {
    SessionState.CONNECTING: {SessionState.ADMITTING, SessionState.DISCONNECTED},
    SessionState.ADMITTING: {SessionState.JOINED, SessionState.REJECTED,
                             SessionState.DISCONNECTED},
    SessionState.JOINED: {SessionState.DISCONNECTED},
    SessionState.REJECTED: {SessionState.DISCONNECTED},
    SessionState.DISCONNECTED: set(),
}


@dataclass(eq=False)
class ClientHandle:
    client_id: str
    websocket: Any
    kind: str = "player"  # host, player or spectator
    state: SessionState = SessionState.CONNECTING

    @property
    def is_host(self) -> bool:
        return self.kind == "host"

    def advance(self, new_state: SessionState):
        if new_state is self.state:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal session transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def send(self, message: dict) -> bool:
        try:
            await self.websocket.send_json(message)
            return True
        except Exception:
            logger.debug("Send to %s failed", self.client_id)
            return False

    async def close(self):
        try:
            await self.websocket.close()
        except Exception:
            logger.debug("Close for %s failed", self.client_id)


class Room:
    def __init__(self, room_code: str, host_token: str,
                 board_factory: Optional[BoardFactory] = None):
        self.room_code = room_code
        self.host_token = host_token
        self.board_factory = board_factory or generate_board
        self.state = GameState()
        self.roles = RoleAssignment()
        self.clients: Dict[str, ClientHandle] = {}
        self.host_id: Optional[str] = None
        self.lock = asyncio.Lock()
        self.board_ready = asyncio.Event()
        self.last_activity = time.time()
        self.last_broadcast_revision = 0
        self.closed = False
        self.host_grace_task: Optional[asyncio.Task] = None
        self.player_grace_tasks: Dict[str, asyncio.Task] = {}

        # WS rate limiting
        self.msg_timestamps: Dict[str, list] = {}

    def touch(self):
        self.last_activity = time.time()

    def is_expired(self) -> bool:
        return time.time() - self.last_activity > config.ROOM_TTL_SECONDS

    @property
    def host(self) -> Optional[ClientHandle]:
        return self.clients.get(self.host_id) if self.host_id else None

    def joined_clients(self) -> List[ClientHandle]:
        return [h for h in self.clients.values() if h.state is SessionState.JOINED]

    def view_for(self, handle: ClientHandle) -> str:
        if handle.is_host:
            return "host"
        slot = self.roles.slot_of(handle.client_id)
        if slot is None:
            return "spectator"
        return slot.role.value

    def full_view(self, handle: ClientHandle) -> bool:
        return self.view_for(handle) in ("host", Role.SPYMASTER.value)

    def deal(self) -> dict:
        """Ask the board collaborator for a fresh board and load it."""
        cards, starting_team = self.board_factory()
        action = self.state.load_board(cards, starting_team)
        self.board_ready.set()
        logger.info("Board dealt for room %s (revision %d)", self.room_code, self.state.revision)
        return action

    def snapshot_for(self, handle: ClientHandle) -> dict:
        slot = self.roles.slot_of(handle.client_id)
        return {
            "type": "SNAPSHOT",
            "room_code": self.room_code,
            "revision": self.state.revision,
            "view": self.view_for(handle),
            "you": {"client_id": handle.client_id, "kind": handle.kind,
                    "slot": slot.value if slot else None},
            "state": self.state.to_dict(full=self.full_view(handle)),
            "roles": self.roles.snapshot(),
            "open_slots": [s.value for s in self.roles.open_slots()],
            "host_connected": self.host is not None,
        }

    def roles_message(self) -> dict:
        return {
            "type": "ROLES",
            "revision": self.state.revision,
            "roles": self.roles.snapshot(),
            "open_slots": [s.value for s in self.roles.open_slots()],
        }

    async def broadcast(self, message: dict) -> List[ClientHandle]:
        """Send to every joined client. Returns the handles whose send failed."""
        failed = []
        for handle in self.joined_clients():
            if not await handle.send(message):
                failed.append(handle)
        return failed

    async def broadcast_state(self, action: Optional[dict] = None) -> List[ClientHandle]:
        """Push the current state, redacted per recipient, to every joined client.

        Returns the handles whose send failed.
        """
        revision = self.state.revision
        if revision != self.last_broadcast_revision + 1:
            raise InvariantViolation(
                f"Room {self.room_code} revision went from "
                f"{self.last_broadcast_revision} to {revision}")
        self.last_broadcast_revision = revision

        full_state = self.state.to_dict(full=True)
        redacted_state = self.state.to_dict(full=False)
        failed = []
        for handle in self.joined_clients():
            full = self.full_view(handle)
            message = {
                "type": "STATE",
                "revision": revision,
                "state": full_state if full else redacted_state,
            }
            if action is not None:
                message["last_action"] = action
            if not await handle.send(message):
                failed.append(handle)
        return failed

    def cancel_timers(self):
        if self.host_grace_task:
            self.host_grace_task.cancel()
            self.host_grace_task = None
        for task in self.player_grace_tasks.values():
            task.cancel()
        self.player_grace_tasks.clear()

    async def close_all(self, reason: str):
        for handle in list(self.clients.values()):
            if handle.state is SessionState.JOINED:
                await handle.send({"type": "ROOM_CLOSED", "room_code": self.room_code,
                                   "reason": reason})
            await handle.close()
            handle.advance(SessionState.DISCONNECTED)
        self.clients.clear()


class RoomRegistry:
    """Canonical room code -> Room, for the lifetime of the process."""

    def __init__(self):
        self.rooms: Dict[str, Room] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self.rooms)

    def create(self, host_token: str, board_factory: Optional[BoardFactory] = None) -> Room:
        if len(self.rooms) >= config.MAX_ROOMS:
            raise RoomLimitReached()
        code = room_code.generate(lambda c: c in self.rooms)
        room = Room(code, host_token, board_factory)
        self.rooms[code] = room
        logger.info("Room created: %s", code)
        return room

    def get(self, code: Optional[str]) -> Room:
        key = room_code.lookup_key(code)
        if not key:
            raise InvalidRoomCode()
        room = self.rooms.get(key)
        if room is None or room.closed:
            raise RoomNotFound(key)
        return room

    def remove(self, code: str) -> Optional[Room]:
        room = self.rooms.pop(room_code.lookup_key(code), None)
        if room:
            room.closed = True
            room.cancel_timers()
            # Wake anyone still waiting for the first board; they see closed
            room.board_ready.set()
            logger.info("Room removed: %s", room.room_code)
        return room

    async def close(self, code: str, reason: str):
        """Remove a room and tell everyone still connected to it."""
        room = self.remove(code)
        if room:
            await room.close_all(reason)

    def start_cleanup_loop(self):
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_expired_rooms())

    async def stop_cleanup_loop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _cleanup_expired_rooms(self):
        while True:
            try:
                await asyncio.sleep(config.CLEANUP_INTERVAL_SECONDS)
                await self.close_expired()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room cleanup loop")

    async def close_expired(self) -> List[str]:
        expired = [code for code, room in self.rooms.items() if room.is_expired()]
        for code in expired:
            await self.close(code, "idle")
            logger.info("Cleaned up expired room %s", code)
        return expired
