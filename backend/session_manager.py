"""WebSocket session protocol: admission, resync, actions and broadcast."""

from fastapi import WebSocket, WebSocketDisconnect
from typing import Optional
import asyncio
import json
import logging
import secrets
import time

import config
from errors import (
    ActionRejected, ConnectionLost, InvalidHostToken, InvariantViolation,
    RoomNotFound, RoomNotReady, SessionError,
)
from registry import ClientHandle, Room, RoomRegistry, SessionState
from roles import Role, RoleSlot

logger = logging.getLogger(__name__)


class SessionManager:
    """Runs one connection at a time through connecting -> admitting -> joined.

    All handling that reads or mutates a room happens under ``room.lock``, so
    each room behaves as a single serialized event queue and every client sees
    revisions in the same order.
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    async def connect(self, websocket: WebSocket, room_code: str, client_id: str,
                      role: str = "", is_host: bool = False, is_spectator: bool = False,
                      token: str = ""):
        kind = "host" if is_host else "spectator" if is_spectator else "player"
        handle = ClientHandle(client_id=client_id, websocket=websocket, kind=kind)
        await websocket.accept()
        handle.advance(SessionState.ADMITTING)

        try:
            room = await self.admit(handle, room_code, role=role, token=token)
        except ConnectionLost:
            handle.advance(SessionState.DISCONNECTED)
            logger.info("Client %s left room %r before admission finished", client_id, room_code)
            return
        except SessionError as e:
            handle.advance(SessionState.REJECTED)
            if isinstance(e, InvariantViolation):
                logger.exception("Tearing down room %r", room_code)
                await self.registry.close(room_code, "internal_error")
            else:
                logger.info("Rejected %s %s for room %r: %s", kind, client_id, room_code, e.code)
            await handle.send(e.to_message())
            await handle.close()
            handle.advance(SessionState.DISCONNECTED)
            return

        try:
            await self._receive_loop(room, handle)
        except ConnectionLost:
            logger.info("Client %s disconnected from room %s", client_id, room.room_code)
        except Exception:
            logger.exception("WebSocket error for client %s in room %s", client_id, room.room_code)
        finally:
            await self.disconnect(room, handle)

    # --- Admission ---

    async def admit(self, handle: ClientHandle, raw_code: Optional[str],
                    role: str = "", token: str = "") -> Room:
        if not handle.client_id or len(handle.client_id) > config.MAX_CLIENT_ID_LENGTH:
            raise ActionRejected("invalid_client_id", "Invalid client id")

        room = self.registry.get(raw_code)

        if handle.is_host:
            if not token or not secrets.compare_digest(token, room.host_token):
                raise InvalidHostToken()
            await self._admit_host(room, handle)
            return room

        if not room.state.ready:
            await self._wait_for_board(room, handle)

        async with room.lock:
            if room.closed:
                raise RoomNotFound(room.room_code)
            room.touch()
            await self._bind(room, handle)

            notices = []
            roles_changed = False
            if handle.kind == "player":
                slot = room.roles.rebind(handle.client_id)
                grace = room.player_grace_tasks.pop(handle.client_id, None)
                if grace:
                    grace.cancel()
                    roles_changed = True
                    logger.info("Client %s re-bound %s in room %s",
                                handle.client_id, slot.value if slot else "no slot",
                                room.room_code)
                if role:
                    requested = RoleSlot.parse(role)
                    if requested is None:
                        notices.append(ActionRejected("invalid_role", f"Unknown role {role!r}"))
                    else:
                        held = room.roles.slot_of(handle.client_id)
                        try:
                            room.roles.claim(requested, handle.client_id)
                            roles_changed |= requested is not held
                        except SessionError as e:
                            notices.append(e)

            handle.advance(SessionState.JOINED)
            await handle.send(room.snapshot_for(handle))
            for notice in notices:
                await handle.send(notice.to_message())
            if roles_changed:
                await self._broadcast(room, room.roles_message())

        logger.info("Client %s joined room %s as %s", handle.client_id, room.room_code,
                    room.view_for(handle))
        return room

    async def _admit_host(self, room: Room, handle: ClientHandle):
        async with room.lock:
            if room.closed:
                raise RoomNotFound(room.room_code)
            room.touch()
            reconnected = room.host_grace_task is not None
            if room.host_grace_task:
                room.host_grace_task.cancel()
                room.host_grace_task = None

            previous = room.host
            if previous is not None:
                await self._kick(room, previous, "Host display opened somewhere else")

            if not room.state.ready:
                action = room.deal()
                await self._broadcast_state(room, action)

            await self._bind(room, handle)
            room.host_id = handle.client_id
            handle.advance(SessionState.JOINED)
            await handle.send(room.snapshot_for(handle))
            if reconnected:
                await self._broadcast(room, {"type": "HOST_RECONNECTED",
                                             "revision": room.state.revision})
        logger.info("Host %s %s room %s", handle.client_id,
                    "reconnected to" if reconnected else "connected to", room.room_code)

    async def _wait_for_board(self, room: Room, handle: ClientHandle):
        """Bounded wait for the host to deal the first board.

        The socket is read while waiting so a client that hangs up is noticed
        before it is bound to the room or given a slot. Anything it sends in
        the meantime is dropped.
        """
        timeout = config.ADMISSION_TIMEOUT_SECONDS
        await handle.send({"type": "WAITING_FOR_HOST", "room_code": room.room_code,
                           "timeout": timeout})
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        ready = asyncio.ensure_future(room.board_ready.wait())
        receive = None
        try:
            while not ready.done():
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise RoomNotReady(room.room_code, retry_after=timeout)
                if receive is None:
                    receive = asyncio.ensure_future(handle.websocket.receive_text())
                await asyncio.wait({ready, receive}, timeout=remaining,
                                   return_when=asyncio.FIRST_COMPLETED)
                if receive.done():
                    try:
                        receive.result()
                    except Exception as exc:
                        raise ConnectionLost() from exc
                    receive = None
        finally:
            for task in (ready, receive):
                if task is not None and not task.done():
                    task.cancel()
        if room.closed:
            raise RoomNotFound(room.room_code)

    async def _bind(self, room: Room, handle: ClientHandle):
        existing = room.clients.get(handle.client_id)
        if existing is not None and existing is not handle:
            await self._kick(room, existing, "You joined from another tab or device")
        room.clients[handle.client_id] = handle

    async def _kick(self, room: Room, handle: ClientHandle, message: str):
        room.clients.pop(handle.client_id, None)
        if room.host_id == handle.client_id:
            room.host_id = None
        await handle.send({"type": "KICKED", "message": message})
        await handle.close()
        handle.advance(SessionState.DISCONNECTED)

    # --- Disconnect and grace periods ---

    async def disconnect(self, room: Room, handle: ClientHandle):
        if handle.state is SessionState.DISCONNECTED:
            return
        async with room.lock:
            await self._drop(room, handle)

    async def _drop(self, room: Room, handle: ClientHandle):
        """Unbind a joined handle and hold its slot, or the room, for the grace period.

        Caller holds ``room.lock``.
        """
        if handle.state is SessionState.DISCONNECTED:
            return
        handle.advance(SessionState.DISCONNECTED)
        if room.clients.get(handle.client_id) is not handle:
            return
        del room.clients[handle.client_id]
        room.msg_timestamps.pop(handle.client_id, None)
        if room.closed:
            return

        if handle.is_host:
            room.host_id = None
            room.host_grace_task = asyncio.create_task(self._host_grace(room))
            await self._broadcast(room, {"type": "HOST_DISCONNECTED",
                                         "grace_seconds": config.HOST_GRACE_SECONDS})
            logger.info("Host left room %s, holding it for %ss",
                        room.room_code, config.HOST_GRACE_SECONDS)
            return

        slot = room.roles.reserve(handle.client_id)
        if slot is not None:
            room.player_grace_tasks[handle.client_id] = asyncio.create_task(
                self._player_grace(room, handle.client_id))
            await self._broadcast(room, room.roles_message())
            logger.info("Client %s left room %s, %s reserved for %ss", handle.client_id,
                        room.room_code, slot.value, config.PLAYER_GRACE_SECONDS)

    async def _drop_failed(self, room: Room, failed):
        for handle in failed:
            logger.info("Dropping client %s from room %s after a failed send",
                        handle.client_id, room.room_code)
            await self._drop(room, handle)
            await handle.close()

    async def _broadcast(self, room: Room, message: dict):
        await self._drop_failed(room, await room.broadcast(message))

    async def _broadcast_state(self, room: Room, action: Optional[dict] = None):
        await self._drop_failed(room, await room.broadcast_state(action))

    async def _host_grace(self, room: Room):
        try:
            await asyncio.sleep(config.HOST_GRACE_SECONDS)
        except asyncio.CancelledError:
            return
        room.host_grace_task = None
        logger.info("Host never came back to room %s", room.room_code)
        await self.registry.close(room.room_code, "host_left")

    async def _player_grace(self, room: Room, client_id: str):
        try:
            await asyncio.sleep(config.PLAYER_GRACE_SECONDS)
        except asyncio.CancelledError:
            return
        async with room.lock:
            room.player_grace_tasks.pop(client_id, None)
            slot = room.roles.expire(client_id)
            if slot is not None and not room.closed:
                logger.info("Released %s in room %s", slot.value, room.room_code)
                await self._broadcast(room, room.roles_message())

    # --- Messages ---

    async def _receive_loop(self, room: Room, handle: ClientHandle):
        websocket = handle.websocket
        client_id = handle.client_id
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect as exc:
                raise ConnectionLost() from exc

            if len(data) > config.MAX_WS_MESSAGE_SIZE:
                await handle.send({"type": "ERROR", "code": "MESSAGE_TOO_LARGE",
                                   "message": "Message too large"})
                continue

            now = time.time()
            timestamps = room.msg_timestamps.setdefault(client_id, [])
            timestamps[:] = [t for t in timestamps if now - t < 1.0]
            if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                await handle.send({"type": "ERROR", "code": "RATE_LIMITED",
                                   "message": "Too many messages"})
                continue
            timestamps.append(now)

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                message = None
            if not isinstance(message, dict):
                await handle.send({"type": "ERROR", "code": "BAD_MESSAGE",
                                   "message": "Invalid message format"})
                continue

            room.touch()
            await self.handle_message(room, handle, message)
            if room.closed:
                return

    async def handle_message(self, room: Room, handle: ClientHandle, message: dict):
        msg_type = message.get("type")

        if msg_type == "PING":
            await handle.send({"type": "PONG", "revision": room.state.revision})
            return

        handler = {
            "RESYNC": self._handle_resync,
            "CLAIM_ROLE": self._handle_claim_role,
            "RELEASE_ROLE": self._handle_release_role,
            "GIVE_CLUE": self._handle_give_clue,
            "REVEAL_CARD": self._handle_reveal_card,
            "END_TURN": self._handle_end_turn,
            "NEW_GAME": self._handle_new_game,
        }.get(msg_type)
        if handler is None:
            await handle.send(ActionRejected("unknown_action", f"Unknown message {msg_type!r}")
                              .to_message())
            return

        try:
            async with room.lock:
                if room.closed or room.clients.get(handle.client_id) is not handle:
                    return
                await handler(room, handle, message)
        except InvariantViolation:
            logger.exception("Tearing down room %s", room.room_code)
            await self.registry.close(room.room_code, "internal_error")
        except SessionError as e:
            logger.debug("Client %s in room %s: %s", handle.client_id, room.room_code, e.code)
            await handle.send(e.to_message())

    async def _handle_resync(self, room: Room, handle: ClientHandle, message: dict):
        if "revision" in message and message["revision"] != room.state.revision:
            logger.info("Client %s resyncing room %s from revision %s to %d", handle.client_id,
                        room.room_code, message["revision"], room.state.revision)
        await handle.send(room.snapshot_for(handle))

    async def _handle_claim_role(self, room: Room, handle: ClientHandle, message: dict):
        if handle.kind != "player":
            raise ActionRejected("not_authorized", "Only players can take a role")
        slot = RoleSlot.parse(message.get("slot"))
        if slot is None:
            raise ActionRejected("invalid_role", "Unknown role")
        room.roles.claim(slot, handle.client_id)
        await handle.send({"type": "ROLE_CLAIMED", "slot": slot.value,
                           "revision": room.state.revision})
        # View may have changed between redacted and full
        await handle.send(room.snapshot_for(handle))
        await self._broadcast(room, room.roles_message())
        logger.info("Client %s took %s in room %s", handle.client_id, slot.value, room.room_code)

    async def _handle_release_role(self, room: Room, handle: ClientHandle, message: dict):
        if room.roles.release(handle.client_id) is None:
            return
        await handle.send(room.snapshot_for(handle))
        await self._broadcast(room, room.roles_message())

    def _require_slot(self, room: Room, handle: ClientHandle, role: Role) -> RoleSlot:
        slot = room.roles.slot_of(handle.client_id)
        if slot is None:
            raise ActionRejected("slot_not_held", "Pick a role first")
        if slot.role is not role:
            raise ActionRejected("not_authorized", f"Only a {role.value} can do that")
        return slot

    async def _handle_give_clue(self, room: Room, handle: ClientHandle, message: dict):
        if handle.is_host:
            raise ActionRejected("not_authorized", "Only a spymaster can give clues")
        slot = self._require_slot(room, handle, Role.SPYMASTER)
        action = room.state.give_clue(slot.team, message.get("word"), message.get("number"))
        await self._broadcast_state(room, action)

    async def _handle_reveal_card(self, room: Room, handle: ClientHandle, message: dict):
        team = None if handle.is_host else self._require_slot(room, handle, Role.OPERATIVE).team
        action = room.state.reveal(message.get("index"), team)
        await self._broadcast_state(room, action)

    async def _handle_end_turn(self, room: Room, handle: ClientHandle, message: dict):
        team = None if handle.is_host else self._require_slot(room, handle, Role.OPERATIVE).team
        action = room.state.end_turn(team)
        await self._broadcast_state(room, action)

    async def _handle_new_game(self, room: Room, handle: ClientHandle, message: dict):
        if not handle.is_host:
            raise ActionRejected("not_authorized", "Only the host can start a new game")
        action = room.deal()
        await self._broadcast_state(room, action)
