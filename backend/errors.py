"""Error taxonomy for room admission and game actions.

Every error knows how to render itself as the ERROR message sent back to the
client that caused it. None of these are ever broadcast to a room.
"""
from typing import Optional


class SessionError(Exception):
    code = "SESSION_ERROR"
    message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_message(self) -> dict:
        return {"type": "ERROR", "code": self.code, "message": self.message}


class InvalidRoomCode(SessionError):
    code = "INVALID_ROOM_CODE"
    message = "Enter a room code"


class RoomNotFound(SessionError):
    code = "ROOM_NOT_FOUND"
    message = "Room not found"

    def __init__(self, room_code: str):
        super().__init__(f"Room {room_code} doesn't exist" if room_code else None)
        self.room_code = room_code

    def to_message(self) -> dict:
        msg = super().to_message()
        msg["room_code"] = self.room_code
        return msg


class RoomNotReady(SessionError):
    code = "ROOM_NOT_READY"
    message = "The host hasn't finished setting up this room"

    def __init__(self, room_code: str, retry_after: float):
        super().__init__()
        self.room_code = room_code
        self.retry_after = retry_after

    def to_message(self) -> dict:
        msg = super().to_message()
        msg["room_code"] = self.room_code
        msg["retry_after"] = self.retry_after
        return msg


class InvalidHostToken(SessionError):
    code = "INVALID_HOST_TOKEN"
    message = "Invalid host token"


class SlotUnavailable(SessionError):
    code = "SLOT_UNAVAILABLE"

    def __init__(self, slot, open_slots: list):
        super().__init__(f"{slot.label} is already taken")
        self.slot = slot
        self.open_slots = open_slots

    def to_message(self) -> dict:
        msg = super().to_message()
        msg["slot"] = self.slot.value
        msg["open_slots"] = [s.value for s in self.open_slots]
        return msg


class ActionRejected(SessionError):
    code = "ACTION_REJECTED"

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason.replace("_", " ").capitalize())
        self.reason = reason

    def to_message(self) -> dict:
        msg = super().to_message()
        msg["reason"] = self.reason
        return msg


class ConnectionLost(SessionError):
    code = "CONNECTION_LOST"
    message = "Connection lost"


class RoomLimitReached(SessionError):
    code = "ROOM_LIMIT_REACHED"
    message = "Too many active rooms. Try again later."


class InvariantViolation(SessionError):
    """Room state can no longer be trusted; the room must be torn down."""
    code = "INTERNAL_ERROR"
    message = "Room state became inconsistent"
