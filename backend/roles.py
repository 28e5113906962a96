"""Team role slots and who holds them."""
from enum import Enum
from typing import Dict, List, Optional

from errors import SlotUnavailable


class Team(str, Enum):
    RED = "red"
    BLUE = "blue"

    @property
    def other(self) -> "Team":
        return Team.BLUE if self is Team.RED else Team.RED


class Role(str, Enum):
    SPYMASTER = "spymaster"
    OPERATIVE = "operative"


class RoleSlot(str, Enum):
    RED_SPYMASTER = "red_spymaster"
    RED_OPERATIVE = "red_operative"
    BLUE_SPYMASTER = "blue_spymaster"
    BLUE_OPERATIVE = "blue_operative"

    @property
    def team(self) -> Team:
        return Team(self.value.split("_")[0])

    @property
    def role(self) -> Role:
        return Role(self.value.split("_")[1])

    @property
    def label(self) -> str:
        return f"{self.team.value.capitalize()} {self.role.value.capitalize()}"

    @classmethod
    def of(cls, team: Team, role: Role) -> "RoleSlot":
        return cls(f"{team.value}_{role.value}")

    @classmethod
    def parse(cls, value) -> Optional["RoleSlot"]:
        """Accepts "red_spymaster", "Red Spymaster", "red-spymaster"."""
        if not isinstance(value, str):
            return None
        key = "_".join(value.strip().lower().replace("-", " ").split())
        try:
            return cls(key)
        except ValueError:
            return None


class RoleAssignment:
    """At most one holder per slot, at most one slot per client.

    Every method is synchronous: nothing here awaits, so a claim can never be
    interleaved with another claim on the same event loop.

    A holder who disconnects keeps the slot *reserved* until the session
    layer either rebinds it (reconnect) or expires it (grace period over).
    """

    def __init__(self):
        self._holders: Dict[RoleSlot, Optional[str]] = {slot: None for slot in RoleSlot}
        self._reserved: set = set()

    def claim(self, slot: RoleSlot, client_id: str) -> RoleSlot:
        holder = self._holders[slot]
        if holder == client_id:
            self._reserved.discard(client_id)
            return slot
        if holder is not None:
            raise SlotUnavailable(slot, self.open_slots())

        current = self.slot_of(client_id)
        if current is not None:
            self._holders[current] = None
        self._holders[slot] = client_id
        self._reserved.discard(client_id)
        return slot

    def release(self, client_id: str) -> Optional[RoleSlot]:
        self._reserved.discard(client_id)
        slot = self.slot_of(client_id)
        if slot is not None:
            self._holders[slot] = None
        return slot

    def reserve(self, client_id: str) -> Optional[RoleSlot]:
        slot = self.slot_of(client_id)
        if slot is not None:
            self._reserved.add(client_id)
        return slot

    def rebind(self, client_id: str) -> Optional[RoleSlot]:
        self._reserved.discard(client_id)
        return self.slot_of(client_id)

    def expire(self, client_id: str) -> Optional[RoleSlot]:
        """Release a reservation that was never rebound."""
        if client_id not in self._reserved:
            return None
        return self.release(client_id)

    def is_reserved(self, client_id: str) -> bool:
        return client_id in self._reserved

    def slot_of(self, client_id: str) -> Optional[RoleSlot]:
        for slot, holder in self._holders.items():
            if holder == client_id:
                return slot
        return None

    def holder(self, slot: RoleSlot) -> Optional[str]:
        return self._holders[slot]

    def open_slots(self) -> List[RoleSlot]:
        return [slot for slot, holder in self._holders.items() if holder is None]

    def snapshot(self) -> dict:
        result = {}
        for slot, holder in self._holders.items():
            if holder is None:
                status = "vacant"
            elif holder in self._reserved:
                status = "reserved"
            else:
                status = "held"
            result[slot.value] = {"status": status, "client_id": holder, "label": slot.label}
        return result
