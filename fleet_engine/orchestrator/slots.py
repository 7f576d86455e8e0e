#fleet_engine\orchestrator\slots.py

"""Slot manager bounding how many machines are updated at once."""

from typing import List, Optional


class SlotManager:
    """
    Fixed number of update slots, each holding at most one machine.

    Not thread-safe: only the dispatcher thread claims and frees slots.
    """

    def __init__(self, max_slots: int):
        if max_slots < 1:
            raise ValueError("max_slots must be at least 1")

        self._holders: List[Optional[str]] = [None] * max_slots

    @property
    def capacity(self) -> int:
        return len(self._holders)

    def in_flight(self) -> List[str]:
        """Machines currently holding a slot."""
        return [m for m in self._holders if m is not None]

    def full(self) -> bool:
        return None not in self._holders

    def claim(self, machine_id: str) -> int:
        """Put a machine in the first free slot and return the slot index."""
        if machine_id in self._holders:
            raise ValueError(f"Machine {machine_id} already holds a slot")
        if self.full():
            raise ValueError("All slots are occupied")

        index = self._holders.index(None)
        self._holders[index] = machine_id
        return index

    def free(self, machine_id: str) -> None:
        if machine_id not in self._holders:
            raise ValueError(f"Machine {machine_id} holds no slot")
        self._holders[self._holders.index(machine_id)] = None

    def __repr__(self) -> str:
        return f"<SlotManager(capacity={self.capacity}, in_flight={self.in_flight()})>"
