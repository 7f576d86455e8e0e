"""Event emitters for fleet updates."""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Iterable

from fleet_engine.core.events_model import FleetEvent


ALLOWED_EVENTS = {
    "machine.leased",
    "machine.updating",
    "machine.converged",
    "machine.released",
    "machine.failed",
    "machine.launched",
    "run.completed",
}


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[FleetEvent]) -> None:
        """Emit one or more events."""
        pass


class PrintEventEmitter(EventEmitter):
    """Console event emitter, also keeps events in memory."""

    def __init__(self):
        self.events = []
        self._lock = Lock()

    def emit(self, events: Iterable[FleetEvent]) -> None:
        """Print events to console."""
        for event in events:
            # Validation
            if event.event_type not in ALLOWED_EVENTS:
                raise ValueError(f"Invalid event type: {event.event_type}")
            if not event.app_id:
                raise ValueError("Event must have app_id")

            with self._lock:
                self.events.append(event)

            print(f"[EVENT] {event.event_type} | app={event.app_id} machine={event.machine_id}")

    def event_types(self, machine_id=None):
        """Event types in emission order, optionally for one machine."""
        with self._lock:
            return [
                e.event_type for e in self.events
                if machine_id is None or e.machine_id == machine_id
            ]


class MultiEventEmitter:
    """Fan-out to multiple emitters."""

    def __init__(self, emitters: Iterable[EventEmitter]):
        self._emitters = list(emitters)

    def emit(self, events: Iterable[FleetEvent]):
        """Emit to all emitters."""
        events = list(events)
        for emitter in self._emitters:
            emitter.emit(events)


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[FleetEvent]) -> None:
        """Do nothing."""
        pass
