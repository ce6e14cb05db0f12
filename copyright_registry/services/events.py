"""
Registry notifications and the logs that record them.
"""

import threading
import time
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from copyright_registry import config
from copyright_registry.core import database

logger = structlog.get_logger()


class RegistryEvent(BaseModel):
    """Base class for notifications emitted by the registry."""

    @property
    def name(self) -> str:
        return type(self).__name__


class AuthorRegistered(RegistryEvent):
    address: str
    timestamp: int


class WorkRegistered(RegistryEvent):
    work_id: int
    registrant: str
    title: str
    timestamp: int


class WorkVerified(RegistryEvent):
    work_id: int
    verifier: str


class DisputeFiled(RegistryEvent):
    work_id: int
    challenger: str
    dispute_index: int


class DisputeResolved(RegistryEvent):
    work_id: int
    dispute_index: int
    winner: Optional[str] = None


class RecordedEvent(BaseModel):
    """An event as stored by a log."""
    sequence: int = Field(..., ge=1, description="Position in the event log")
    name: str = Field(..., description="Event name")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event fields")
    recorded_at: float = Field(default_factory=time.time, description="Recording time")


class EventLog:
    """Append-only in-memory event log."""

    backend = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[RecordedEvent] = []

    def _next_sequence(self) -> int:
        return len(self._events) + 1

    def _store(self, recorded: RecordedEvent) -> None:
        self._events.append(recorded)

    def emit(self, event: RegistryEvent) -> RecordedEvent:
        with self._lock:
            recorded = RecordedEvent(
                sequence=self._next_sequence(),
                name=event.name,
                payload=event.model_dump(),
            )
            self._store(recorded)

        logger.info("Registry event", event_name=recorded.name, sequence=recorded.sequence, payload=recorded.payload)
        return recorded

    def get_events(self, name: Optional[str] = None, after: int = 0, limit: int = 100) -> List[RecordedEvent]:
        with self._lock:
            events = [e for e in self._events if e.sequence > after and (name is None or e.name == name)]
        return events[:limit]

    def health_check(self) -> Dict[str, Any]:
        with self._lock:
            return {"available": True, "backend": self.backend, "events": len(self._events)}

    def close(self) -> None:
        """Release resources held by the log."""


class PostgresEventLog(EventLog):
    """
    Event log persisted to the ``registry_events`` table.

    One registry process writes to one database. Sequences continue from the
    stored maximum, but registry state is not replayed from the store, so a
    restarted registry appends a new history after the old one.
    """

    backend = "postgres"

    def __init__(self):
        super().__init__()
        database.initialize_connection_pool()
        self._last_sequence = database.get_last_sequence()
        if self._last_sequence:
            logger.warning("Event store already holds events, registry state is not replayed",
                           last_sequence=self._last_sequence)
        logger.info("Postgres event log ready", last_sequence=self._last_sequence)

    def _next_sequence(self) -> int:
        return self._last_sequence + 1

    def _store(self, recorded: RecordedEvent) -> None:
        database.insert_event(recorded.sequence, recorded.name, recorded.payload)
        self._last_sequence = recorded.sequence

    def get_events(self, name: Optional[str] = None, after: int = 0, limit: int = 100) -> List[RecordedEvent]:
        rows = database.get_events(name=name, after=after, limit=limit)
        return [
            RecordedEvent(
                sequence=row["sequence"],
                name=row["name"],
                payload=row["payload"],
                recorded_at=row["created_at"].timestamp(),
            )
            for row in rows
        ]

    def health_check(self) -> Dict[str, Any]:
        healthy = database.check_database_connection()
        health = {"available": healthy, "backend": self.backend, "last_sequence": self._last_sequence}
        if healthy:
            health["events"] = database.count_events()
        return health

    def close(self) -> None:
        database.close_connection_pool()


def create_event_log() -> EventLog:
    """Build the event log selected by ``EVENT_STORE``."""
    if config.EVENT_STORE == "memory":
        return EventLog()
    if config.EVENT_STORE == "postgres":
        return PostgresEventLog()
    raise ValueError(f"Unknown event store: {config.EVENT_STORE}")
