"""
Interfaces to the collaborators the circulation engine consumes.

- Clock: the engine never calls ``datetime.now()`` directly, so tests can
  freeze and advance time
- IdentityProvider: who is acting, and in which role
- Notifier: fire-and-forget delivery channel for reservation and overdue
  notices; it is invoked after the transaction commits and is never part of it
"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC, naive like the timestamps SQLite stores."""

    def now(self) -> datetime:
        return datetime.now(UTC).replace(tzinfo=None)


@runtime_checkable
class IdentityProvider(Protocol):
    def current_member_id(self) -> str | None: ...


class StaticIdentity:
    """Identity pinned to one member id, as configured for a single-operator server."""

    def __init__(self, member_id: str | None):
        self._member_id = member_id

    def current_member_id(self) -> str | None:
        return self._member_id


class EventKind(str, Enum):
    RESERVATION_NOTIFIED = "reservation_notified"
    LOAN_OVERDUE = "loan_overdue"
    DUE_REMINDER = "due_reminder"


class CirculationEvent(BaseModel):
    """Something a member should be told about."""

    kind: EventKind
    member_id: str
    title_id: str
    occurred_at: datetime
    loan_id: str | None = None
    reservation_id: str | None = None
    item_id: str | None = None
    details: dict[str, str | int | float] = Field(default_factory=dict)


class Notifier(Protocol):
    def notify(self, event: CirculationEvent) -> None: ...


class LoggingNotifier:
    """Default channel: writes each notice to the application log."""

    def notify(self, event: CirculationEvent) -> None:
        logger.info(
            "Notify %s: %s (title=%s loan=%s reservation=%s)",
            event.member_id,
            event.kind.value,
            event.title_id,
            event.loan_id,
            event.reservation_id,
        )


class RecordingNotifier:
    """Keeps every delivered event in memory; used by tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[CirculationEvent] = []

    def notify(self, event: CirculationEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[CirculationEvent]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        self.events.clear()
