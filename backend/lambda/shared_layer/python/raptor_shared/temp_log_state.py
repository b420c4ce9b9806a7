"""raptor_shared.temp_log_state — Temp-log session lifecycle and entry types."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping

from raptor_shared.errors import InvalidState

__all__ = [
    "EntryType",
    "SessionStatus",
    "require_open",
    "status_of",
    "transition",
]


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class EntryType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
}


def status_of(session: Mapping[str, Any]) -> SessionStatus:
    raw = session.get("status")
    try:
        return SessionStatus(raw)
    except ValueError:
        raise InvalidState(f"Unknown session status '{raw}'")


def transition(current: SessionStatus, target: SessionStatus) -> SessionStatus:
    if target not in _TRANSITIONS[current]:
        raise InvalidState(
            f"Invalid session transition {current.value} -> {target.value}",
            status=current.value,
        )
    return target


def require_open(session: Mapping[str, Any], message: str) -> None:
    """Entries may only change while their session is in progress."""
    if status_of(session) is not SessionStatus.IN_PROGRESS:
        raise InvalidState(message, status=str(session.get("status")))
