"""
Structured reconcile outcomes.

A ReconcileSignal is a *value* describing an expected condition (source not
there yet, auth secret missing, not due for sync...). It is returned, never
raised. Unexpected failures stay ordinary exceptions.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


@dataclass
class ReconcileSignal:
    message: str
    # None means "fall back to the mirror's poll period"
    requeue_after: Optional[float] = None
    # None leaves the phase unchanged
    phase: Optional[str] = None
    event_type: str = ""
    event_reason: str = ""

    @property
    def has_event(self) -> bool:
        return bool(self.event_type and self.event_reason)


class OutcomeKind(str, Enum):
    SYNCED = "synced"        # retrieve + sync completed
    SIGNALLED = "signalled"  # expected condition, recoverable
    FAILED = "failed"        # unexpected error
    STOPPED = "stopped"      # mirror gone or deleted; no requeue


@dataclass
class Outcome:
    kind: OutcomeKind
    requeue_after: Optional[float] = None
    phase: Optional[str] = None
    message: str = ""

    @property
    def recoverable(self) -> bool:
        return self.kind is not OutcomeKind.FAILED

    @classmethod
    def stopped(cls, message: str = "") -> "Outcome":
        return cls(kind=OutcomeKind.STOPPED, message=message)
