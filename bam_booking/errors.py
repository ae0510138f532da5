# errors.py
"""
Scheduling outcomes.

Every expected failure of the engine (bad interval, busy slot, forbidden
decision...) is returned to the caller as an ``EngineError`` inside an
``Outcome``. Only an unreachable persistence layer is raised, as
``PersistenceUnavailable``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from bam_booking.data_models import Interval, Reservation


class ErrorCode(Enum):
    INVALID_INTERVAL = "invalid_interval"
    OUT_OF_BOUNDS = "out_of_bounds"
    MISALIGNED = "misaligned"
    INVALID_REQUEST = "invalid_request"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    SLOT_CONFLICT = "slot_conflict"
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN = "forbidden"
    LATE_CONFLICT = "late_conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class EngineError:
    """A recoverable domain failure, with enough detail for the UI to highlight it."""
    code: ErrorCode
    message: str
    interval: Optional["Interval"] = None
    conflicting_ids: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "interval": self.interval.to_dict() if self.interval else None,
            "conflicting_ids": list(self.conflicting_ids),
        }


@dataclass
class Outcome:
    """Result of an engine operation: either a reservation or an error."""
    ok: bool
    reservation: Optional["Reservation"] = None
    error: Optional[EngineError] = None

    @classmethod
    def success(cls, reservation: Optional["Reservation"] = None) -> "Outcome":
        return cls(ok=True, reservation=reservation)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, interval=None, conflicting_ids=()) -> "Outcome":
        return cls(
            ok=False,
            error=EngineError(code, message, interval=interval, conflicting_ids=tuple(conflicting_ids)),
        )

    @property
    def code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None


class PersistenceUnavailable(Exception):
    """The reservation store could not be reached. Callers retry; the engine does not."""
