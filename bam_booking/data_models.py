# data_models.py
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple
from uuid import uuid4


class ResourceStatus(Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"

    @property
    def bookable(self) -> bool:
        return self not in (ResourceStatus.MAINTENANCE, ResourceStatus.OFFLINE)


class ReservationStatus(Enum):
    """
    Reservation lifecycle

    - PENDING -> APPROVED (decision-maker approves, no late conflict)
    - PENDING -> REJECTED (decision-maker rejects)
    Approved and rejected are terminal. Cancellation deletes the row instead.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def terminal(self) -> bool:
        return self is not ReservationStatus.PENDING


@dataclass(frozen=True)
class Interval:
    """
    Half-open span of minutes from midnight: [start, end)

    Two intervals that merely touch (10:00 end, 10:00 start) do not overlap.
    """
    start: int
    end: int

    def __post_init__(self):
        if not isinstance(self.start, int) or not isinstance(self.end, int):
            raise ValueError("Interval bounds must be whole minutes")
        if self.start < 0:
            raise ValueError(f"Interval start ({self.start}) cannot be negative")
        if self.end <= self.start:
            raise ValueError(f"Interval end ({self.end}) must be after start ({self.start})")

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}

    def __str__(self):
        return f"[{self.start // 60:02d}:{self.start % 60:02d}, {self.end // 60:02d}:{self.end % 60:02d})"


@dataclass
class Resource:
    """A bookable instrument. The engine only reads its id and status."""
    id: str
    name: str
    status: ResourceStatus = ResourceStatus.AVAILABLE
    location: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Reservation:
    """A request to use one resource on one date for one interval."""
    resource_id: str
    date: date
    interval: Interval
    requester_id: str
    requester_name: str
    title: str = ""
    group_name: Optional[str] = None
    attendees: Optional[int] = None
    status: ReservationStatus = ReservationStatus.PENDING
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_now)

    @property
    def partition(self) -> Tuple[str, date]:
        return (self.resource_id, self.date)

    @property
    def blocking(self) -> bool:
        return self.status is not ReservationStatus.REJECTED

    def approve(self, actor_id: str, at: Optional[datetime] = None):
        """PENDING -> APPROVED. Callers check for late conflicts first."""
        self._decide(ReservationStatus.APPROVED, actor_id, at)

    def reject(self, actor_id: str, reason: Optional[str] = None, at: Optional[datetime] = None):
        """PENDING -> REJECTED"""
        self._decide(ReservationStatus.REJECTED, actor_id, at)
        self.rejection_reason = reason

    def _decide(self, status: ReservationStatus, actor_id: str, at: Optional[datetime]):
        if self.status is not ReservationStatus.PENDING:
            raise ValueError(
                f"Cannot move reservation {self.id} from {self.status.value} to {status.value}"
            )
        self.status = status
        self.decided_by = actor_id
        self.decided_at = at or _now()

    def copy(self) -> "Reservation":
        return replace(self)

    # Row mapping for the SQL store
    def to_row(self) -> dict:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "date": self.date,
            "slot_start": self.interval.start,
            "slot_end": self.interval.end,
            "title": self.title,
            "group_name": self.group_name,
            "attendees": self.attendees,
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "status": self.status.value,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row) -> "Reservation":
        return cls(
            id=row["id"],
            resource_id=row["resource_id"],
            date=row["date"],
            interval=Interval(row["slot_start"], row["slot_end"]),
            title=row["title"],
            group_name=row["group_name"],
            attendees=row["attendees"],
            requester_id=row["requester_id"],
            requester_name=row["requester_name"],
            status=ReservationStatus(row["status"]),
            decided_by=row["decided_by"],
            decided_at=row["decided_at"],
            rejection_reason=row["rejection_reason"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "date": self.date.isoformat(),
            "slot_start": self.interval.start,
            "slot_end": self.interval.end,
            "title": self.title,
            "group_name": self.group_name,
            "attendees": self.attendees,
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "status": self.status.value,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ConflictGroup:
    """A maximal run of mutually overlapping reservations in one partition. Never persisted."""
    resource_id: str
    date: date
    start: int
    end: int
    reservation_ids: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "resource_id": self.resource_id,
            "date": self.date.isoformat(),
            "start": self.start,
            "end": self.end,
            "reservation_ids": list(self.reservation_ids),
        }
