# fairness.py
from dataclasses import dataclass
from typing import Iterable

from bam_booking.data_models import Reservation, ReservationStatus


@dataclass(frozen=True)
class FairUseHint:
    """Advisory only. Nothing in the engine blocks on it."""
    requester_id: str
    approved_count: int
    threshold: int

    @property
    def flagged(self) -> bool:
        return self.approved_count > self.threshold

    def to_dict(self) -> dict:
        return {
            "requester_id": self.requester_id,
            "approved_count": self.approved_count,
            "threshold": self.threshold,
            "flagged": self.flagged,
        }


def approved_count(requester_id: str, reservations: Iterable[Reservation]) -> int:
    return sum(
        1 for r in reservations
        if r.requester_id == requester_id and r.status is ReservationStatus.APPROVED
    )


def fair_use_hint(requester_id: str, reservations: Iterable[Reservation], threshold: int = 2) -> FairUseHint:
    return FairUseHint(requester_id, approved_count(requester_id, reservations), threshold)
