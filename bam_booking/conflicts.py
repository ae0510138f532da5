# conflicts.py
"""
Overlap detection.

``overlaps`` is the one predicate used everywhere: by the advisory sweep that
highlights conflicts on the calendar, and by the admission and approval gates
that decide what gets committed.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from bam_booking.data_models import ConflictGroup, Interval, Reservation


def overlaps(a: Interval, b: Interval) -> bool:
    # Half-open: touching endpoints are compatible
    return a.start < b.end and b.start < a.end


def _sweep_key(reservation: Reservation):
    # Equal starts ordered by ascending end; id keeps the order total
    return (reservation.interval.start, reservation.interval.end, reservation.id)


def find_overlapping(
    candidate: Interval,
    reservations: Iterable[Reservation],
    exclude_id: Optional[str] = None,
) -> List[Reservation]:
    """Reservations whose interval overlaps the candidate, in sweep order."""
    hits = [
        r for r in reservations
        if r.id != exclude_id and overlaps(candidate, r.interval)
    ]
    return sorted(hits, key=_sweep_key)


def detect_conflict_groups(reservations: Iterable[Reservation]) -> List[ConflictGroup]:
    """
    Interval-merge sweep over one (resource, date) partition.

    Rejected reservations are ignored. Reservations are visited by
    (start, end); each one either extends the open group (its start is
    before the group's running end) or closes it and opens a new one.
    Only groups with at least two members are returned, so every overlapping
    pair lands in exactly one group and isolated reservations are dropped.
    """
    ordered = sorted((r for r in reservations if r.blocking), key=_sweep_key)

    groups: List[ConflictGroup] = []
    current: List[Reservation] = []
    cur_end = None

    def close_group():
        if len(current) > 1:
            first = current[0]
            groups.append(ConflictGroup(
                resource_id=first.resource_id,
                date=first.date,
                start=first.interval.start,
                end=cur_end,
                reservation_ids=tuple(r.id for r in current),
            ))

    for reservation in ordered:
        if current and reservation.interval.start < cur_end:
            current.append(reservation)
            cur_end = max(cur_end, reservation.interval.end)
        else:
            close_group()
            current = [reservation]
            cur_end = reservation.interval.end
    close_group()

    return groups


def detect_calendar_conflicts(reservations: Iterable[Reservation]) -> List[ConflictGroup]:
    """Run the sweep per (resource, date) partition over a mixed calendar."""
    partitions: Dict[tuple, List[Reservation]] = defaultdict(list)
    for reservation in reservations:
        partitions[reservation.partition].append(reservation)

    groups: List[ConflictGroup] = []
    for key in sorted(partitions):
        groups.extend(detect_conflict_groups(partitions[key]))
    return groups
