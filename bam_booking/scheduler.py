# scheduler.py
"""
Booking scheduler

Entry point for every change to reservations:

- request_reservation: admission (shape -> resource -> overlap), then insert
  as PENDING inside the partition's critical section
- decide / approve / reject: PENDING -> APPROVED | REJECTED, re-checking
  approved reservations for late conflicts before approving
- cancel_reservation / update_details: requester or administrator only

and the read-only views the dashboard needs (open slots, conflict groups,
approval queue with fair-use hints).

Domain failures come back as ``Outcome`` values. Only persistence failures
raise (``PersistenceUnavailable``).
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence, Tuple, Union

from bam_booking import config
from bam_booking.conflicts import detect_calendar_conflicts, detect_conflict_groups, find_overlapping
from bam_booking.coordinator import PartitionLocks
from bam_booking.data_models import ConflictGroup, Interval, Reservation, ReservationStatus
from bam_booking.errors import ErrorCode, Outcome
from bam_booking.events import (
    EventBus,
    ReservationApproved,
    ReservationCancelled,
    ReservationRejected,
    ReservationRequested,
)
from bam_booking.fairness import FairUseHint, fair_use_hint
from bam_booking.time_grid import TimeGrid

logger = logging.getLogger(__name__)

IntervalLike = Union[Interval, Tuple[int, int], Sequence[int]]


@dataclass(frozen=True)
class SlotAvailability:
    slot: Interval
    blocked_by: Tuple[str, ...] = ()

    @property
    def available(self) -> bool:
        return not self.blocked_by

    def to_dict(self) -> dict:
        return {
            "start": self.slot.start,
            "end": self.slot.end,
            "available": self.available,
            "blocked_by": list(self.blocked_by),
        }


@dataclass(frozen=True)
class QueueEntry:
    """A pending reservation as the decision-maker sees it."""
    reservation: Reservation
    overlapping_ids: Tuple[str, ...]
    fair_use: FairUseHint

    def to_dict(self) -> dict:
        return {
            "reservation": self.reservation.to_dict(),
            "overlapping_ids": list(self.overlapping_ids),
            "fair_use": self.fair_use.to_dict(),
        }


class BookingScheduler:

    def __init__(
        self,
        store,
        authorizer,
        grid: Optional[TimeGrid] = None,
        locks: Optional[PartitionLocks] = None,
        bus: Optional[EventBus] = None,
        pending_blocks_admission: bool = config.PENDING_BLOCKS_ADMISSION,
        fair_use_threshold: int = config.FAIR_USE_THRESHOLD,
    ):
        self.store = store
        self.authorizer = authorizer
        self.grid = grid or TimeGrid.from_clock(config.OPEN_TIME, config.CLOSE_TIME, config.SLOT_MINUTES)
        self.locks = locks or PartitionLocks()
        self.bus = bus or EventBus()
        self.pending_blocks_admission = pending_blocks_admission
        self.fair_use_threshold = fair_use_threshold

    # ===== Admission =====

    async def request_reservation(
        self,
        resource_id: str,
        day: date,
        interval: IntervalLike,
        requester_id: str,
        requester_name: str,
        title: str,
        group_name: Optional[str] = None,
        attendees: Optional[int] = None,
    ) -> Outcome:
        logger.info(f"Reservation request by {requester_id} for {resource_id} on {day} {interval}")

        # 1. Shape
        try:
            interval = self._coerce_interval(interval)
        except ValueError as e:
            return Outcome.failure(ErrorCode.INVALID_INTERVAL, str(e))

        grid_error = self.grid.validate(interval)
        if grid_error:
            return Outcome(ok=False, error=grid_error)

        details_error = self._check_details(title, attendees)
        if details_error:
            return details_error

        async with self.locks.hold(resource_id, day):
            async with self.store.guard(resource_id):
                # 2. Resource
                resource = await self.store.get_resource(resource_id)
                if resource is None:
                    return Outcome.failure(
                        ErrorCode.RESOURCE_UNAVAILABLE, f"Unknown resource {resource_id}", interval=interval
                    )
                if not resource.status.bookable:
                    return Outcome.failure(
                        ErrorCode.RESOURCE_UNAVAILABLE,
                        f"Resource {resource_id} is {resource.status.value}",
                        interval=interval,
                    )

                # 3. Overlap against the committed partition
                committed = await self.store.partition(resource_id, day)
                conflicts = find_overlapping(interval, [r for r in committed if self._blocks_admission(r)])
                if conflicts:
                    logger.info(
                        f"Slot conflict for {resource_id} on {day} {interval}: "
                        f"{len(conflicts)} overlapping reservation(s)"
                    )
                    return Outcome.failure(
                        ErrorCode.SLOT_CONFLICT,
                        f"{interval} overlaps {len(conflicts)} existing reservation(s)",
                        interval=interval,
                        conflicting_ids=[r.id for r in conflicts],
                    )

                reservation = Reservation(
                    resource_id=resource_id,
                    date=day,
                    interval=interval,
                    requester_id=requester_id,
                    requester_name=requester_name,
                    title=title.strip(),
                    group_name=group_name,
                    attendees=attendees,
                )
                await self.store.insert(reservation)

        logger.info(f"Reservation {reservation.id} admitted as pending")
        await self.bus.publish(ReservationRequested(
            reservation_id=reservation.id,
            resource_id=resource_id,
            date=day,
            interval=interval,
            requester_id=requester_id,
        ))
        return Outcome.success(reservation)

    def _blocks_admission(self, reservation: Reservation) -> bool:
        if reservation.status is ReservationStatus.APPROVED:
            return True
        return self.pending_blocks_admission and reservation.status is ReservationStatus.PENDING

    @staticmethod
    def _coerce_interval(value: IntervalLike) -> Interval:
        if isinstance(value, Interval):
            return value
        try:
            start, end = value
        except (TypeError, ValueError):
            raise ValueError(f"Invalid interval {value!r}, expected (start, end)")
        return Interval(start, end)

    @staticmethod
    def _check_details(title: Optional[str], attendees: Optional[int]) -> Optional[Outcome]:
        if title is not None and not title.strip():
            return Outcome.failure(ErrorCode.INVALID_REQUEST, "Title cannot be empty")
        if attendees is not None and attendees < 1:
            return Outcome.failure(ErrorCode.INVALID_REQUEST, "Attendees must be at least 1")
        return None

    # ===== Approval =====

    async def decide(
        self,
        reservation_id: str,
        decision: ReservationStatus,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> Outcome:
        logger.info(f"Decision {decision.value} on {reservation_id} by {actor_id}")

        if decision is ReservationStatus.PENDING:
            return Outcome.failure(ErrorCode.INVALID_TRANSITION, "A decision must approve or reject")

        reservation = await self.store.get(reservation_id)
        if reservation is None:
            return Outcome.failure(ErrorCode.INVALID_TRANSITION, f"Reservation {reservation_id} not found")
        if reservation.status is not ReservationStatus.PENDING:
            return self._not_pending(reservation)

        if not await self.authorizer.can_decide(actor_id, reservation.resource_id):
            logger.warning(f"{actor_id} is not allowed to decide reservation {reservation_id}")
            return Outcome.failure(
                ErrorCode.FORBIDDEN, f"{actor_id} may not decide reservations for {reservation.resource_id}"
            )

        async with self.locks.hold(reservation.resource_id, reservation.date):
            async with self.store.guard(reservation.resource_id):
                # Re-read inside the critical section; another decision may have landed
                reservation = await self.store.get(reservation_id)
                if reservation is None:
                    return Outcome.failure(ErrorCode.INVALID_TRANSITION, f"Reservation {reservation_id} not found")
                if reservation.status is not ReservationStatus.PENDING:
                    return self._not_pending(reservation)

                if decision is ReservationStatus.APPROVED:
                    partition = await self.store.partition(reservation.resource_id, reservation.date)
                    approved = [r for r in partition if r.status is ReservationStatus.APPROVED]
                    late = find_overlapping(reservation.interval, approved, exclude_id=reservation.id)
                    if late:
                        logger.warning(
                            f"Late conflict approving {reservation_id}: overlaps approved "
                            f"{', '.join(r.id for r in late)}"
                        )
                        return Outcome.failure(
                            ErrorCode.LATE_CONFLICT,
                            f"{reservation.interval} now overlaps {len(late)} approved reservation(s)",
                            interval=reservation.interval,
                            conflicting_ids=[r.id for r in late],
                        )
                    reservation.approve(actor_id)
                else:
                    reservation.reject(actor_id, reason)

                if not await self.store.update_status(reservation, expected=ReservationStatus.PENDING):
                    return Outcome.failure(
                        ErrorCode.INVALID_TRANSITION, f"Reservation {reservation_id} is no longer pending"
                    )

        logger.info(f"Reservation {reservation_id} {reservation.status.value} by {actor_id}")
        if reservation.status is ReservationStatus.APPROVED:
            event = ReservationApproved(
                reservation_id=reservation.id,
                resource_id=reservation.resource_id,
                date=reservation.date,
                interval=reservation.interval,
                decided_by=actor_id,
            )
        else:
            event = ReservationRejected(
                reservation_id=reservation.id,
                resource_id=reservation.resource_id,
                date=reservation.date,
                interval=reservation.interval,
                decided_by=actor_id,
                reason=reason,
            )
        await self.bus.publish(event)
        return Outcome.success(reservation)

    async def approve(self, reservation_id: str, actor_id: str) -> Outcome:
        return await self.decide(reservation_id, ReservationStatus.APPROVED, actor_id)

    async def reject(self, reservation_id: str, actor_id: str, reason: Optional[str] = None) -> Outcome:
        return await self.decide(reservation_id, ReservationStatus.REJECTED, actor_id, reason)

    @staticmethod
    def _not_pending(reservation: Reservation) -> Outcome:
        return Outcome.failure(
            ErrorCode.INVALID_TRANSITION,
            f"Reservation {reservation.id} is already {reservation.status.value}",
            interval=reservation.interval,
        )

    # ===== Cancellation and edits =====

    async def _may_modify(self, reservation: Reservation, actor_id: str) -> bool:
        if await self.authorizer.can_administer(actor_id, reservation.resource_id):
            return True
        return reservation.requester_id == actor_id and reservation.status is not ReservationStatus.APPROVED

    async def cancel_reservation(self, reservation_id: str, actor_id: str) -> Outcome:
        """Hard delete. Requesters may withdraw until approved; administrators always."""
        reservation = await self.store.get(reservation_id)
        if reservation is None:
            return Outcome.failure(ErrorCode.NOT_FOUND, f"Reservation {reservation_id} not found")

        if not await self._may_modify(reservation, actor_id):
            logger.warning(f"PERMISSION DENIED: {actor_id} tried to cancel reservation {reservation_id}")
            return Outcome.failure(ErrorCode.FORBIDDEN, f"{actor_id} may not cancel reservation {reservation_id}")

        async with self.locks.hold(reservation.resource_id, reservation.date):
            async with self.store.guard(reservation.resource_id):
                current = await self.store.get(reservation_id)
                if current is None:
                    return Outcome.failure(ErrorCode.NOT_FOUND, f"Reservation {reservation_id} not found")
                # Approved in the meantime: re-check the requester's right
                if current.status is not reservation.status and not await self._may_modify(current, actor_id):
                    return Outcome.failure(
                        ErrorCode.FORBIDDEN, f"{actor_id} may not cancel reservation {reservation_id}"
                    )
                await self.store.delete(reservation_id)

        logger.info(f"Reservation {reservation_id} cancelled by {actor_id}")
        await self.bus.publish(ReservationCancelled(
            reservation_id=current.id,
            resource_id=current.resource_id,
            date=current.date,
            interval=current.interval,
            cancelled_by=actor_id,
        ))
        return Outcome.success(current)

    async def update_details(
        self,
        reservation_id: str,
        actor_id: str,
        title: Optional[str] = None,
        group_name: Optional[str] = None,
        attendees: Optional[int] = None,
    ) -> Outcome:
        """Edit title, group and attendees. Time, resource and date never change."""
        reservation = await self.store.get(reservation_id)
        if reservation is None:
            return Outcome.failure(ErrorCode.NOT_FOUND, f"Reservation {reservation_id} not found")

        is_admin = await self.authorizer.can_administer(actor_id, reservation.resource_id)
        if not is_admin and reservation.requester_id != actor_id:
            return Outcome.failure(ErrorCode.FORBIDDEN, f"{actor_id} may not edit reservation {reservation_id}")

        details_error = self._check_details(title, attendees)
        if details_error:
            return details_error

        if title is not None:
            reservation.title = title.strip()
        if group_name is not None:
            reservation.group_name = group_name
        if attendees is not None:
            reservation.attendees = attendees
        await self.store.update_details(reservation)

        logger.info(f"Reservation {reservation_id} details updated by {actor_id}")
        return Outcome.success(reservation)

    # ===== Read-only views =====

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        return await self.store.get(reservation_id)

    async def list_reservations(
        self,
        resource_id: Optional[str] = None,
        day: Optional[date] = None,
        status: Optional[ReservationStatus] = None,
        requester_id: Optional[str] = None,
    ) -> List[Reservation]:
        return await self.store.list(resource_id=resource_id, day=day, status=status, requester_id=requester_id)

    async def available_slots(self, resource_id: str, day: date) -> List[SlotAvailability]:
        """Every canonical slot of the day, with the reservations that block it."""
        committed = [r for r in await self.store.partition(resource_id, day) if self._blocks_admission(r)]
        return [
            SlotAvailability(slot, tuple(r.id for r in find_overlapping(slot, committed)))
            for slot in self.grid.slots()
        ]

    async def conflict_groups(self, resource_id: str, day: date) -> List[ConflictGroup]:
        return detect_conflict_groups(await self.store.partition(resource_id, day))

    async def calendar_conflicts(self, day: Optional[date] = None) -> List[ConflictGroup]:
        return detect_calendar_conflicts(await self.store.list(day=day))

    async def fair_use_hint(self, requester_id: str) -> FairUseHint:
        approved = await self.store.list(requester_id=requester_id, status=ReservationStatus.APPROVED)
        return fair_use_hint(requester_id, approved, self.fair_use_threshold)

    async def approval_queue(
        self,
        resource_id: Optional[str] = None,
        day: Optional[date] = None,
    ) -> List[QueueEntry]:
        """Pending reservations by (date, start), annotated with overlaps and fair-use hints."""
        everything = await self.store.list(resource_id=resource_id, day=day)
        pending = [r for r in everything if r.status is ReservationStatus.PENDING]
        approved = await self.store.list(status=ReservationStatus.APPROVED)

        entries = []
        for reservation in pending:
            partition = [r for r in everything if r.partition == reservation.partition and r.blocking]
            overlapping = find_overlapping(reservation.interval, partition, exclude_id=reservation.id)
            entries.append(QueueEntry(
                reservation=reservation,
                overlapping_ids=tuple(r.id for r in overlapping),
                fair_use=fair_use_hint(reservation.requester_id, approved, self.fair_use_threshold),
            ))
        return entries
