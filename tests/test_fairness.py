"""Fair-use hints and the approval queue."""

from bam_booking.data_models import ReservationStatus
from bam_booking.fairness import approved_count, fair_use_hint

from conftest import book, make_reservation


def test_only_approved_reservations_count():
    reservations = [
        make_reservation(480, 540, "a", status=ReservationStatus.APPROVED),
        make_reservation(540, 600, "b", status=ReservationStatus.PENDING),
        make_reservation(600, 660, "c", status=ReservationStatus.REJECTED),
        make_reservation(660, 720, "d", status=ReservationStatus.APPROVED, requester_id="bob"),
    ]
    assert approved_count("alice", reservations) == 1
    assert approved_count("bob", reservations) == 1
    assert approved_count("carol", reservations) == 0


def test_flag_raised_strictly_above_threshold():
    two = [make_reservation(480 + 60 * i, 540 + 60 * i, status=ReservationStatus.APPROVED) for i in range(2)]
    three = [make_reservation(480 + 60 * i, 540 + 60 * i, status=ReservationStatus.APPROVED) for i in range(3)]

    assert not fair_use_hint("alice", two, threshold=2).flagged
    hint = fair_use_hint("alice", three, threshold=2)
    assert hint.flagged
    assert hint.to_dict() == {"requester_id": "alice", "approved_count": 3, "threshold": 2, "flagged": True}


async def test_hint_is_advisory(scheduler):
    for i in range(3):
        outcome = await book(scheduler, 480 + 60 * i, 540 + 60 * i)
        assert (await scheduler.approve(outcome.reservation.id, "teacher-1")).ok

    assert (await scheduler.fair_use_hint("alice")).flagged
    fourth = await book(scheduler, 720, 780)
    assert fourth.ok
    assert (await scheduler.approve(fourth.reservation.id, "teacher-1")).ok


async def test_approval_queue_lists_pending_with_overlaps(lenient_scheduler):
    a = (await book(lenient_scheduler, 540, 600, requester="alice")).reservation
    b = (await book(lenient_scheduler, 570, 630, requester="bob")).reservation
    c = (await book(lenient_scheduler, 480, 510, requester="carol")).reservation
    done = (await book(lenient_scheduler, 720, 780, requester="alice")).reservation
    await lenient_scheduler.approve(done.id, "teacher-1")

    queue = await lenient_scheduler.approval_queue()

    assert [e.reservation.id for e in queue] == [c.id, a.id, b.id]
    overlaps = {e.reservation.id: e.overlapping_ids for e in queue}
    assert overlaps == {c.id: (), a.id: (b.id,), b.id: (a.id,)}
    hints = {e.reservation.id: e.fair_use.approved_count for e in queue}
    assert hints == {c.id: 0, a.id: 1, b.id: 0}


async def test_approval_queue_to_dict(scheduler):
    pending = (await book(scheduler, 540, 600)).reservation
    entry = (await scheduler.approval_queue())[0]
    data = entry.to_dict()
    assert data["reservation"]["id"] == pending.id
    assert data["overlapping_ids"] == []
    assert data["fair_use"]["flagged"] is False
