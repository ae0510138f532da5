from datetime import date

import pytest
import sqlalchemy
from databases import Database

from bam_booking.auth import RoleAuthorizer
from bam_booking.data_models import Interval, Reservation, ReservationStatus, Resource, ResourceStatus
from bam_booking.database import metadata
from bam_booking.scheduler import BookingScheduler
from bam_booking.store import InMemoryReservationStore, SqlReservationStore
from bam_booking.time_grid import TimeGrid

DAY = date(2025, 3, 10)

ROLES = {
    "teacher-1": "teacher",
    "admin-1": "admin",
    "alice": "student",
    "bob": "student",
    "carol": "student",
}


def make_resources():
    return [
        Resource("bio-1", "Bioscope 1", ResourceStatus.AVAILABLE, "Lab A"),
        Resource("bio-2", "Bioscope 2", ResourceStatus.IN_USE, "Lab A"),
        Resource("bio-3", "Bioscope 3", ResourceStatus.MAINTENANCE, "Lab B"),
        Resource("bio-4", "Bioscope 4", ResourceStatus.OFFLINE, "Lab B"),
    ]


def make_reservation(start, end, rid=None, status=ReservationStatus.PENDING,
                     resource_id="bio-1", day=DAY, requester_id="alice"):
    reservation = Reservation(
        resource_id=resource_id,
        date=day,
        interval=Interval(start, end),
        requester_id=requester_id,
        requester_name=requester_id.title(),
        title="Lab session",
        status=status,
    )
    if rid:
        reservation.id = rid
    return reservation


@pytest.fixture
def grid():
    return TimeGrid(480, 1020, 30)


@pytest.fixture
def store():
    return InMemoryReservationStore(make_resources())


@pytest.fixture
def authorizer():
    return RoleAuthorizer(ROLES)


@pytest.fixture
def scheduler(store, authorizer, grid):
    return BookingScheduler(store, authorizer, grid=grid, pending_blocks_admission=True, fair_use_threshold=2)


@pytest.fixture
def lenient_scheduler(store, authorizer, grid):
    """Only approved reservations block admission."""
    return BookingScheduler(store, authorizer, grid=grid, pending_blocks_admission=False, fair_use_threshold=2)


@pytest.fixture
async def sql_store(tmp_path):
    url = f"sqlite:///{tmp_path / 'bookings.db'}"
    engine = sqlalchemy.create_engine(url)
    metadata.create_all(bind=engine)
    engine.dispose()

    database = Database(url)
    await database.connect()
    store = SqlReservationStore(database)
    for resource in make_resources():
        await store.add_resource(resource)
    yield store
    await database.disconnect()


async def book(scheduler, start, end, requester="alice", resource_id="bio-1", day=DAY, title="Lab session"):
    return await scheduler.request_reservation(
        resource_id=resource_id,
        day=day,
        interval=Interval(start, end),
        requester_id=requester,
        requester_name=requester.title(),
        title=title,
    )
