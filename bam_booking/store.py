# store.py
"""
Reservation persistence.

Two stores share one async interface:

- InMemoryReservationStore: rows keyed by id plus a secondary index by
  (resource_id, date). Used by tests and single-process deployments.
- SqlReservationStore: SQLAlchemy Core tables through ``databases``, on
  SQLite (the only backend whose driver errors it translates).

``guard(resource_id)`` opens the store side of the critical section. The
scheduler reads the partition, checks for overlaps and writes inside it, so
the check and the write commit together. The SQL store runs it as one
transaction; SQLite's database write lock serializes other
worker processes, and a writer that loses that race fails with
``PersistenceUnavailable``.
"""

import logging
import sqlite3
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

import sqlalchemy
from databases import Database
from sqlalchemy.exc import SQLAlchemyError

from bam_booking.data_models import Reservation, ReservationStatus, Resource, ResourceStatus
from bam_booking.errors import PersistenceUnavailable
from bam_booking.models import reservations, resources

logger = logging.getLogger(__name__)


class InMemoryReservationStore:
    def __init__(self, initial_resources: Optional[List[Resource]] = None):
        self._resources: Dict[str, Resource] = {}
        self._rows: Dict[str, Reservation] = {}
        self._by_partition: Dict[Tuple[str, date], Set[str]] = defaultdict(set)
        for resource in initial_resources or []:
            self._resources[resource.id] = resource

    @asynccontextmanager
    async def guard(self, resource_id: str):
        yield

    # Resources
    async def add_resource(self, resource: Resource):
        self._resources[resource.id] = resource

    async def set_resource_status(self, resource_id: str, status: ResourceStatus) -> bool:
        resource = self._resources.get(resource_id)
        if not resource:
            return False
        resource.status = status
        return True

    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        return self._resources.get(resource_id)

    async def list_resources(self) -> List[Resource]:
        return sorted(self._resources.values(), key=lambda r: r.id)

    # Reservations
    async def get(self, reservation_id: str) -> Optional[Reservation]:
        row = self._rows.get(reservation_id)
        return row.copy() if row else None

    async def partition(self, resource_id: str, day: date) -> List[Reservation]:
        ids = self._by_partition.get((resource_id, day), ())
        return [self._rows[i].copy() for i in ids]

    async def list(
        self,
        resource_id: Optional[str] = None,
        day: Optional[date] = None,
        status: Optional[ReservationStatus] = None,
        requester_id: Optional[str] = None,
    ) -> List[Reservation]:
        if resource_id is not None and day is not None:
            candidates = await self.partition(resource_id, day)
        else:
            candidates = [row.copy() for row in self._rows.values()]
        selected = [
            r for r in candidates
            if (resource_id is None or r.resource_id == resource_id)
            and (day is None or r.date == day)
            and (status is None or r.status is status)
            and (requester_id is None or r.requester_id == requester_id)
        ]
        return sorted(selected, key=lambda r: (r.date, r.interval.start, r.resource_id, r.id))

    async def insert(self, reservation: Reservation):
        if reservation.id in self._rows:
            raise ValueError(f"Reservation {reservation.id} already exists")
        self._rows[reservation.id] = reservation.copy()
        self._by_partition[reservation.partition].add(reservation.id)

    async def update_status(self, reservation: Reservation, expected: ReservationStatus) -> bool:
        current = self._rows.get(reservation.id)
        if not current or current.status is not expected:
            return False
        self._rows[reservation.id] = reservation.copy()
        return True

    async def update_details(self, reservation: Reservation):
        current = self._rows.get(reservation.id)
        if current:
            current.title = reservation.title
            current.group_name = reservation.group_name
            current.attendees = reservation.attendees

    async def delete(self, reservation_id: str) -> bool:
        row = self._rows.pop(reservation_id, None)
        if not row:
            return False
        self._by_partition[row.partition].discard(reservation_id)
        return True


class SqlReservationStore:
    SUPPORTED_DIALECTS = ("sqlite",)

    def __init__(self, database: Database):
        if database.url.dialect not in self.SUPPORTED_DIALECTS:
            raise ValueError(
                f"Unsupported database backend {database.url.dialect!r}, "
                f"expected one of {', '.join(self.SUPPORTED_DIALECTS)}"
            )
        self.database = database

    @asynccontextmanager
    async def _translate_errors(self):
        try:
            yield
        except (SQLAlchemyError, sqlite3.Error, OSError) as e:
            logger.error(f"Reservation store unavailable: {e}", exc_info=True)
            raise PersistenceUnavailable(str(e)) from e

    @asynccontextmanager
    async def guard(self, resource_id: str):
        async with self._translate_errors():
            async with self.database.transaction():
                yield

    # Resources
    async def add_resource(self, resource: Resource):
        async with self._translate_errors():
            await self.database.execute(resources.insert().values(
                id=resource.id,
                name=resource.name,
                location=resource.location,
                status=resource.status.value,
            ))

    async def set_resource_status(self, resource_id: str, status: ResourceStatus) -> bool:
        if not await self.get_resource(resource_id):
            return False
        async with self._translate_errors():
            await self.database.execute(
                resources.update().where(resources.c.id == resource_id).values(status=status.value)
            )
        return True

    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        async with self._translate_errors():
            row = await self.database.fetch_one(resources.select().where(resources.c.id == resource_id))
        return self._resource_from_row(row) if row else None

    async def list_resources(self) -> List[Resource]:
        async with self._translate_errors():
            rows = await self.database.fetch_all(resources.select().order_by(resources.c.id))
        return [self._resource_from_row(row) for row in rows]

    @staticmethod
    def _resource_from_row(row) -> Resource:
        return Resource(
            id=row["id"],
            name=row["name"],
            location=row["location"],
            status=ResourceStatus(row["status"]),
        )

    # Reservations
    async def get(self, reservation_id: str) -> Optional[Reservation]:
        async with self._translate_errors():
            row = await self.database.fetch_one(reservations.select().where(reservations.c.id == reservation_id))
        return Reservation.from_row(row) if row else None

    async def partition(self, resource_id: str, day: date) -> List[Reservation]:
        return await self.list(resource_id=resource_id, day=day)

    async def list(
        self,
        resource_id: Optional[str] = None,
        day: Optional[date] = None,
        status: Optional[ReservationStatus] = None,
        requester_id: Optional[str] = None,
    ) -> List[Reservation]:
        query = reservations.select()
        if resource_id is not None:
            query = query.where(reservations.c.resource_id == resource_id)
        if day is not None:
            query = query.where(reservations.c.date == day)
        if status is not None:
            query = query.where(reservations.c.status == status.value)
        if requester_id is not None:
            query = query.where(reservations.c.requester_id == requester_id)
        query = query.order_by(
            reservations.c.date,
            reservations.c.slot_start,
            reservations.c.resource_id,
            reservations.c.id,
        )
        async with self._translate_errors():
            rows = await self.database.fetch_all(query)
        return [Reservation.from_row(row) for row in rows]

    async def insert(self, reservation: Reservation):
        async with self._translate_errors():
            await self.database.execute(reservations.insert().values(**reservation.to_row()))

    async def update_status(self, reservation: Reservation, expected: ReservationStatus) -> bool:
        """Conditional update: only applies while the stored status is still ``expected``."""
        query = (
            reservations.update()
            .where(sqlalchemy.and_(
                reservations.c.id == reservation.id,
                reservations.c.status == expected.value,
            ))
            .values(
                status=reservation.status.value,
                decided_by=reservation.decided_by,
                decided_at=reservation.decided_at,
                rejection_reason=reservation.rejection_reason,
            )
            .returning(reservations.c.id)
        )
        async with self._translate_errors():
            updated = await self.database.fetch_one(query)
        return updated is not None

    async def update_details(self, reservation: Reservation):
        async with self._translate_errors():
            await self.database.execute(
                reservations.update()
                .where(reservations.c.id == reservation.id)
                .values(
                    title=reservation.title,
                    group_name=reservation.group_name,
                    attendees=reservation.attendees,
                )
            )

    async def delete(self, reservation_id: str) -> bool:
        if not await self.get(reservation_id):
            return False
        async with self._translate_errors():
            await self.database.execute(reservations.delete().where(reservations.c.id == reservation_id))
        return True
