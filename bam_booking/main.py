# main.py
import json
import logging
import os
from datetime import date
from typing import List, Optional

import fastapi
from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bam_booking.auth import (
    ADMIN_ROLES,
    STAFF_ROLES,
    DatabaseRoleAuthorizer,
    User,
    decode_access_token,
    get_current_active_user,
    get_user,
)
from bam_booking.config import configure_logging
from bam_booking.data_models import ReservationStatus, Resource, ResourceStatus
from bam_booking.database import database, engine, metadata
from bam_booking.errors import ErrorCode, Outcome, PersistenceUnavailable
from bam_booking.events import ReservationEvent
from bam_booking.models import users
from bam_booking.scheduler import BookingScheduler
from bam_booking.store import SqlReservationStore

logger = logging.getLogger(__name__)

#FastAPI Setup
app = fastapi.FastAPI(title="Bioscope booking engine")

scheduler = BookingScheduler(SqlReservationStore(database), DatabaseRoleAuthorizer())


def get_scheduler() -> BookingScheduler:
    return scheduler


# Request Models
class ResourceCreate(BaseModel):
    id: str
    name: str
    location: Optional[str] = None
    status: ResourceStatus = ResourceStatus.AVAILABLE


class ResourceStatusUpdate(BaseModel):
    status: ResourceStatus


class ReservationCreate(BaseModel):
    resource_id: str
    date: date
    slot_start: int
    slot_end: int
    title: str
    group_name: Optional[str] = None
    attendees: Optional[int] = None


class ReservationUpdate(BaseModel):
    title: Optional[str] = None
    group_name: Optional[str] = None
    attendees: Optional[int] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


ERROR_STATUS = {
    ErrorCode.INVALID_INTERVAL: status.HTTP_400_BAD_REQUEST,
    ErrorCode.OUT_OF_BOUNDS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.MISALIGNED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.RESOURCE_UNAVAILABLE: status.HTTP_409_CONFLICT,
    ErrorCode.SLOT_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.LATE_CONFLICT: status.HTTP_409_CONFLICT,
}


def _unwrap(outcome: Outcome) -> dict:
    if not outcome.ok:
        raise HTTPException(status_code=ERROR_STATUS[outcome.code], detail=outcome.error.to_dict())
    return outcome.reservation.to_dict()


def _require_role(user: User, roles):
    if user.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")


class ConnectionManager:
    def __init__(self):
        self.active_connections: List[fastapi.WebSocket] = []

    async def connect(self, websocket: fastapi.WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: fastapi.WebSocket):
        self.active_connections.remove(websocket)

    async def broadcast(self, message: str):
        for connection in list(self.active_connections):
            await connection.send_text(message)

    async def broadcast_event(self, event: ReservationEvent):
        await self.broadcast(json.dumps({"type": "reservation_event", "data": event.to_dict()}))


manager = ConnectionManager()
scheduler.bus.subscribe_all(manager.broadcast_event)


@app.exception_handler(PersistenceUnavailable)
async def persistence_unavailable_handler(request: Request, exc: PersistenceUnavailable):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Reservation store unavailable, please retry."},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/users/me", response_model=User)
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user


# Resource Endpoints
@app.get("/api/resources")
async def list_resources(scheduler: BookingScheduler = Depends(get_scheduler)):
    return [
        {"id": r.id, "name": r.name, "location": r.location, "status": r.status.value}
        for r in await scheduler.store.list_resources()
    ]


@app.post("/api/resources", status_code=status.HTTP_201_CREATED)
async def create_resource(
    resource: ResourceCreate,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    _require_role(current_user, ADMIN_ROLES)
    if await scheduler.store.get_resource(resource.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Resource already exists.")
    await scheduler.store.add_resource(Resource(
        id=resource.id, name=resource.name, location=resource.location, status=resource.status
    ))
    return {"message": "Resource created successfully."}


@app.put("/api/resources/{resource_id}/status")
async def update_resource_status(
    resource_id: str,
    update: ResourceStatusUpdate,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    _require_role(current_user, ADMIN_ROLES)
    if not await scheduler.store.set_resource_status(resource_id, update.status):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")
    return {"message": "Resource status updated."}


@app.get("/api/resources/{resource_id}/slots")
async def resource_slots(
    resource_id: str,
    day: date = Query(..., alias="date"),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return [slot.to_dict() for slot in await scheduler.available_slots(resource_id, day)]


@app.get("/api/resources/{resource_id}/conflicts")
async def resource_conflicts(
    resource_id: str,
    day: date = Query(..., alias="date"),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return [group.to_dict() for group in await scheduler.conflict_groups(resource_id, day)]


@app.get("/api/conflicts")
async def calendar_conflicts(
    day: Optional[date] = Query(None, alias="date"),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return [group.to_dict() for group in await scheduler.calendar_conflicts(day)]


# Reservation Endpoints
@app.get("/api/bookings")
async def list_bookings(
    resource_id: Optional[str] = None,
    day: Optional[date] = Query(None, alias="date"),
    booking_status: Optional[ReservationStatus] = Query(None, alias="status"),
    mine: bool = False,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    found = await scheduler.list_reservations(
        resource_id=resource_id,
        day=day,
        status=booking_status,
        requester_id=current_user.username if mine else None,
    )
    return [r.to_dict() for r in found]


@app.post("/api/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: ReservationCreate,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    outcome = await scheduler.request_reservation(
        resource_id=request.resource_id,
        day=request.date,
        interval=(request.slot_start, request.slot_end),
        requester_id=current_user.username,
        requester_name=current_user.full_name or current_user.username,
        title=request.title,
        group_name=request.group_name,
        attendees=request.attendees,
    )
    return _unwrap(outcome)


@app.get("/api/bookings/{booking_id}")
async def get_booking(
    booking_id: str,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    reservation = await scheduler.get_reservation(booking_id)
    if reservation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return reservation.to_dict()


@app.patch("/api/bookings/{booking_id}")
async def update_booking(
    booking_id: str,
    update: ReservationUpdate,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    outcome = await scheduler.update_details(booking_id, current_user.username, **update.dict(exclude_unset=True))
    return _unwrap(outcome)


@app.delete("/api/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: str,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    _unwrap(await scheduler.cancel_reservation(booking_id, current_user.username))


@app.post("/api/bookings/{booking_id}/approve")
async def approve_booking(
    booking_id: str,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    return _unwrap(await scheduler.approve(booking_id, current_user.username))


@app.post("/api/bookings/{booking_id}/reject")
async def reject_booking(
    booking_id: str,
    request: Optional[RejectRequest] = None,
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    reason = request.reason if request else None
    return _unwrap(await scheduler.reject(booking_id, current_user.username, reason))


@app.get("/api/approvals")
async def approval_queue(
    resource_id: Optional[str] = None,
    day: Optional[date] = Query(None, alias="date"),
    current_user: User = Depends(get_current_active_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    _require_role(current_user, STAFF_ROLES)
    return [entry.to_dict() for entry in await scheduler.approval_queue(resource_id, day)]


@app.websocket("/ws")
async def websocket_endpoint(websocket: fastapi.WebSocket, token: str = Query(None)):
    """
    Pushes reservation events to authenticated dashboards.
    """
    username = decode_access_token(token) if token else None
    if username is None or await get_user(username) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket)
    await websocket.send_text(json.dumps({"type": "auth_success", "data": {"username": username}}))
    try:
        while True:
            # Clients only listen; incoming frames keep the connection alive
            await websocket.receive_text()
    except fastapi.WebSocketDisconnect:
        manager.disconnect(websocket)


@app.on_event("startup")
async def startup():
    configure_logging()
    await database.connect()
    # Create tables if they don't exist
    metadata.create_all(bind=engine)

    # Default admin from environment variables
    async with database.transaction():
        admin_username = os.getenv("ADMIN_USERNAME", "admin")
        query = users.select().where(users.c.username == admin_username)
        if not await database.fetch_one(query):
            await database.execute(query=users.insert(), values={
                "username": admin_username,
                "full_name": "Administrator",
                "role": "admin",
            })
            logger.info(f"Created default admin user {admin_username}")


@app.on_event("shutdown")
async def shutdown():
    await database.disconnect()
