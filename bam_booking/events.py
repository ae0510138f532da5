# events.py
"""
Reservation events

Published by the scheduler after a change has been committed. Subscribers
(the WebSocket broadcaster, an external usage-session tracker...) react to
them; a failing subscriber is logged and never undoes or blocks the change.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Type
from uuid import uuid4

from bam_booking.data_models import Interval

logger = logging.getLogger(__name__)


@dataclass
class ReservationEvent:
    reservation_id: str
    resource_id: str
    date: date
    interval: Interval
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.__class__.__name__,
            "occurred_at": self.occurred_at.isoformat(),
            "reservation_id": self.reservation_id,
            "resource_id": self.resource_id,
            "date": self.date.isoformat(),
            "interval": self.interval.to_dict(),
        }


@dataclass
class ReservationRequested(ReservationEvent):
    """A pending reservation was admitted."""
    requester_id: str = ""


@dataclass
class ReservationApproved(ReservationEvent):
    """
    Interval and id are final from here on; a usage session may reference them.
    """
    decided_by: str = ""


@dataclass
class ReservationRejected(ReservationEvent):
    decided_by: str = ""
    reason: Optional[str] = None


@dataclass
class ReservationCancelled(ReservationEvent):
    cancelled_by: str = ""


Handler = Callable[[ReservationEvent], object]


class EventBus:
    """
    One event type, many handlers. Handlers may be plain functions or coroutines.
    """

    def __init__(self):
        self._handlers: Dict[Type[ReservationEvent], List[Handler]] = {}

    def subscribe(self, event_type: Type[ReservationEvent], handler: Handler):
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered event handler for {event_type.__name__}")

    def subscribe_all(self, handler: Handler):
        for event_type in (ReservationRequested, ReservationApproved, ReservationRejected, ReservationCancelled):
            self.subscribe(event_type, handler)

    async def publish(self, event: ReservationEvent):
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])
        if not handlers:
            logger.debug(f"No handlers registered for event {event_type.__name__}")
            return

        logger.info(f"Publishing event: {event_type.__name__} (reservation {event.reservation_id})")
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # Other handlers should still run
                logger.error(
                    f"Error in event handler {getattr(handler, '__name__', handler)} "
                    f"for event {event_type.__name__}: {e}",
                    exc_info=True,
                )
