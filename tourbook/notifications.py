from __future__ import annotations

import logging
from typing import List, Protocol

from .models import BookingEvent

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking_created"
BOOKING_CONFIRMED = "booking_confirmed"
BOOKING_CANCELLED = "booking_cancelled"
BOOKING_COMPLETED = "booking_completed"
PAYMENT_SUCCEEDED = "payment_succeeded"
PAYMENT_REFUNDED = "payment_refunded"
NFT_MINTED = "nft_minted"


class NotificationSink(Protocol):
    def publish(self, event: BookingEvent) -> None: ...


class LoggingNotificationSink:
    def publish(self, event: BookingEvent) -> None:
        logger.info(
            "Booking event",
            extra={"event": event.kind, "booking_id": event.booking_id, "tour_id": event.tour_id},
        )


class RecordingNotificationSink:
    """Keeps published events in memory."""

    def __init__(self) -> None:
        self.events: List[BookingEvent] = []

    def publish(self, event: BookingEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [event.kind for event in self.events]


class Notifier:
    """Publishes to a sink without letting delivery problems reach the caller."""

    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink

    def publish(self, event: BookingEvent) -> None:
        try:
            self._sink.publish(event)
        except Exception:
            logger.exception(
                "Notification delivery failed",
                extra={"event": event.kind, "booking_id": event.booking_id},
            )
