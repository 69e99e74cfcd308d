from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .clock import Clock, utc_now
from .config import Settings
from .notifications import LoggingNotificationSink, NotificationSink, Notifier
from .payments import PaymentService, SimulatedCardGateway
from .reconciliation import ReconciliationService
from .reviews import ReviewService
from .scheduler import ReconciliationScheduler
from .service import BookingService, TourService
from .state_machine import BookingStateMachine
from .storage import InMemoryEntityStore


@dataclass
class Services:
    store: InMemoryEntityStore
    tours: TourService
    bookings: BookingService
    payments: PaymentService
    reviews: ReviewService
    reconciliation: ReconciliationService
    settings: Settings
    clock: Clock

    def build_scheduler(self) -> ReconciliationScheduler:
        return ReconciliationScheduler(self.reconciliation, self.settings)


def build_services(
    settings: Settings,
    *,
    clock: Clock = utc_now,
    store: Optional[InMemoryEntityStore] = None,
    sink: Optional[NotificationSink] = None,
) -> Services:
    store = store or InMemoryEntityStore(clock)
    machine = BookingStateMachine(store, clock, Notifier(sink or LoggingNotificationSink()))
    gateway = SimulatedCardGateway(settings.declined_card_number, settings.failing_card_number, clock)
    return Services(
        store=store,
        tours=TourService(store, clock),
        bookings=BookingService(store, machine, clock),
        payments=PaymentService(store, machine, gateway, settings, clock),
        reviews=ReviewService(store, clock),
        reconciliation=ReconciliationService(
            store, machine, clock, pending_ttl=timedelta(hours=settings.pending_booking_ttl_hours)
        ),
        settings=settings,
        clock=clock,
    )
