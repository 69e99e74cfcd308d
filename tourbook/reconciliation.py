from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional

from .clock import Clock, utc_now
from .models import BookingStatus, PaymentStatus, TourStatus
from .state_machine import BookingStateMachine
from .storage import InMemoryEntityStore
from .tour_status import resolve_phase

logger = logging.getLogger(__name__)

TOUR_PHASES = "tour_phases"
BOOKING_PHASES = "booking_phases"
EXPIRED_BOOKINGS = "expired_bookings"
ALL_DUTIES = (TOUR_PHASES, BOOKING_PHASES, EXPIRED_BOOKINGS)


@dataclass
class TickReport:
    tours_started: int = 0
    tours_completed: int = 0
    bookings_completed: int = 0
    bookings_expired: int = 0
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class ReconciliationService:
    """Time-driven state advancement for tours and bookings.

    Each duty is a set-based update over the current store contents, so running it again
    right away changes nothing. Duties never overlap with themselves: a duty that is still
    running when asked again is skipped.
    """

    def __init__(
        self,
        store: InMemoryEntityStore,
        machine: BookingStateMachine,
        clock: Clock = utc_now,
        pending_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self._store = store
        self._machine = machine
        self._clock = clock
        self._pending_ttl = pending_ttl
        self._duties: Dict[str, Callable[[TickReport], None]] = {
            TOUR_PHASES: self.advance_tour_phases,
            BOOKING_PHASES: self.complete_past_bookings,
            EXPIRED_BOOKINGS: self.expire_stale_bookings,
        }
        self._locks: Dict[str, Lock] = {name: Lock() for name in self._duties}

    def run_reconciliation_tick(self, duties: Optional[Iterable[str]] = None) -> TickReport:
        report = TickReport()
        for name in duties or ALL_DUTIES:
            self.run_duty(name, report)
        return report

    def run_duty(self, name: str, report: TickReport) -> None:
        lock = self._locks[name]
        if not lock.acquire(blocking=False):
            logger.warning("Reconciliation duty still running, skipping", extra={"duty": name})
            report.skipped.append(name)
            return
        try:
            self._duties[name](report)
        except Exception:
            logger.exception("Reconciliation duty failed", extra={"duty": name})
            report.failed.append(name)
        finally:
            lock.release()

    def advance_tour_phases(self, report: TickReport) -> None:
        now = self._clock()
        tours = self._store.tours.find(lambda t: t.tour_status != TourStatus.CANCELLED and t.has_schedule)
        for tour in tours:
            phase = resolve_phase(tour, now)
            if phase == tour.tour_status:
                continue
            updated = self._store.tours.update(
                tour.id, {"tour_status": phase}, expected={"tour_status": {tour.tour_status}}
            )
            if updated is None:
                logger.info("Tour changed concurrently, left for the next run", extra={"tour_id": tour.id})
                continue
            logger.info(
                "Tour phase advanced",
                extra={"tour_id": tour.id, "from_status": tour.tour_status.value, "to_status": phase.value},
            )
            if phase == TourStatus.ONGOING:
                report.tours_started += 1
            elif phase == TourStatus.COMPLETED:
                report.tours_completed += 1
                completed = self._store.bookings.update_many(
                    lambda b: (
                        b.tour_id == tour.id and b.status == BookingStatus.CONFIRMED and b.booking_date < now
                    ),
                    {"status": BookingStatus.COMPLETED},
                )
                self._machine.record_completed(completed)
                report.bookings_completed += len(completed)

        logger.info(
            "Tour status update completed",
            extra={"started": report.tours_started, "completed": report.tours_completed},
        )

    def complete_past_bookings(self, report: TickReport) -> None:
        now = self._clock()
        completed = self._store.bookings.update_many(
            lambda b: b.status == BookingStatus.CONFIRMED and b.booking_date < now,
            {"status": BookingStatus.COMPLETED},
        )
        self._machine.record_completed(completed)
        report.bookings_completed += len(completed)
        logger.info("Booking status update completed", extra={"updated": len(completed)})

    def expire_stale_bookings(self, report: TickReport) -> None:
        cutoff = self._clock() - self._pending_ttl
        expired = self._store.bookings.update_many(
            lambda b: (
                b.status == BookingStatus.PENDING
                and b.payment_status == PaymentStatus.PENDING
                and b.created_at < cutoff
            ),
            {"status": BookingStatus.CANCELLED},
        )
        self._machine.record_cancelled(expired)
        report.bookings_expired += len(expired)
        logger.info("Expired booking cleanup completed", extra={"cancelled": len(expired)})
