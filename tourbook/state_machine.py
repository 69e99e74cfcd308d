from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, NoReturn, Optional

from .clock import Clock
from .errors import AlreadyPaidError, ForbiddenError, InvalidTransitionError, NotFoundError
from .models import Booking, BookingEvent, BookingStatus, Caller, PaymentStatus, Role, Tour, is_owner
from .notifications import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_CREATED,
    NFT_MINTED,
    PAYMENT_REFUNDED,
    PAYMENT_SUCCEEDED,
    Notifier,
)
from .storage import InMemoryEntityStore

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS: Dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

_STATUS_EVENTS = {
    BookingStatus.CONFIRMED: BOOKING_CONFIRMED,
    BookingStatus.CANCELLED: BOOKING_CANCELLED,
    BookingStatus.COMPLETED: BOOKING_COMPLETED,
}


def can_manage(tour: Tour, caller: Caller) -> bool:
    if caller.is_admin:
        return True
    return caller.role == Role.AGENCY and caller.user_id == tour.agency_id


def require_owner_or_admin(booking: Booking, caller: Caller, message: str = "not authorized") -> None:
    if not (caller.is_admin or is_owner(booking.owner, caller)):
        raise ForbiddenError(message)


def completion_due(booking: Booking, tour: Optional[Tour], now: datetime) -> bool:
    if booking.booking_date < now:
        return True
    return tour is not None and tour.end_date is not None and tour.end_date < now


def check_transition(booking: Booking, target: BookingStatus) -> None:
    if booking.status == BookingStatus.CANCELLED:
        raise InvalidTransitionError("booking is cancelled")
    if target not in STATUS_TRANSITIONS[booking.status]:
        raise InvalidTransitionError(f"cannot move booking from {booking.status.value} to {target.value}")


class BookingStateMachine:
    """Single write path for booking status and payment status changes.

    Every write is a compare-and-set on the status values the decision was based on.
    """

    def __init__(self, store: InMemoryEntityStore, clock: Clock, notifier: Notifier) -> None:
        self._store = store
        self._clock = clock
        self._notifier = notifier

    def transition(
        self,
        booking: Booking,
        target: BookingStatus,
        *,
        tour: Optional[Tour] = None,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Booking:
        check_transition(booking, target)
        if target == BookingStatus.COMPLETED and not completion_due(booking, tour, self._clock()):
            raise InvalidTransitionError("booking cannot be completed before the tour date has passed")

        patch = dict(changes or {})
        patch["status"] = target
        updated = self._store.bookings.update(booking.id, patch, expected={"status": {booking.status}})
        if updated is None:
            self._raise_stale(booking.id)

        logger.info(
            "Booking status changed",
            extra={"booking_id": booking.id, "from_status": booking.status.value, "to_status": target.value},
        )
        self._emit(_STATUS_EVENTS[target], updated)
        return updated

    def confirm_payment(self, booking: Booking, payment_changes: Mapping[str, Any]) -> Booking:
        """Mark the booking paid and confirm it if still pending, in one write."""
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidTransitionError("booking is cancelled")
        if booking.payment_status == PaymentStatus.PAID:
            raise AlreadyPaidError()
        if PaymentStatus.PAID not in PAYMENT_TRANSITIONS[booking.payment_status]:
            raise InvalidTransitionError(f"cannot pay a booking in payment state {booking.payment_status.value}")

        patch = dict(payment_changes)
        patch["payment_status"] = PaymentStatus.PAID
        if booking.status == BookingStatus.PENDING:
            patch["status"] = BookingStatus.CONFIRMED

        updated = self._store.bookings.update(
            booking.id,
            patch,
            expected={"status": {booking.status}, "payment_status": {booking.payment_status}},
        )
        if updated is None:
            self._raise_stale(booking.id, paying=True)

        logger.info(
            "Booking payment confirmed",
            extra={
                "booking_id": booking.id,
                "status": updated.status.value,
                "payment_method": updated.payment_method.value,
            },
        )
        self._emit(PAYMENT_SUCCEEDED, updated, transaction_id=updated.transaction_id)
        if booking.status != updated.status:
            self._emit(BOOKING_CONFIRMED, updated)
        return updated

    def refund(self, booking: Booking) -> Booking:
        if PaymentStatus.REFUNDED not in PAYMENT_TRANSITIONS[booking.payment_status]:
            raise InvalidTransitionError("booking is not paid, cannot refund")

        patch: Dict[str, Any] = {"payment_status": PaymentStatus.REFUNDED}
        if BookingStatus.CANCELLED in STATUS_TRANSITIONS[booking.status]:
            patch["status"] = BookingStatus.CANCELLED

        updated = self._store.bookings.update(
            booking.id,
            patch,
            expected={"status": {booking.status}, "payment_status": {booking.payment_status}},
        )
        if updated is None:
            self._raise_stale(booking.id)

        logger.info("Booking refunded", extra={"booking_id": booking.id, "status": updated.status.value})
        self._emit(PAYMENT_REFUNDED, updated, amount=str(updated.total_price))
        if booking.status != updated.status:
            self._emit(BOOKING_CANCELLED, updated)
        return updated

    def mark_nft_minted(self, booking: Booking, serial_number: str) -> Booking:
        updated = self._store.bookings.update(
            booking.id,
            {"nft_minted": True, "nft_serial_number": serial_number},
            expected={"status": {BookingStatus.COMPLETED}, "nft_minted": {False}},
        )
        if updated is None:
            self._raise_stale(booking.id)
        logger.info("Booking NFT minted", extra={"booking_id": booking.id, "serial_number": serial_number})
        self._emit(NFT_MINTED, updated, serial_number=serial_number)
        return updated

    def record_created(self, booking: Booking) -> None:
        self._emit(BOOKING_CREATED, booking, total_price=str(booking.total_price))

    def record_completed(self, bookings: list[Booking]) -> None:
        """Publish completion events for bookings advanced by a set-based update."""
        for booking in bookings:
            self._emit(BOOKING_COMPLETED, booking)

    def record_cancelled(self, bookings: list[Booking]) -> None:
        for booking in bookings:
            self._emit(BOOKING_CANCELLED, booking, reason="expired")

    def _raise_stale(self, booking_id: str, *, paying: bool = False) -> NoReturn:
        current = self._store.bookings.get(booking_id)
        if current is None:
            raise NotFoundError("booking not found")
        if paying and current.payment_status == PaymentStatus.PAID:
            raise AlreadyPaidError()
        raise InvalidTransitionError(f"booking changed concurrently and is now {current.status.value}")

    def _emit(self, kind: str, booking: Booking, **payload: Any) -> None:
        self._notifier.publish(
            BookingEvent(
                kind=kind,
                booking_id=booking.id,
                tour_id=booking.tour_id,
                occurred_at=self._clock(),
                payload=payload,
            )
        )
