from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from .clock import Clock, utc_now
from .errors import (
    BadRequestError,
    DuplicateError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    TourInactiveError,
)
from .models import (
    Booking,
    BookingStatus,
    Caller,
    Guest,
    Owner,
    PaymentMethod,
    PaymentStatus,
    RegisteredUser,
    Role,
    Tour,
    TourStatus,
    is_owner,
)
from .state_machine import BookingStateMachine, can_manage, require_owner_or_admin
from .storage import InMemoryEntityStore
from .tour_status import resolve_phase

logger = logging.getLogger(__name__)


def ensure_utc(dt: datetime, field: str) -> datetime:
    if dt.tzinfo is None:
        raise BadRequestError("timestamp must be timezone-aware", field=field)
    return dt.astimezone(timezone.utc)


def _validate_schedule(
    start_date: Optional[datetime], end_date: Optional[datetime]
) -> Tuple[Optional[datetime], Optional[datetime]]:
    if (start_date is None) != (end_date is None):
        raise BadRequestError("start_date and end_date must be provided together", field="end_date")
    if start_date is None or end_date is None:
        return None, None
    start_utc = ensure_utc(start_date, "start_date")
    end_utc = ensure_utc(end_date, "end_date")
    if start_utc >= end_utc:
        raise BadRequestError("end_date must be after start_date", field="end_date")
    return start_utc, end_utc


class TourService:
    def __init__(self, store: InMemoryEntityStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def create_tour(
        self,
        *,
        caller: Caller,
        name: str,
        price: Decimal,
        capacity: int,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        location: str = "",
        is_active: bool = True,
    ) -> Tour:
        if caller.role not in (Role.AGENCY, Role.ADMIN) or caller.user_id is None:
            raise ForbiddenError("only agencies can create tours")
        if price <= 0:
            raise BadRequestError("price must be positive", field="price")
        if capacity < 1:
            raise BadRequestError("capacity must be at least 1", field="capacity")
        start_utc, end_utc = _validate_schedule(start_date, end_date)

        now = self._clock()
        tour = Tour(
            id=self._generate_tour_id(),
            agency_id=caller.user_id,
            name=name,
            location=location,
            price=price,
            capacity=capacity,
            start_date=start_utc,
            end_date=end_utc,
            tour_status=TourStatus.UPCOMING,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        tour.tour_status = resolve_phase(tour, now)
        self._store.tours.insert(tour)
        logger.info("Tour created", extra={"tour_id": tour.id, "agency_id": tour.agency_id})
        return tour

    def get_tour(self, tour_id: str) -> Tour:
        tour = self._store.tours.get(tour_id)
        if not tour:
            raise NotFoundError("tour not found")
        return self.refresh_status(tour)

    def list_tours(
        self,
        *,
        status: Optional[TourStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Tour], int]:
        tours = [self.refresh_status(tour) for tour in self._store.tours.find(lambda t: t.is_active)]
        if status is not None:
            tours = [tour for tour in tours if tour.tour_status == status]
        tours.sort(key=lambda t: t.created_at, reverse=True)

        total = len(tours)
        start_index = (page - 1) * page_size
        return tours[start_index:start_index + page_size], total

    def update_tour(
        self,
        tour_id: str,
        caller: Caller,
        *,
        price: Optional[Decimal] = None,
        capacity: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        is_active: Optional[bool] = None,
    ) -> Tour:
        tour = self._get_managed_tour(tour_id, caller)
        changes: Dict[str, Any] = {}
        if price is not None:
            if price <= 0:
                raise BadRequestError("price must be positive", field="price")
            changes["price"] = price
        if capacity is not None:
            if capacity < 1:
                raise BadRequestError("capacity must be at least 1", field="capacity")
            changes["capacity"] = capacity
        if start_date is not None or end_date is not None:
            start_utc, end_utc = _validate_schedule(start_date or tour.start_date, end_date or tour.end_date)
            changes["start_date"] = start_utc
            changes["end_date"] = end_utc
        if is_active is not None:
            changes["is_active"] = is_active

        updated = self._store.tours.update(tour.id, changes)
        if updated is None:
            raise NotFoundError("tour not found")
        logger.info("Tour updated", extra={"tour_id": tour.id, "fields": sorted(changes)})
        return self.refresh_status(updated)

    def cancel_tour(self, tour_id: str, caller: Caller) -> Tour:
        tour = self._get_managed_tour(tour_id, caller)
        if tour.tour_status == TourStatus.CANCELLED:
            return tour
        updated = self._store.tours.update(tour.id, {"tour_status": TourStatus.CANCELLED})
        if updated is None:
            raise NotFoundError("tour not found")
        logger.info("Tour cancelled", extra={"tour_id": tour.id, "agency_id": tour.agency_id})
        return updated

    def resolve_tour_status(self, tour: Tour) -> TourStatus:
        return self.refresh_status(tour).tour_status

    def refresh_status(self, tour: Tour) -> Tour:
        """Write the resolved phase back when it differs from the stored one."""
        now = self._clock()
        current = tour
        while True:
            phase = resolve_phase(current, now)
            if phase == current.tour_status:
                return current
            updated = self._store.tours.update(
                current.id, {"tour_status": phase}, expected={"tour_status": {current.tour_status}}
            )
            if updated is not None:
                logger.info(
                    "Tour status resolved",
                    extra={"tour_id": tour.id, "from_status": current.tour_status.value, "to_status": phase.value},
                )
                return updated
            reloaded = self._store.tours.get(tour.id)
            if reloaded is None:
                raise NotFoundError("tour not found")
            current = reloaded

    def _get_managed_tour(self, tour_id: str, caller: Caller) -> Tour:
        tour = self._store.tours.get(tour_id)
        if not tour:
            raise NotFoundError("tour not found")
        if not can_manage(tour, caller):
            raise ForbiddenError("not authorized to manage this tour")
        return tour

    def _generate_tour_id(self) -> str:
        return f"tour_{uuid4().hex[:12]}"


class BookingService:
    def __init__(
        self,
        store: InMemoryEntityStore,
        machine: BookingStateMachine,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._machine = machine
        self._clock = clock

    def create_booking(
        self,
        *,
        tour_id: str,
        booking_date: datetime,
        participants: int,
        caller: Caller,
        payment_method: Optional[PaymentMethod] = None,
        special_requests: Optional[str] = None,
        guest_email: Optional[str] = None,
        guest_name: Optional[str] = None,
    ) -> Booking:
        booking_date_utc = ensure_utc(booking_date, "booking_date")
        tour = self._store.tours.get(tour_id)
        if not tour:
            raise NotFoundError("tour not found")
        if not tour.is_active or tour.tour_status == TourStatus.CANCELLED:
            raise TourInactiveError("this tour is not available")
        if participants < 1:
            raise BadRequestError("at least one participant is required", field="number_of_participants")
        if participants > tour.capacity:
            raise BadRequestError("participants exceed tour capacity", field="number_of_participants")

        owner, method = self._resolve_owner(caller, payment_method, guest_email, guest_name)
        now = self._clock()
        booking = Booking(
            id=self._generate_booking_id(),
            tour_id=tour.id,
            owner=owner,
            booking_date=booking_date_utc,
            number_of_participants=participants,
            total_price=tour.price * participants,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=method,
            special_requests=special_requests,
            created_at=now,
            updated_at=now,
        )
        self._store.bookings.insert(booking)
        self._machine.record_created(booking)
        logger.info(
            "Booking created",
            extra={
                "booking_id": booking.id,
                "tour_id": tour.id,
                "guest": booking.is_guest,
                "payment_method": method.value,
            },
        )
        return booking

    def get_booking(self, booking_id: str, caller: Caller) -> Booking:
        booking = self._get(booking_id)
        if is_owner(booking.owner, caller) or caller.is_admin:
            return booking
        tour = self._store.tours.get(booking.tour_id)
        if tour is not None and can_manage(tour, caller):
            return booking
        raise ForbiddenError("not authorized to view this booking")

    def list_my_bookings(self, caller: Caller) -> list[Booking]:
        bookings = self._store.bookings.find(lambda b: is_owner(b.owner, caller))
        return sorted(bookings, key=lambda b: b.created_at, reverse=True)

    def list_agency_bookings(self, caller: Caller) -> list[Booking]:
        if caller.role not in (Role.AGENCY, Role.ADMIN):
            raise ForbiddenError("only agencies can list tour bookings")
        tour_ids = {tour.id for tour in self._store.tours.find(lambda t: can_manage(t, caller))}
        bookings = self._store.bookings.find(lambda b: b.tour_id in tour_ids)
        return sorted(bookings, key=lambda b: b.created_at, reverse=True)

    def update_booking_status(self, booking_id: str, new_status: BookingStatus, caller: Caller) -> Booking:
        booking = self._get(booking_id)
        tour = self._store.tours.get(booking.tour_id)
        if tour is None or not can_manage(tour, caller):
            raise ForbiddenError("not authorized to update this booking")
        return self._machine.transition(booking, new_status, tour=tour)

    def cancel_booking(self, booking_id: str, caller: Caller) -> None:
        booking = self._get(booking_id)
        require_owner_or_admin(booking, caller)
        self._machine.transition(booking, BookingStatus.CANCELLED)

    def record_hedera_payment(self, booking_id: str, transaction_id: str, caller: Caller) -> Booking:
        if not transaction_id.strip():
            raise BadRequestError("transaction id is required", field="transaction_id")
        booking = self._get(booking_id)
        require_owner_or_admin(booking, caller)
        return self._machine.confirm_payment(
            booking,
            {"payment_method": PaymentMethod.HEDERA, "hedera_transaction_id": transaction_id.strip()},
        )

    def record_nft_mint(self, booking_id: str, serial_number: str, caller: Caller) -> Booking:
        booking = self._get(booking_id)
        if not is_owner(booking.owner, caller):
            raise ForbiddenError("only the booking owner can mint its NFT")
        if booking.nft_minted:
            raise DuplicateError("an NFT was already minted for this booking")
        if not booking.nft_eligible:
            raise InvalidStateError("only completed and paid bookings can mint an NFT")
        return self._machine.mark_nft_minted(booking, serial_number)

    def _resolve_owner(
        self,
        caller: Caller,
        payment_method: Optional[PaymentMethod],
        guest_email: Optional[str],
        guest_name: Optional[str],
    ) -> Tuple[Owner, PaymentMethod]:
        if caller.role == Role.GUEST:
            method = payment_method or PaymentMethod.FIAT
            if method != PaymentMethod.FIAT:
                raise BadRequestError("guest bookings must be paid in fiat", field="payment_method")
            email = guest_email or caller.email
            if not email:
                raise BadRequestError("guest bookings require an email", field="email")
            return Guest(email=email.strip().lower(), name=guest_name), method
        if caller.user_id is None:
            raise ForbiddenError("authentication required")
        return RegisteredUser(caller.user_id), payment_method or PaymentMethod.WALLET

    def _get(self, booking_id: str) -> Booking:
        booking = self._store.bookings.get(booking_id)
        if not booking:
            raise NotFoundError("booking not found")
        return booking

    def _generate_booking_id(self) -> str:
        return f"bkg_{uuid4().hex[:12]}"
