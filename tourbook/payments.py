from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

from .clock import Clock, utc_now
from .config import Settings
from .errors import (
    AlreadyPaidError,
    BadRequestError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentDeclinedError,
    PaymentFailedError,
)
from .models import Booking, BookingStatus, Caller, FiatPayment, PaymentMethod, PaymentStatus, is_owner
from .state_machine import BookingStateMachine, can_manage
from .storage import InMemoryEntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CardDetails:
    card_number: str
    cardholder_name: str
    expiry_date: str
    cvv: str
    gateway: str = "card"

    @property
    def digits(self) -> str:
        return self.card_number.replace(" ", "").replace("-", "")

    @property
    def last4(self) -> str:
        return self.digits[-4:]


@dataclass(frozen=True)
class PaymentIntent:
    booking_id: str
    amount: Decimal
    currency: str
    gateway: str
    status: str
    client_secret: str
    redirect_url: str


@dataclass(frozen=True)
class PaymentRecord:
    booking_id: str
    tour_id: str
    amount: Decimal
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    transaction_id: Optional[str]
    paid_at: datetime


@dataclass(frozen=True)
class PaymentMethodOption:
    id: str
    name: str
    description: str
    type: str
    gateway: Optional[str] = None
    enabled: bool = True


PAYMENT_METHODS: List[PaymentMethodOption] = [
    PaymentMethodOption(
        id="hedera", name="Hedera (HBAR)", description="Pay with HBAR cryptocurrency", type="crypto"
    ),
    PaymentMethodOption(
        id="stripe",
        name="Credit/Debit Card",
        description="Pay with Visa, Mastercard, Amex",
        type="fiat",
        gateway="stripe",
    ),
    PaymentMethodOption(
        id="paypal", name="PayPal", description="Pay with your PayPal account", type="fiat", gateway="paypal"
    ),
    PaymentMethodOption(id="cash", name="Cash on Tour", description="Pay in cash when tour starts", type="cash"),
]


class SimulatedCardGateway:
    """Stands in for a card processor. Two reserved numbers produce a decline and a network failure."""

    def __init__(self, declined_card_number: str, failing_card_number: str, clock: Clock = utc_now) -> None:
        self._declined = declined_card_number
        self._failing = failing_card_number
        self._clock = clock

    def charge(self, card: CardDetails, amount: Decimal) -> str:
        if card.digits == self._declined:
            raise PaymentDeclinedError("payment declined - insufficient funds")
        if card.digits == self._failing:
            raise PaymentFailedError("payment failed - card network unavailable")
        millis = int(self._clock().timestamp() * 1000)
        return f"TXN_{millis}_{uuid4().hex[:9].upper()}"


def validate_card(card: CardDetails) -> None:
    if not (card.card_number and card.cardholder_name and card.expiry_date and card.cvv):
        raise BadRequestError("all card details are required")
    if not card.digits.isdigit() or not 12 <= len(card.digits) <= 19:
        raise BadRequestError("invalid card number", field="card_number")
    if not card.cvv.isdigit() or len(card.cvv) not in (3, 4):
        raise BadRequestError("invalid cvv", field="cvv")


class PaymentService:
    def __init__(
        self,
        store: InMemoryEntityStore,
        machine: BookingStateMachine,
        gateway: SimulatedCardGateway,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._machine = machine
        self._gateway = gateway
        self._settings = settings
        self._clock = clock

    def initiate_fiat_payment(
        self,
        booking_id: str,
        caller: Caller,
        *,
        gateway: str,
        currency: Optional[str] = None,
    ) -> PaymentIntent:
        booking = self._get_owned_booking(booking_id, caller, "not authorized to pay for this booking")
        self._ensure_payable(booking)
        millis = int(self._clock().timestamp() * 1000)
        return PaymentIntent(
            booking_id=booking.id,
            amount=booking.total_price,
            currency=currency or self._settings.payment_currency,
            gateway=gateway,
            status="pending",
            client_secret=f"mock_secret_{millis}",
            redirect_url=f"{self._settings.frontend_url}/payment/confirm/{booking.id}",
        )

    def confirm_payment(self, booking_id: str, card: CardDetails, caller: Caller) -> Booking:
        validate_card(card)
        booking = self._get_owned_booking(booking_id, caller, "not authorized")
        self._ensure_payable(booking)

        try:
            transaction_id = self._gateway.charge(card, booking.total_price)
        except (PaymentDeclinedError, PaymentFailedError) as exc:
            logger.warning(
                "Card payment rejected",
                extra={"booking_id": booking.id, "code": exc.code, "card_last4": card.last4},
            )
            raise

        payment = FiatPayment(
            transaction_id=transaction_id,
            gateway=card.gateway,
            card_last4=card.last4,
            cardholder_name=card.cardholder_name,
            paid_at=self._clock(),
            currency=self._settings.payment_currency,
            amount=booking.total_price,
        )
        return self._machine.confirm_payment(
            booking, {"payment_method": PaymentMethod.FIAT, "fiat_payment": payment}
        )

    def process_refund(self, booking_id: str, caller: Caller, reason: Optional[str] = None) -> Booking:
        booking = self._store.bookings.get(booking_id)
        if not booking:
            raise NotFoundError("booking not found")
        tour = self._store.tours.get(booking.tour_id)
        if not caller.is_admin and (tour is None or not can_manage(tour, caller)):
            raise ForbiddenError("not authorized to process refunds")
        refunded = self._machine.refund(booking)
        logger.info("Refund processed", extra={"booking_id": booking.id, "reason": reason})
        return refunded

    def payment_history(self, caller: Caller) -> List[PaymentRecord]:
        settled = {PaymentStatus.PAID, PaymentStatus.REFUNDED}
        bookings = self._store.bookings.find(
            lambda b: b.payment_status in settled and is_owner(b.owner, caller)
        )
        bookings.sort(key=lambda b: b.created_at, reverse=True)
        return [
            PaymentRecord(
                booking_id=booking.id,
                tour_id=booking.tour_id,
                amount=booking.total_price,
                payment_status=booking.payment_status,
                payment_method=booking.payment_method,
                transaction_id=booking.transaction_id,
                paid_at=booking.fiat_payment.paid_at if booking.fiat_payment else booking.created_at,
            )
            for booking in bookings
        ]

    def payment_methods(self) -> List[PaymentMethodOption]:
        return list(PAYMENT_METHODS)

    def _get_owned_booking(self, booking_id: str, caller: Caller, message: str) -> Booking:
        booking = self._store.bookings.get(booking_id)
        if not booking:
            raise NotFoundError("booking not found")
        if not is_owner(booking.owner, caller):
            raise ForbiddenError(message)
        return booking

    def _ensure_payable(self, booking: Booking) -> None:
        if booking.payment_status == PaymentStatus.PAID:
            raise AlreadyPaidError()
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidTransitionError("booking is cancelled")
