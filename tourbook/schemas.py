from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import (
    Booking,
    BookingStatus,
    Guest,
    PaymentMethod,
    PaymentStatus,
    RegisteredUser,
    Review,
    Tour,
    TourStatus,
)
from .payments import PaymentIntent, PaymentMethodOption, PaymentRecord
from .reconciliation import TickReport
from .tour_status import TimeRemaining, time_until


class TourCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    location: str = ""
    price: Decimal = Field(..., gt=0)
    capacity: int = Field(..., ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True


class TourUpdateRequest(BaseModel):
    price: Optional[Decimal] = Field(default=None, gt=0)
    capacity: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class TimeRemainingResponse(BaseModel):
    seconds: int
    days: int
    hours: int
    human_readable: str


class TourResponse(BaseModel):
    id: str
    agency_id: str
    name: str
    location: str
    price: Decimal
    capacity: int
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    tour_status: TourStatus
    is_active: bool
    rating: float
    review_count: int
    time_until_start: Optional[TimeRemainingResponse] = None
    time_until_end: Optional[TimeRemainingResponse] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, tour: Tour, now: Optional[datetime] = None) -> "TourResponse":
        until_start = time_until(tour.start_date, now) if now else None
        until_end = time_until(tour.end_date, now) if now else None
        return cls(
            id=tour.id,
            agency_id=tour.agency_id,
            name=tour.name,
            location=tour.location,
            price=tour.price,
            capacity=tour.capacity,
            start_date=tour.start_date,
            end_date=tour.end_date,
            tour_status=tour.tour_status,
            is_active=tour.is_active,
            rating=tour.rating,
            review_count=tour.review_count,
            time_until_start=_remaining(until_start),
            time_until_end=_remaining(until_end),
            created_at=tour.created_at,
            updated_at=tour.updated_at,
        )


def _remaining(value: Optional[TimeRemaining]) -> Optional[TimeRemainingResponse]:
    if value is None:
        return None
    return TimeRemainingResponse(
        seconds=value.seconds, days=value.days, hours=value.hours, human_readable=value.human_readable
    )


class ToursListResponse(BaseModel):
    items: List[TourResponse]
    page: int
    page_size: int
    total: int


class TourListQuery(BaseModel):
    status: Optional[TourStatus] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class BookingCreateRequest(BaseModel):
    tour_id: str = Field(..., min_length=1)
    booking_date: datetime
    number_of_participants: int = Field(..., ge=1)
    payment_method: Optional[PaymentMethod] = None
    special_requests: Optional[str] = None
    email: Optional[str] = None
    customer_name: Optional[str] = None


class BookingStatusUpdateRequest(BaseModel):
    status: BookingStatus


class HederaPaymentRequest(BaseModel):
    transaction_id: str = Field(..., min_length=1)


class NftMintRequest(BaseModel):
    serial_number: str = Field(..., min_length=1)


class FiatPaymentResponse(BaseModel):
    transaction_id: str
    gateway: str
    card_last4: str
    paid_at: datetime
    currency: str
    amount: Decimal


class BookingResponse(BaseModel):
    id: str
    tour_id: str
    user_id: Optional[str]
    guest_email: Optional[str]
    guest_name: Optional[str]
    is_guest_booking: bool
    booking_date: datetime
    number_of_participants: int
    total_price: Decimal
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    hedera_transaction_id: Optional[str]
    fiat_payment: Optional[FiatPaymentResponse]
    nft_minted: bool
    nft_serial_number: Optional[str]
    special_requests: Optional[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingResponse":
        owner = booking.owner
        fiat = booking.fiat_payment
        return cls(
            id=booking.id,
            tour_id=booking.tour_id,
            user_id=owner.user_id if isinstance(owner, RegisteredUser) else None,
            guest_email=owner.email if isinstance(owner, Guest) else None,
            guest_name=owner.name if isinstance(owner, Guest) else None,
            is_guest_booking=booking.is_guest,
            booking_date=booking.booking_date,
            number_of_participants=booking.number_of_participants,
            total_price=booking.total_price,
            status=booking.status,
            payment_status=booking.payment_status,
            payment_method=booking.payment_method,
            hedera_transaction_id=booking.hedera_transaction_id,
            fiat_payment=(
                FiatPaymentResponse(
                    transaction_id=fiat.transaction_id,
                    gateway=fiat.gateway,
                    card_last4=fiat.card_last4,
                    paid_at=fiat.paid_at,
                    currency=fiat.currency,
                    amount=fiat.amount,
                )
                if fiat
                else None
            ),
            nft_minted=booking.nft_minted,
            nft_serial_number=booking.nft_serial_number,
            special_requests=booking.special_requests,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class BookingsListResponse(BaseModel):
    items: List[BookingResponse]
    count: int


class PaymentInitiateRequest(BaseModel):
    booking_id: str
    payment_gateway: str = "stripe"
    currency: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    booking_id: str
    amount: Decimal
    currency: str
    payment_gateway: str
    status: str
    client_secret: str
    redirect_url: str

    @classmethod
    def from_domain(cls, intent: PaymentIntent) -> "PaymentIntentResponse":
        return cls(
            booking_id=intent.booking_id,
            amount=intent.amount,
            currency=intent.currency,
            payment_gateway=intent.gateway,
            status=intent.status,
            client_secret=intent.client_secret,
            redirect_url=intent.redirect_url,
        )


class PaymentConfirmRequest(BaseModel):
    booking_id: str
    card_number: str = ""
    cardholder_name: str = ""
    expiry_date: str = ""
    cvv: str = ""
    payment_gateway: str = "card"


class RefundRequest(BaseModel):
    booking_id: str
    reason: Optional[str] = None


class PaymentRecordResponse(BaseModel):
    booking_id: str
    tour_id: str
    amount: Decimal
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    transaction_id: Optional[str]
    paid_at: datetime

    @classmethod
    def from_domain(cls, record: PaymentRecord) -> "PaymentRecordResponse":
        return cls(
            booking_id=record.booking_id,
            tour_id=record.tour_id,
            amount=record.amount,
            payment_status=record.payment_status,
            payment_method=record.payment_method,
            transaction_id=record.transaction_id,
            paid_at=record.paid_at,
        )


class PaymentMethodResponse(BaseModel):
    id: str
    name: str
    description: str
    type: str
    gateway: Optional[str] = None
    enabled: bool

    @classmethod
    def from_domain(cls, option: PaymentMethodOption) -> "PaymentMethodResponse":
        return cls(
            id=option.id,
            name=option.name,
            description=option.description,
            type=option.type,
            gateway=option.gateway,
            enabled=option.enabled,
        )


class ReviewCreateRequest(BaseModel):
    tour_id: str
    booking_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = None


class ReviewResponse(BaseModel):
    id: str
    tour_id: str
    user_id: str
    booking_id: str
    rating: int
    comment: str
    is_verified: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, review: Review) -> "ReviewResponse":
        return cls(
            id=review.id,
            tour_id=review.tour_id,
            user_id=review.user_id,
            booking_id=review.booking_id,
            rating=review.rating,
            comment=review.comment,
            is_verified=review.is_verified,
            created_at=review.created_at,
            updated_at=review.updated_at,
        )


class TickReportResponse(BaseModel):
    tours_started: int
    tours_completed: int
    bookings_completed: int
    bookings_expired: int
    failed: List[str]
    skipped: List[str]

    @classmethod
    def from_domain(cls, report: TickReport) -> "TickReportResponse":
        return cls(
            tours_started=report.tours_started,
            tours_completed=report.tours_completed,
            bookings_completed=report.bookings_completed,
            bookings_expired=report.bookings_expired,
            failed=list(report.failed),
            skipped=list(report.skipped),
        )


class ErrorResponse(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
