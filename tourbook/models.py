from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union


class Role(str, Enum):
    TOURIST = "tourist"
    AGENCY = "agency"
    ARTIST = "artist"
    ADMIN = "admin"
    GUEST = "guest"


class TourStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    HEDERA = "hedera"
    FIAT = "fiat"
    CASH = "cash"
    WALLET = "wallet"


@dataclass(frozen=True)
class Caller:
    user_id: Optional[str]
    role: Role
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class RegisteredUser:
    user_id: str


@dataclass(frozen=True)
class Guest:
    email: str
    name: Optional[str] = None


Owner = Union[RegisteredUser, Guest]


def is_owner(owner: Owner, caller: Caller) -> bool:
    if isinstance(owner, RegisteredUser):
        return caller.user_id is not None and caller.user_id == owner.user_id
    if caller.email is None:
        return False
    return caller.email.strip().lower() == owner.email


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Tour:
    id: str
    agency_id: str
    name: str
    price: Decimal
    capacity: int
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    tour_status: TourStatus
    created_at: datetime
    updated_at: datetime = field(default_factory=_utcnow)
    location: str = ""
    is_active: bool = True
    rating: float = 0.0
    review_count: int = 0
    revision: int = 0

    @property
    def has_schedule(self) -> bool:
        return self.start_date is not None and self.end_date is not None


@dataclass(frozen=True)
class FiatPayment:
    transaction_id: str
    gateway: str
    card_last4: str
    cardholder_name: str
    paid_at: datetime
    currency: str
    amount: Decimal


@dataclass
class Booking:
    id: str
    tour_id: str
    owner: Owner
    booking_date: datetime
    number_of_participants: int
    total_price: Decimal
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    created_at: datetime
    updated_at: datetime = field(default_factory=_utcnow)
    special_requests: Optional[str] = None
    hedera_transaction_id: Optional[str] = None
    fiat_payment: Optional[FiatPayment] = None
    nft_minted: bool = False
    nft_serial_number: Optional[str] = None
    revision: int = 0

    @property
    def is_guest(self) -> bool:
        return isinstance(self.owner, Guest)

    @property
    def nft_eligible(self) -> bool:
        return (
            self.status == BookingStatus.COMPLETED
            and self.payment_status == PaymentStatus.PAID
            and not self.nft_minted
        )

    @property
    def transaction_id(self) -> Optional[str]:
        if self.payment_method == PaymentMethod.HEDERA:
            return self.hedera_transaction_id
        return self.fiat_payment.transaction_id if self.fiat_payment else None


@dataclass
class Review:
    id: str
    tour_id: str
    user_id: str
    booking_id: str
    rating: int
    comment: str
    is_verified: bool
    created_at: datetime
    updated_at: datetime = field(default_factory=_utcnow)
    revision: int = 0


@dataclass(frozen=True)
class BookingEvent:
    kind: str
    booking_id: str
    tour_id: str
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
