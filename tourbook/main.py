from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.responses import JSONResponse

from .config import settings
from .container import Services, build_services
from .errors import AppError, BadRequestError, ForbiddenError
from .models import Caller, Role
from .payments import CardDetails
from .schemas import (
    BookingCreateRequest,
    BookingResponse,
    BookingsListResponse,
    BookingStatusUpdateRequest,
    HederaPaymentRequest,
    NftMintRequest,
    PaymentConfirmRequest,
    PaymentInitiateRequest,
    PaymentIntentResponse,
    PaymentMethodResponse,
    PaymentRecordResponse,
    RefundRequest,
    ReviewCreateRequest,
    ReviewResponse,
    ReviewUpdateRequest,
    TickReportResponse,
    TourCreateRequest,
    TourListQuery,
    TourResponse,
    ToursListResponse,
    TourUpdateRequest,
)

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def get_services() -> Services:
    if not hasattr(get_services, "_instance"):
        get_services._instance = build_services(settings)  # type: ignore[attr-defined]
    return get_services._instance  # type: ignore[attr-defined]


def get_caller(
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    role: Optional[str] = Header(default=None, alias="X-User-Role"),
    email: Optional[str] = Header(default=None, alias="X-Guest-Email"),
) -> Caller:
    if role is None:
        role = Role.TOURIST.value if user_id else Role.GUEST.value
    try:
        resolved = Role(role.lower())
    except ValueError:
        raise BadRequestError("unknown role", field="X-User-Role") from None
    if resolved != Role.GUEST and not user_id:
        raise ForbiddenError("authentication required")
    return Caller(user_id=user_id, role=resolved, email=email)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    scheduler = None
    scheduler_task: Optional[asyncio.Task[None]] = None
    if settings.scheduler_enabled:
        provider = app.dependency_overrides.get(get_services, get_services)
        scheduler = provider().build_scheduler()
        scheduler_task = asyncio.create_task(asyncio.to_thread(scheduler.run_forever))

    yield

    if scheduler is not None and scheduler_task is not None:
        scheduler.stop()
        with contextlib.suppress(BaseException):
            await scheduler_task


app = FastAPI(title="Tour Booking API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(AppError)
async def handle_app_error(_: Request, exc: AppError) -> JSONResponse:
    logger.warning("Request failed", extra={"code": exc.code, "error_message": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.post("/v1/tours", response_model=TourResponse, status_code=status.HTTP_201_CREATED)
async def create_tour(
    payload: TourCreateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> TourResponse:
    tour = services.tours.create_tour(
        caller=caller,
        name=payload.name,
        location=payload.location,
        price=payload.price,
        capacity=payload.capacity,
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_active=payload.is_active,
    )
    return TourResponse.from_domain(tour, services.clock())


@app.get("/v1/tours", response_model=ToursListResponse)
async def list_tours(
    query: TourListQuery = Depends(),
    services: Services = Depends(get_services),
) -> ToursListResponse:
    tours, total = services.tours.list_tours(status=query.status, page=query.page, page_size=query.page_size)
    now = services.clock()
    items = [TourResponse.from_domain(tour, now) for tour in tours]
    return ToursListResponse(items=items, page=query.page, page_size=query.page_size, total=total)


@app.get("/v1/tours/{tour_id}", response_model=TourResponse)
async def get_tour(tour_id: str, services: Services = Depends(get_services)) -> TourResponse:
    tour = services.tours.get_tour(tour_id)
    return TourResponse.from_domain(tour, services.clock())


@app.patch("/v1/tours/{tour_id}", response_model=TourResponse)
async def update_tour(
    tour_id: str,
    payload: TourUpdateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> TourResponse:
    tour = services.tours.update_tour(
        tour_id,
        caller,
        price=payload.price,
        capacity=payload.capacity,
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_active=payload.is_active,
    )
    return TourResponse.from_domain(tour, services.clock())


@app.post("/v1/tours/{tour_id}/cancel", response_model=TourResponse)
async def cancel_tour(
    tour_id: str,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> TourResponse:
    tour = services.tours.cancel_tour(tour_id, caller)
    return TourResponse.from_domain(tour)


@app.post("/v1/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingResponse:
    booking = services.bookings.create_booking(
        tour_id=payload.tour_id,
        booking_date=payload.booking_date,
        participants=payload.number_of_participants,
        caller=caller,
        payment_method=payload.payment_method,
        special_requests=payload.special_requests,
        guest_email=payload.email,
        guest_name=payload.customer_name,
    )
    return BookingResponse.from_domain(booking)


@app.get("/v1/bookings/mine", response_model=BookingsListResponse)
async def list_my_bookings(
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingsListResponse:
    bookings = services.bookings.list_my_bookings(caller)
    return BookingsListResponse(items=[BookingResponse.from_domain(b) for b in bookings], count=len(bookings))


@app.get("/v1/agency/bookings", response_model=BookingsListResponse)
async def list_agency_bookings(
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingsListResponse:
    bookings = services.bookings.list_agency_bookings(caller)
    return BookingsListResponse(items=[BookingResponse.from_domain(b) for b in bookings], count=len(bookings))


@app.get("/v1/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingResponse:
    return BookingResponse.from_domain(services.bookings.get_booking(booking_id, caller))


@app.put("/v1/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: str,
    payload: BookingStatusUpdateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingResponse:
    booking = services.bookings.update_booking_status(booking_id, payload.status, caller)
    return BookingResponse.from_domain(booking)


@app.put("/v1/bookings/{booking_id}/hedera-payment", response_model=BookingResponse)
async def record_hedera_payment(
    booking_id: str,
    payload: HederaPaymentRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingResponse:
    booking = services.bookings.record_hedera_payment(booking_id, payload.transaction_id, caller)
    return BookingResponse.from_domain(booking)


@app.post("/v1/bookings/{booking_id}/nft", response_model=BookingResponse)
async def record_nft_mint(
    booking_id: str,
    payload: NftMintRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingResponse:
    booking = services.bookings.record_nft_mint(booking_id, payload.serial_number, caller)
    return BookingResponse.from_domain(booking)


@app.delete("/v1/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_booking(
    booking_id: str,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> Response:
    services.bookings.cancel_booking(booking_id, caller)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/v1/payments/fiat/initiate", response_model=PaymentIntentResponse)
async def initiate_fiat_payment(
    payload: PaymentInitiateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> PaymentIntentResponse:
    intent = services.payments.initiate_fiat_payment(
        payload.booking_id, caller, gateway=payload.payment_gateway, currency=payload.currency
    )
    return PaymentIntentResponse.from_domain(intent)


@app.post("/v1/payments/fiat/confirm", response_model=BookingResponse)
async def confirm_fiat_payment(
    payload: PaymentConfirmRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingResponse:
    card = CardDetails(
        card_number=payload.card_number,
        cardholder_name=payload.cardholder_name,
        expiry_date=payload.expiry_date,
        cvv=payload.cvv,
        gateway=payload.payment_gateway,
    )
    booking = services.payments.confirm_payment(payload.booking_id, card, caller)
    return BookingResponse.from_domain(booking)


@app.post("/v1/payments/fiat/refund", response_model=BookingResponse)
async def process_refund(
    payload: RefundRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> BookingResponse:
    booking = services.payments.process_refund(payload.booking_id, caller, payload.reason)
    return BookingResponse.from_domain(booking)


@app.get("/v1/payments/methods", response_model=list[PaymentMethodResponse])
async def list_payment_methods(services: Services = Depends(get_services)) -> list[PaymentMethodResponse]:
    return [PaymentMethodResponse.from_domain(option) for option in services.payments.payment_methods()]


@app.get("/v1/payments/history", response_model=list[PaymentRecordResponse])
async def payment_history(
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> list[PaymentRecordResponse]:
    return [PaymentRecordResponse.from_domain(record) for record in services.payments.payment_history(caller)]


@app.post("/v1/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    payload: ReviewCreateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReviewResponse:
    review = services.reviews.create_review(
        tour_id=payload.tour_id,
        booking_id=payload.booking_id,
        caller=caller,
        rating=payload.rating,
        comment=payload.comment,
    )
    return ReviewResponse.from_domain(review)


@app.get("/v1/reviews/tour/{tour_id}", response_model=list[ReviewResponse])
async def list_tour_reviews(tour_id: str, services: Services = Depends(get_services)) -> list[ReviewResponse]:
    return [ReviewResponse.from_domain(review) for review in services.reviews.list_tour_reviews(tour_id)]


@app.get("/v1/reviews/mine", response_model=list[ReviewResponse])
async def list_my_reviews(
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> list[ReviewResponse]:
    return [ReviewResponse.from_domain(review) for review in services.reviews.list_my_reviews(caller)]


@app.put("/v1/reviews/{review_id}", response_model=ReviewResponse)
async def update_review(
    review_id: str,
    payload: ReviewUpdateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReviewResponse:
    review = services.reviews.update_review(review_id, caller, rating=payload.rating, comment=payload.comment)
    return ReviewResponse.from_domain(review)


@app.delete("/v1/reviews/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: str,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> Response:
    services.reviews.delete_review(review_id, caller)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/v1/admin/reconcile", response_model=TickReportResponse)
async def run_reconciliation(
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> TickReportResponse:
    if not caller.is_admin:
        raise ForbiddenError("admin access required")
    report = services.reconciliation.run_reconciliation_tick()
    return TickReportResponse.from_domain(report)
