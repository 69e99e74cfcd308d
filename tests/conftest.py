from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient

from tourbook.config import Settings, settings
from tourbook.container import Services, build_services
from tourbook.main import app, get_services
from tourbook.models import Booking, Caller, Role, Tour
from tourbook.notifications import RecordingNotificationSink

BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

AGENCY = Caller(user_id="agency-1", role=Role.AGENCY)
OTHER_AGENCY = Caller(user_id="agency-2", role=Role.AGENCY)
TOURIST = Caller(user_id="user-1", role=Role.TOURIST)
OTHER_TOURIST = Caller(user_id="user-2", role=Role.TOURIST)
ADMIN = Caller(user_id="admin-1", role=Role.ADMIN)
GUEST = Caller(user_id=None, role=Role.GUEST, email="guest@example.com")


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(BASE_TIME)


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def services(clock: MutableClock, sink: RecordingNotificationSink) -> Services:
    return build_services(Settings(scheduler_enabled=False), clock=clock, sink=sink)


@pytest.fixture
def make_tour(services: Services, clock: MutableClock):
    def _make(
        *,
        start_in: Optional[timedelta] = timedelta(days=7),
        duration: timedelta = timedelta(days=3),
        price: str = "100",
        capacity: int = 10,
        caller: Caller = AGENCY,
    ) -> Tour:
        start = clock() + start_in if start_in is not None else None
        end = start + duration if start is not None else None
        return services.tours.create_tour(
            caller=caller,
            name="Atlas trek",
            location="Marrakech",
            price=Decimal(price),
            capacity=capacity,
            start_date=start,
            end_date=end,
        )

    return _make


@pytest.fixture
def make_booking(services: Services, clock: MutableClock):
    def _make(
        tour: Tour,
        *,
        caller: Caller = TOURIST,
        participants: int = 2,
        booking_in: timedelta = timedelta(days=7),
    ) -> Booking:
        return services.bookings.create_booking(
            tour_id=tour.id,
            booking_date=clock() + booking_in,
            participants=participants,
            caller=caller,
        )

    return _make


@pytest.fixture
def client(services: Services, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    monkeypatch.setattr(settings, "scheduler_enabled", False)
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
