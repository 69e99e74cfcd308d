from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from tourbook.container import Services
from tourbook.errors import ForbiddenError
from tourbook.models import TourStatus
from tourbook.tour_status import resolve_phase, time_until

from conftest import AGENCY, OTHER_AGENCY, MutableClock


def test_phase_follows_the_date_window(make_tour, clock: MutableClock) -> None:
    tour = make_tour(start_in=timedelta(hours=1), duration=timedelta(hours=1))

    assert resolve_phase(tour, clock()) == TourStatus.UPCOMING
    assert resolve_phase(tour, tour.start_date) == TourStatus.ONGOING
    assert resolve_phase(tour, tour.end_date) == TourStatus.ONGOING
    assert resolve_phase(tour, tour.end_date + timedelta(seconds=1)) == TourStatus.COMPLETED


def test_cancelled_tour_is_never_rederived(make_tour, clock: MutableClock) -> None:
    tour = replace(make_tour(start_in=timedelta(hours=1)), tour_status=TourStatus.CANCELLED)

    assert resolve_phase(tour, clock() + timedelta(days=30)) == TourStatus.CANCELLED


def test_tour_without_dates_keeps_stored_status(make_tour, clock: MutableClock) -> None:
    tour = make_tour(start_in=None)

    assert tour.tour_status == TourStatus.UPCOMING
    assert resolve_phase(tour, clock() + timedelta(days=365)) == TourStatus.UPCOMING


def test_read_writes_resolved_phase_back(services: Services, make_tour, clock: MutableClock) -> None:
    tour = make_tour(start_in=timedelta(hours=1), duration=timedelta(hours=1))

    clock.advance(minutes=90)
    assert services.tours.get_tour(tour.id).tour_status == TourStatus.ONGOING
    assert services.store.tours.get(tour.id).tour_status == TourStatus.ONGOING

    clock.advance(hours=2)
    assert services.tours.resolve_tour_status(services.store.tours.get(tour.id)) == TourStatus.COMPLETED
    assert services.store.tours.get(tour.id).tour_status == TourStatus.COMPLETED


def test_listing_filters_on_resolved_status(services: Services, make_tour, clock: MutableClock) -> None:
    soon = make_tour(start_in=timedelta(hours=1), duration=timedelta(hours=4))
    later = make_tour(start_in=timedelta(days=10))

    clock.advance(hours=2)
    ongoing, total = services.tours.list_tours(status=TourStatus.ONGOING)

    assert total == 1
    assert [tour.id for tour in ongoing] == [soon.id]
    upcoming, _ = services.tours.list_tours(status=TourStatus.UPCOMING)
    assert [tour.id for tour in upcoming] == [later.id]


def test_cancel_tour_is_terminal(services: Services, make_tour, clock: MutableClock) -> None:
    tour = make_tour(start_in=timedelta(hours=1))

    services.tours.cancel_tour(tour.id, AGENCY)
    clock.advance(hours=3)

    assert services.tours.get_tour(tour.id).tour_status == TourStatus.CANCELLED


def test_only_owning_agency_can_edit_tour(services: Services, make_tour) -> None:
    tour = make_tour()

    with pytest.raises(ForbiddenError):
        services.tours.update_tour(tour.id, OTHER_AGENCY, is_active=False)


def test_moving_dates_rederives_phase(services: Services, make_tour, clock: MutableClock) -> None:
    tour = make_tour(start_in=timedelta(days=7))

    updated = services.tours.update_tour(
        tour.id, AGENCY, start_date=clock() - timedelta(hours=1), end_date=clock() + timedelta(hours=1)
    )

    assert updated.tour_status == TourStatus.ONGOING


def test_time_until_reports_days_and_hours(clock: MutableClock) -> None:
    remaining = time_until(clock() + timedelta(days=2, hours=5), clock())

    assert remaining is not None
    assert (remaining.days, remaining.hours) == (2, 5)
    assert remaining.human_readable == "2 days, 5 hours"
    assert time_until(clock() - timedelta(minutes=1), clock()) is None
