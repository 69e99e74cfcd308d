from __future__ import annotations

from typing import List

from tourbook.config import Settings
from tourbook.container import Services
from tourbook.reconciliation import ALL_DUTIES, BOOKING_PHASES, EXPIRED_BOOKINGS, TOUR_PHASES, TickReport
from tourbook.scheduler import ReconciliationScheduler


class FakeReconciliation:
    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    def run_reconciliation_tick(self, duties=None) -> TickReport:
        self.calls.append(list(duties))
        return TickReport()


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _scheduler(reconciliation, monotonic) -> ReconciliationScheduler:
    settings = Settings(
        scheduler_startup_delay_seconds=0,
        tour_status_interval_seconds=3600,
        booking_status_interval_seconds=3600,
        expired_booking_interval_seconds=6 * 3600,
    )
    return ReconciliationScheduler(reconciliation, settings, monotonic=monotonic)


def test_first_run_executes_every_duty() -> None:
    reconciliation = FakeReconciliation()
    scheduler = _scheduler(reconciliation, FakeMonotonic())

    scheduler.run_due()

    assert reconciliation.calls == [list(ALL_DUTIES)]


def test_duties_follow_their_own_cadence() -> None:
    reconciliation = FakeReconciliation()
    monotonic = FakeMonotonic()
    scheduler = _scheduler(reconciliation, monotonic)
    scheduler.run_due()

    monotonic.now += 1800
    assert scheduler.run_due() is None
    assert scheduler.seconds_until_next() == 1800

    monotonic.now += 1800
    scheduler.run_due()
    assert reconciliation.calls[-1] == [TOUR_PHASES, BOOKING_PHASES]

    monotonic.now += 5 * 3600
    scheduler.run_due()
    assert reconciliation.calls[-1] == [TOUR_PHASES, BOOKING_PHASES, EXPIRED_BOOKINGS]


def test_run_forever_runs_once_and_stops(services: Services) -> None:
    settings = Settings(scheduler_startup_delay_seconds=0)
    scheduler = ReconciliationScheduler(services.reconciliation, settings)
    calls: List[TickReport] = []
    original = scheduler.run_due

    def run_then_stop():
        calls.append(original())
        scheduler.stop()
        return calls[-1]

    scheduler.run_due = run_then_stop  # type: ignore[method-assign]
    scheduler.run_forever()

    assert scheduler.stopped
    assert len(calls) == 1
    assert calls[0] is not None and calls[0].ok


def test_stop_during_startup_delay_skips_runs() -> None:
    reconciliation = FakeReconciliation()
    scheduler = ReconciliationScheduler(reconciliation, Settings(scheduler_startup_delay_seconds=30))

    scheduler.stop()
    scheduler.run_forever()

    assert reconciliation.calls == []
