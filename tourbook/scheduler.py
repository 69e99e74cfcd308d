from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from .config import Settings
from .reconciliation import BOOKING_PHASES, EXPIRED_BOOKINGS, TOUR_PHASES, ReconciliationService, TickReport

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Runs reconciliation duties on their own cadences in a worker thread.

    ``run_forever`` blocks until ``stop`` is called; the application runs it through
    ``asyncio.to_thread`` from its lifespan.
    """

    def __init__(
        self,
        reconciliation: ReconciliationService,
        settings: Settings,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reconciliation = reconciliation
        self._monotonic = monotonic
        self._startup_delay = settings.scheduler_startup_delay_seconds
        self._intervals: Dict[str, float] = {
            TOUR_PHASES: settings.tour_status_interval_seconds,
            BOOKING_PHASES: settings.booking_status_interval_seconds,
            EXPIRED_BOOKINGS: settings.expired_booking_interval_seconds,
        }
        self._next_due: Dict[str, float] = {}
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def run_forever(self) -> None:
        logger.info(
            "Reconciliation scheduler started",
            extra={"intervals": dict(self._intervals), "startup_delay": self._startup_delay},
        )
        if self._stop_event.wait(self._startup_delay):
            return
        while not self._stop_event.is_set():
            try:
                self.run_due()
            except Exception:
                logger.exception("Reconciliation tick crashed")
            self._stop_event.wait(self.seconds_until_next())
        logger.info("Reconciliation scheduler stopped")

    def run_due(self) -> Optional[TickReport]:
        """Run every duty whose interval has elapsed; on the first call all duties are due."""
        now = self._monotonic()
        due = [name for name in self._intervals if self._next_due.get(name, now) <= now]
        if not due:
            return None
        for name in due:
            self._next_due[name] = now + self._intervals[name]
        logger.info("Reconciliation tick triggered", extra={"duties": due})
        report = self._reconciliation.run_reconciliation_tick(due)
        if report.failed:
            logger.error("Reconciliation duties failed", extra={"duties": report.failed})
        return report

    def seconds_until_next(self) -> float:
        if not self._next_due:
            return 0.0
        return max(0.0, min(self._next_due.values()) - self._monotonic())
