from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .models import Tour, TourStatus


def resolve_phase(tour: Tour, now: datetime) -> TourStatus:
    """Return the lifecycle phase implied by ``now`` and the tour's date window.

    A cancelled tour stays cancelled. Without both dates the stored status is returned as is.
    """
    if tour.tour_status == TourStatus.CANCELLED:
        return TourStatus.CANCELLED
    if tour.start_date is None or tour.end_date is None:
        return tour.tour_status
    if now < tour.start_date:
        return TourStatus.UPCOMING
    if now <= tour.end_date:
        return TourStatus.ONGOING
    return TourStatus.COMPLETED


@dataclass(frozen=True)
class TimeRemaining:
    seconds: int
    days: int
    hours: int

    @property
    def human_readable(self) -> str:
        if self.days > 0:
            return f"{self.days} days, {self.hours} hours"
        return f"{self.hours} hours"


def time_until(moment: Optional[datetime], now: datetime) -> Optional[TimeRemaining]:
    if moment is None or moment < now:
        return None
    remaining: timedelta = moment - now
    return TimeRemaining(
        seconds=int(remaining.total_seconds()),
        days=remaining.days,
        hours=remaining.seconds // 3600,
    )
