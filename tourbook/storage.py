from __future__ import annotations

from dataclasses import replace
from threading import RLock
from typing import Any, Callable, Collection as AbstractCollection, Dict, Generic, List, Mapping, Optional, TypeVar

from .clock import Clock, utc_now
from .models import Booking, Review, Tour

T = TypeVar("T", Tour, Booking, Review)

Expected = Mapping[str, AbstractCollection[Any]]


class Collection(Generic[T]):
    """Records of one kind keyed by id. All access happens under the store lock."""

    def __init__(self, lock: RLock, clock: Clock) -> None:
        self._lock = lock
        self._clock = clock
        self._records: Dict[str, T] = {}

    def get(self, record_id: str) -> Optional[T]:
        with self._lock:
            return self._records.get(record_id)

    def find(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        with self._lock:
            records = list(self._records.values())
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    def insert(self, record: T) -> T:
        with self._lock:
            self._records[record.id] = record
            return record

    def update(
        self, record_id: str, changes: Mapping[str, Any], *, expected: Optional[Expected] = None
    ) -> Optional[T]:
        """Apply ``changes`` when the stored record still matches ``expected``.

        Returns the updated record, or ``None`` when the record is missing or a field in
        ``expected`` holds a value outside its allowed set.
        """
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None
            if expected and not _matches(current, expected):
                return None
            updated = self._apply(current, changes)
            self._records[record_id] = updated
            return updated

    def update_many(self, predicate: Callable[[T], bool], changes: Mapping[str, Any]) -> List[T]:
        with self._lock:
            updated: List[T] = []
            for record_id, current in list(self._records.items()):
                if not predicate(current):
                    continue
                record = self._apply(current, changes)
                self._records[record_id] = record
                updated.append(record)
            return updated

    def delete(self, record_id: str) -> Optional[T]:
        with self._lock:
            return self._records.pop(record_id, None)

    def _apply(self, current: T, changes: Mapping[str, Any]) -> T:
        return replace(current, **changes, updated_at=self._clock(), revision=current.revision + 1)


def _matches(record: Any, expected: Expected) -> bool:
    return all(getattr(record, name) in allowed for name, allowed in expected.items())


class InMemoryEntityStore:
    """Thread-safe in-memory storage for tours, bookings and reviews."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._lock = RLock()
        self.tours: Collection[Tour] = Collection(self._lock, clock)
        self.bookings: Collection[Booking] = Collection(self._lock, clock)
        self.reviews: Collection[Review] = Collection(self._lock, clock)

    @property
    def lock(self) -> RLock:
        return self._lock
